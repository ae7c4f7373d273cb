"""Tests for the KPS keyword ladder."""

import pytest

from neuro_discharge.functional_status import (
    APPROXIMATION_NOTE,
    FunctionalStatusEstimator,
    condition_tier,
    describe_kps,
)

ESTIMATOR = FunctionalStatusEstimator()


class TestLadder:
    @pytest.mark.parametrize("exam, kps", [
        ("Independent with ambulation. Motor 5/5 throughout.", 80),
        ("Awake, neurologically intact, independent", 90),
        ("Ambulating with minimal assist", 70),
        ("Moderate assistance for transfers", 60),
        ("Dependent for ADLs", 50),
        ("Requires total care", 40),
        ("Walks with assistance", 60),
        ("Bedridden", 30),
        ("Independent in wheelchair", 60),
        ("Fully functional, no limitations", 100),
    ])
    def test_bands(self, exam, kps):
        assert ESTIMATOR.estimate(exam).kps == kps

    def test_weak_strength_caps_at_50(self):
        estimate = ESTIMATOR.estimate("Independent. Motor 2/5 left leg")
        assert estimate.kps == 50
        assert "strength 1-2/5" in estimate.signals

    def test_moderate_strength_clamps(self):
        assert ESTIMATOR.estimate("Minimal assist. Strength 4/5 RLE").kps == 70

    def test_full_strength_floors_at_80(self):
        assert ESTIMATOR.estimate("Moderate assist for gait. Motor 5/5").kps == 80

    def test_estimate_is_flagged_approximate(self):
        estimate = ESTIMATOR.estimate("Independent with ambulation")
        assert estimate.approximate is True
        assert estimate.note == APPROXIMATION_NOTE
        assert estimate.condition_score == "5 - Excellent"
        data = estimate.to_dict()
        assert data["kpsScore"] == 80
        assert data["approximate"] is True

    @pytest.mark.parametrize("exam", ["", "   ", "Vitals stable"])
    def test_no_signal_gives_no_estimate(self, exam):
        estimate = ESTIMATOR.estimate(exam)
        assert not estimate.has_estimate
        assert estimate.condition_score == ""


class TestConditionTier:
    @pytest.mark.parametrize("kps, tier", [
        (100, "5 - Excellent"),
        (80, "5 - Excellent"),
        (79, "4 - Good"),
        (70, "4 - Good"),
        (50, "3 - Fair"),
        (30, "2 - Poor"),
        (10, "1 - Critical"),
        (0, ""),
    ])
    def test_tiers(self, kps, tier):
        assert condition_tier(kps) == tier

    def test_tier_is_monotonic(self):
        order = ["", "1 - Critical", "2 - Poor", "3 - Fair", "4 - Good", "5 - Excellent"]
        ranks = [order.index(condition_tier(k)) for k in range(0, 101)]
        assert ranks == sorted(ranks)

    def test_describe_kps_uses_band_below(self):
        assert describe_kps(85) == describe_kps(80)
        assert describe_kps(150) == describe_kps(100)
