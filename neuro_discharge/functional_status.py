"""
Functional Status Estimator

Derives an approximate Karnofsky Performance Status (KPS) and a discharge
condition tier from exam text when no explicit KPS is documented.

This is a keyword ladder, not a validated clinical instrument. Every result
carries approximate=True and a note saying so; consumers must present it
as a drafting default for the clinician to confirm.

Ladder:
  1. Independence / assistance keywords pick a starting band
  2. "bedridden" caps at 30, "wheelchair" clamps to 40-60
  3. "fully functional" / "no limitations" forces 100
  4. Motor strength grades adjust: 5/5 floors at 80, 3-4/5 clamps to 40-70,
     1-2/5 caps at 50
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

APPROXIMATION_NOTE = "Heuristic estimate from exam keywords; not a clinical score. Confirm before use."

KPS_DESCRIPTIONS = {
    100: "Normal; no complaints; no evidence of disease",
    90: "Independent with normal activity; no or minor signs/symptoms of disease",
    80: "Independent with activities of daily living; some signs/symptoms of disease",
    70: "Cares for self; unable to carry on normal activity or work; minimal assistance required",
    60: "Requires occasional assistance but able to care for most needs; moderate assistance required",
    50: "Requires considerable assistance and frequent care; considerable/maximal assistance required",
    40: "Disabled; requires special care and assistance; total care required",
    30: "Severely disabled; hospitalization/skilled care indicated; bedridden",
    20: "Very sick; hospitalization and active supportive treatment necessary",
    10: "Moribund",
    0: "Dead",
}

# (minimum KPS, tier label), checked top-down
CONDITION_TIERS = (
    (80, "5 - Excellent"),
    (70, "4 - Good"),
    (50, "3 - Fair"),
    (30, "2 - Poor"),
    (1, "1 - Critical"),
)

_STRENGTH_FULL = re.compile(r"(?:motor|strength).*5/5|full strength", re.IGNORECASE)
_STRENGTH_MODERATE = re.compile(r"(?:motor|strength).*[3-4]/5", re.IGNORECASE)
_STRENGTH_WEAK = re.compile(r"(?:motor|strength).*[1-2]/5", re.IGNORECASE)


def condition_tier(kps: int) -> str:
    """Monotonic step function from KPS to the 5-tier discharge condition score."""
    for minimum, label in CONDITION_TIERS:
        if kps >= minimum:
            return label
    return ""


def describe_kps(kps: int) -> str:
    """Description of the KPS band at or below the given score."""
    band = max(0, min(100, (kps // 10) * 10))
    return KPS_DESCRIPTIONS[band]


@dataclass
class FunctionalEstimate:
    kps: int = 0
    description: str = ""
    condition_score: str = ""
    approximate: bool = True
    note: str = APPROXIMATION_NOTE
    signals: list = field(default_factory=list)

    @property
    def has_estimate(self) -> bool:
        return self.kps > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kpsScore": self.kps,
            "functionalDescription": self.description,
            "dischargeConditionScore": self.condition_score,
            "approximate": self.approximate,
            "note": self.note,
            "signals": list(self.signals),
        }


class FunctionalStatusEstimator:
    """Keyword ladder over exam text. Stateless."""

    def estimate(self, exam_text: str) -> FunctionalEstimate:
        text = (exam_text or "").lower()
        result = FunctionalEstimate()
        if not text.strip():
            return result

        kps = self._base_band(text, result.signals)

        # Hard caps from mobility
        if "bedridden" in text or "bed-bound" in text or "bedbound" in text:
            kps = min(kps, 30) if kps else 30
            result.signals.append("bedridden")
        elif "wheelchair" in text:
            kps = max(40, min(kps, 60))
            result.signals.append("wheelchair")

        if "fully functional" in text or "no limitations" in text:
            kps = 100
            result.signals.append("fully functional")

        kps = self._adjust_for_strength(text, kps, result.signals)

        result.kps = kps
        if kps > 0:
            result.description = describe_kps(kps)
            result.condition_score = condition_tier(kps)
        return result

    @staticmethod
    def _base_band(text: str, signals: list) -> int:
        if "independent" in text:
            signals.append("independent")
            if "normal" in text or "no deficits" in text or "intact" in text:
                return 90
            return 80
        if "minimal assist" in text or "contact guard" in text:
            signals.append("minimal assistance")
            return 70
        if "moderate assist" in text:
            signals.append("moderate assistance")
            return 60
        if "maximal assist" in text or "max assist" in text or "dependent" in text:
            signals.append("maximal assistance")
            return 50
        if "total care" in text or "unable to care" in text:
            signals.append("total care")
            return 40
        # Unqualified "with assistance"
        if "assist" in text:
            signals.append("assistance")
            return 60
        return 0

    @staticmethod
    def _adjust_for_strength(text: str, kps: int, signals: list) -> int:
        if _STRENGTH_FULL.search(text):
            signals.append("strength 5/5")
            return max(kps, 80)
        if _STRENGTH_MODERATE.search(text):
            signals.append("strength 3-4/5")
            return max(40, min(kps, 70))
        if _STRENGTH_WEAK.search(text):
            signals.append("strength 1-2/5")
            return min(kps, 50)
        return kps


_estimator: Optional[FunctionalStatusEstimator] = None


def get_estimator() -> FunctionalStatusEstimator:
    global _estimator
    if _estimator is None:
        _estimator = FunctionalStatusEstimator()
    return _estimator
