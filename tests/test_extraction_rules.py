"""Tests for the field pattern library, its predicates and the registry."""

import re
import threading

import pytest

from neuro_discharge.config import ExtractionThresholds
from neuro_discharge.extraction_rules import (
    DEFAULT_RULES,
    FieldPatternLibrary,
    RuleLibraryRegistry,
    is_plausible_diagnosis,
    is_plausible_procedure,
    not_none_statement,
    rule,
)

LIBRARY = FieldPatternLibrary(DEFAULT_RULES)


class TestDiagnosisPlausibility:
    def test_narrative_prose_is_rejected(self):
        captured = ("occasionally led to frustration on his part. He denies associated headaches, "
                    "focal weakness, seizures")
        assert not is_plausible_diagnosis(captured)

    def test_short_diagnosis_is_accepted(self):
        assert is_plausible_diagnosis("Brain tumor, glioblastoma")

    def test_over_long_capture_is_rejected(self):
        assert not is_plausible_diagnosis("glioma " * 20)

    def test_three_sentences_are_rejected(self):
        assert not is_plausible_diagnosis("Glioma. Edema. Seizures")

    def test_bare_header_is_rejected(self):
        assert not is_plausible_diagnosis("Diagnosis:")

    def test_length_cutoff_is_configurable(self):
        assert not is_plausible_diagnosis("Brain tumor", ExtractionThresholds(diagnosis_max_chars=5))


class TestProcedurePlausibility:
    @pytest.mark.parametrize("value", [
        "progress",
        "(s) (LRB):",
        "(LRB)",
        "notes",
        "Craniotomy",  # too short
        "Left sided procedure done",  # no procedure term
        "He underwent a craniotomy yesterday",  # narrative
    ])
    def test_rejected(self, value):
        assert not is_plausible_procedure(value)

    def test_real_operative_line_is_accepted(self):
        value = "Left Minicraniotomy, Open Biopsy of Tumor, Duraplasty, Image Guidance and Microscope (Left)"
        assert is_plausible_procedure(value)

    def test_needs_two_multi_char_words(self):
        assert not is_plausible_procedure("a b c EVD xx yy zz")


class TestNoneStatements:
    @pytest.mark.parametrize("value", ["None", "no complications", "None.", "N/A"])
    def test_none_statements_rejected(self, value):
        assert not not_none_statement(value)

    def test_real_complication_accepted(self):
        assert not_none_statement("wound infection on POD 5")


class TestLibraryLookups:
    def test_admitting_diagnosis_ignores_pmh(self):
        text = "Admitting Diagnosis: Brain tumor\n\nPMH:\nAtrial fibrillation\nHypertension"
        _, value, _ = LIBRARY.first("admittingDiagnosis", text)
        assert value == "Brain tumor"

    def test_cc_header_is_case_sensitive(self):
        assert LIBRARY.first("admittingDiagnosis", "Drain output 200 cc serosanguinous") is None

    def test_header_then_newline_procedure(self):
        text = "Post-Op Procedure(s) (LRB):\nLeft Minicraniotomy, Open Biopsy of Tumor, Duraplasty"
        r, hits = LIBRARY.all("procedures", text)
        assert r.name == "post_op_header_newline"
        assert [v for v, _ in hits] == ["Left Minicraniotomy, Open Biopsy of Tumor, Duraplasty"]

    def test_template_procedure_line_yields_nothing(self):
        assert LIBRARY.all("procedures", "Procedure: progress") == (None, [])

    def test_same_line_procedure_header(self):
        _, value, _ = LIBRARY.first("procedures", "Procedure: L4-5 laminectomy and fusion")
        assert value == "L4-5 laminectomy and fusion"

    def test_verb_phrase_procedure(self):
        _, value, _ = LIBRARY.first("procedures", "On 3/2 she was taken to the OR and underwent right pterional craniotomy for clipping.")
        assert "craniotomy" in value

    def test_hpi_mentioning_past_medical_history_is_not_pmh(self):
        text = "HPI: 60 year old with a past medical history of HTN presenting with headache for two weeks"
        assert LIBRARY.all("pmh", text) == (None, [])

    def test_explicit_kps(self):
        _, value, _ = LIBRARY.first("kps", "Karnofsky Performance Status: 70")
        assert value == "70"

    def test_out_of_range_kps_rejected(self):
        assert LIBRARY.first("kps", "KPS 150") is None

    def test_rules_are_declared_in_priority_order(self):
        assert LIBRARY.rule_names("procedures") == [
            "post_op_header_newline", "same_line_header", "underwent_phrase",
        ]
        assert LIBRARY.rule_names("dischargeMedications") == [
            "discharge_meds_section", "medications_section", "dosed_medication",
        ]

    def test_unknown_field_has_no_rules(self):
        assert LIBRARY.rules("nope") == ()
        assert "nope" not in LIBRARY
        assert "patientName" in LIBRARY


class TestRegistry:
    def test_update_field_swaps_snapshot(self):
        registry = RuleLibraryRegistry()
        before = registry.current()
        custom = rule("nutrition", r"\bNutrition[ \t]*:[ \t]*([^\n]+)", re.I)

        after = registry.update_field("diet", [custom], version="2")

        assert registry.current() is after
        assert after.version == "2"
        assert after.rule_names("diet") == ["nutrition"]
        # The old snapshot is untouched
        assert before.rule_names("diet") == ["diet_header"]
        assert before.version == "1"

    def test_replace_returns_previous(self):
        registry = RuleLibraryRegistry()
        original = registry.current()
        replacement = FieldPatternLibrary({}, version="empty")
        assert registry.replace(replacement) is original
        assert registry.current() is replacement

    def test_concurrent_writers_all_apply(self):
        registry = RuleLibraryRegistry()
        fields = [f"custom_{i}" for i in range(20)]

        def write(name):
            registry.update_field(name, [rule(name, name)])

        threads = [threading.Thread(target=write, args=(f,)) for f in fields]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        library = registry.current()
        assert all(f in library for f in fields)
