"""
Clinical Data Validator

Cross-checks the merged record against the deterministic baseline and the
raw notes. Every check is independent. Warnings never block; errors set
isValid=False but the record is still handed back to the caller.

Checks:
    1. Required categories (demographics, admitting diagnosis, discharge exam)
    2. Age / sex agreement with the baseline
    3. Critical terms in the notes that the merged record never mentions
    4. Complications structure
    5. Date ordering (admission <= procedure <= discharge)
    6. Baseline medications missing from the merged list
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from .schemas import ExtractedRecord, ValidationReport

logger = logging.getLogger("neuro-discharge")

CRITICAL_TERMS = (
    "infection", "meningitis", "seizure", "deficit",
    "csf leak", "hemorrhage", "rebleed", "ventriculitis",
)

REQUIRED_CATEGORIES = {
    "demographics": ("patientName", "age", "sex"),
    "admittingDiagnosis": ("admittingDiagnosis",),
    "dischargeExam": ("dischargeExam",),
}

CONFIDENCE_GROUPS = {
    "demographics": ("patientName", "age", "sex", "mrn"),
    "dates": ("admitDate", "dischargeDate"),
    "clinical": ("admittingDiagnosis", "hospitalCourse", "dischargeExam"),
}

CONFIDENCE_WEIGHTS = {"demographics": 0.3, "dates": 0.2, "clinical": 0.4, "medications": 0.1}

COMPLETENESS_CHECKLIST = (
    "patientName", "age", "sex", "admittingDiagnosis",
    "hospitalCourse", "dischargeExam", "dischargeMedications", "followUp",
)

DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%m-%d-%Y", "%m-%d-%y", "%Y-%m-%d", "%B %d, %Y", "%b %d, %Y")

RecordLike = Union[ExtractedRecord, Mapping[str, Any]]


def as_mapping(record: Optional[RecordLike]) -> Dict[str, Any]:
    if record is None:
        return {}
    if isinstance(record, ExtractedRecord):
        return record.model_dump()
    return dict(record)


def is_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return bool(str(value).strip())


def parse_date(value: Any) -> Optional[datetime]:
    if not is_filled(value):
        return None
    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_age(value: Any) -> Optional[int]:
    digits = "".join(ch for ch in str(value or "").strip().split(" ")[0] if ch.isdigit())
    return int(digits) if digits else None


def _leading_token(medication: Any) -> str:
    parts = str(medication).lower().split()
    return parts[0] if parts else ""


def field_fraction(record: Mapping[str, Any], names) -> float:
    return sum(1 for n in names if is_filled(record.get(n))) / len(names)


class ClinicalDataValidator:
    """Stateless. Accepts ExtractedRecord instances or plain dicts (raw LLM output)."""

    def validate(
        self,
        merged: RecordLike,
        baseline: Optional[RecordLike] = None,
        raw_text: str = "",
    ) -> ValidationReport:
        record = as_mapping(merged)
        base = as_mapping(baseline)
        warnings: List[str] = []
        errors: List[str] = []

        self._check_required(record, errors)
        self._check_demographics(record, base, warnings)
        self._check_missed_terms(record, raw_text, warnings)
        self._check_complications(record, warnings, errors)
        self._check_dates(record, warnings, errors)
        self._check_medications(record, base, warnings)

        completeness, missing = self.completeness(record)
        report = ValidationReport(
            isValid=not errors,
            warnings=warnings,
            errors=errors,
            confidenceScores=self.confidence(record),
            completeness=completeness,
            missingElements=missing,
        )
        logger.debug(
            f"[VALIDATE] valid={report.isValid} errors={len(errors)} warnings={len(warnings)} "
            f"completeness={completeness:.2f}"
        )
        return report

    # ============================================================
    # CHECKS
    # ============================================================

    @staticmethod
    def _check_required(record: Dict[str, Any], errors: List[str]):
        for category, names in REQUIRED_CATEGORIES.items():
            if not any(is_filled(record.get(n)) for n in names):
                errors.append(f"Missing required category: {category}")

    @staticmethod
    def _check_demographics(record: Dict[str, Any], base: Dict[str, Any], warnings: List[str]):
        if not base:
            return

        merged_age, base_age = parse_age(record.get("age")), parse_age(base.get("age"))
        if merged_age is not None and base_age is not None and abs(merged_age - base_age) > 1:
            warnings.append(f"Age mismatch: merged={merged_age}, deterministic={base_age}")

        merged_sex = str(record.get("sex") or "").strip().lower()
        base_sex = str(base.get("sex") or "").strip().lower()
        # "M" and "Male" agree; compare on the first letter
        if merged_sex and base_sex and merged_sex[0] != base_sex[0]:
            warnings.append(f"Sex mismatch: merged={record.get('sex')}, deterministic={base.get('sex')}")

    @staticmethod
    def _check_missed_terms(record: Dict[str, Any], raw_text: str, warnings: List[str]):
        if not raw_text:
            return
        notes = raw_text.lower()
        # Complication context is copied from the notes, so it cannot vouch for a term
        complications = record.get("complications")
        if isinstance(complications, list):
            record = dict(record, complications=[
                {k: v for k, v in c.items() if k != "context"} if isinstance(c, Mapping) else c
                for c in complications
            ])
        serialized = json.dumps(record, default=str).lower()
        for term in CRITICAL_TERMS:
            if term in notes and term not in serialized:
                warnings.append(f'Potential missed complication: "{term}" found in notes but not in output')

    @staticmethod
    def _check_complications(record: Dict[str, Any], warnings: List[str], errors: List[str]):
        complications = record.get("complications")
        if complications is None:
            return
        if not isinstance(complications, list):
            errors.append("Complications should be a list")
            return
        for idx, comp in enumerate(complications, start=1):
            entry = comp if isinstance(comp, Mapping) else {}
            if not is_filled(entry.get("type")) and not is_filled(entry.get("specific")):
                warnings.append(f"Complication {idx} missing type/specific information")

    @staticmethod
    def _check_dates(record: Dict[str, Any], warnings: List[str], errors: List[str]):
        admit = parse_date(record.get("admitDate"))
        discharge = parse_date(record.get("dischargeDate"))
        procedure = parse_date(record.get("procedureDate"))

        if admit and discharge and admit > discharge:
            errors.append("Temporal inconsistency: admission date is after discharge date")

        if procedure and admit and discharge and not (admit <= procedure <= discharge):
            warnings.append("Procedure date outside of admission period")

    @staticmethod
    def _check_medications(record: Dict[str, Any], base: Dict[str, Any], warnings: List[str]):
        base_meds = [_leading_token(m) for m in base.get("dischargeMedications") or []]
        if not base_meds:
            return
        merged = {_leading_token(m) for m in record.get("dischargeMedications") or []}
        missed = [m for m in dict.fromkeys(base_meds) if m and m not in merged]
        if missed:
            warnings.append(f"Potentially missed medications: {', '.join(missed)}")

    # ============================================================
    # SCORES
    # ============================================================

    @staticmethod
    def confidence(record: RecordLike) -> Dict[str, float]:
        record = as_mapping(record)
        scores = {group: field_fraction(record, names) for group, names in CONFIDENCE_GROUPS.items()}
        scores["medications"] = 0.8 if is_filled(record.get("dischargeMedications")) else 0.3
        scores["overall"] = round(sum(scores[g] * w for g, w in CONFIDENCE_WEIGHTS.items()), 4)
        return scores

    @staticmethod
    def completeness(record: RecordLike):
        """(fraction of the checklist filled, missing checklist fields)"""
        record = as_mapping(record)
        missing = [n for n in COMPLETENESS_CHECKLIST if not is_filled(record.get(n))]
        return (len(COMPLETENESS_CHECKLIST) - len(missing)) / len(COMPLETENESS_CHECKLIST), missing


_validator: Optional[ClinicalDataValidator] = None


def get_validator() -> ClinicalDataValidator:
    global _validator
    if _validator is None:
        _validator = ClinicalDataValidator()
    return _validator
