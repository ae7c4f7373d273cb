"""
Pydantic schemas for data validation.
Defines the data structures that flow through the discharge extraction pipeline:
note bundles, the extracted patient record, augmentation payloads and the
validation report handed to the rendering layer.
"""

import re
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


class NoteCategory(str, Enum):
    ADMISSION = "admission"
    PROGRESS = "progress"
    CONSULTANT = "consultant"
    PROCEDURE = "procedure"
    FINAL = "final"


_WS = re.compile(r"\s+")


def normalize_key(value: str) -> str:
    """Case-insensitive, whitespace-normalized comparison key."""
    return _WS.sub(" ", str(value)).strip().lower()


def dedupe(items: List[Any], key=None) -> List[Any]:
    """Drop duplicates (by normalized key) while keeping first-seen order."""
    key = key or normalize_key
    seen = set()
    out = []
    for item in items:
        k = key(item)
        if not k or k in seen:
            continue
        seen.add(k)
        out.append(item)
    return out


class NoteBundle(BaseModel):
    """Clinical text grouped by note category."""
    admission: str = ""
    progress: str = ""
    consultant: str = ""
    procedure: str = ""
    final: str = ""

    @field_validator("admission", "progress", "consultant", "procedure", "final", mode="before")
    @classmethod
    def _blank_to_empty(cls, v):
        if v is None:
            return ""
        return v if str(v).strip() else ""

    def get(self, category: NoteCategory) -> str:
        return getattr(self, category.value)

    def all_text(self) -> str:
        return "\n".join(self.get(c) for c in NoteCategory)

    def non_empty_categories(self) -> List[NoteCategory]:
        return [c for c in NoteCategory if self.get(c).strip()]

    def is_empty(self) -> bool:
        return not self.non_empty_categories()


# ============================================================
# AUGMENTATION PAYLOADS
# ============================================================

class Complication(BaseModel):
    """A single post-operative or in-hospital complication."""
    type: str = ""
    specific: str = ""
    onset: str = ""
    severity: str = ""
    treatment: str = ""
    status: str = ""
    context: str = ""  # surrounding note text, set by keyword detection


class ConsultantEntry(BaseModel):
    """Recommendations from one consulting service."""
    service: str = ""
    date: str = ""
    recommendations: List[str] = []
    medications: List[str] = []
    followUp: str = ""
    duration: str = ""


def complication_key(c: "Complication") -> str:
    return normalize_key(f"{c.type}|{c.specific}")


def consultant_key(c: "ConsultantEntry") -> str:
    return normalize_key(c.service)


_POD_SPLIT = re.compile(r"(?=\b(?:POD|Post-?op(?:erative)? day|Hospital day|HD)\s*#?\s*\d+)", re.IGNORECASE)


def split_progress_segments(value: Any) -> List[str]:
    """Accept a list of segments or a 'POD 1: ... POD 2: ...' string."""
    if value is None:
        return []
    if isinstance(value, str):
        parts = _POD_SPLIT.split(value)
        if len(parts) <= 1:
            parts = value.split("\n\n")
        return [p.strip() for p in parts if p.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


class ComplicationReport(BaseModel):
    kind: Literal["complications"] = "complications"
    complications: List[Complication] = []
    hasComplications: bool = False
    complicationCount: int = 0


class ConsultantReport(BaseModel):
    kind: Literal["consultants"] = "consultants"
    consultants: List[ConsultantEntry] = []
    recommendations: List[str] = []
    count: int = 0


class SynthesizedNarrative(BaseModel):
    kind: Literal["narrative"] = "narrative"
    historyPresenting: str = ""
    hospitalCourse: str = ""
    postOpProgress: List[str] = []
    majorEvents: List[str] = []
    currentStatus: str = ""

    @field_validator("postOpProgress", mode="before")
    @classmethod
    def _segments(cls, v):
        return split_progress_segments(v)


class AugmentationResult(BaseModel):
    """Output of one augmentation adapter, tagged with where it came from."""
    adapter: str
    source: Literal["llm", "fallback", "skipped"]
    payload: Union[ComplicationReport, ConsultantReport, SynthesizedNarrative]
    error: Optional[str] = None


# ============================================================
# EXTRACTED RECORD
# ============================================================

LIST_FIELDS = (
    "procedures", "imaging", "consultantRecommendations", "postOpProgress",
    "majorEvents", "pmh", "psh", "followUp", "dischargeMedications",
)


class ExtractedRecord(BaseModel):
    """Flat structured patient record consumed by the summary renderer."""
    model_config = ConfigDict(validate_assignment=True)

    # Demographics
    patientName: str = ""
    age: str = ""
    sex: str = ""
    mrn: str = ""

    # Dates
    admitDate: str = ""
    dischargeDate: str = ""
    procedureDate: str = ""

    # Diagnoses
    admittingDiagnosis: str = ""
    dischargeDiagnosis: str = ""

    # Clinical course
    procedures: List[str] = []
    historyPresenting: str = ""
    hospitalCourse: str = ""
    complications: List[Complication] = []
    imaging: List[str] = []
    consultantRecommendations: List[str] = []
    consultants: List[ConsultantEntry] = []
    postOpProgress: List[str] = []
    majorEvents: List[str] = []

    # Current status
    currentExam: str = ""
    dischargeExam: str = ""
    neurologicalExam: str = ""
    vitalSigns: str = ""

    # Functional status
    kps: str = ""
    dischargeConditionScore: str = ""
    functionalStatus: str = ""

    # Medications and history
    dischargeMedications: List[str] = []
    allergies: str = ""
    pmh: List[str] = []
    psh: List[str] = []

    # Discharge planning
    disposition: str = ""
    diet: str = ""
    activity: str = ""
    followUp: List[str] = []

    extractionMethod: str = "deterministic"

    @field_validator(*LIST_FIELDS)
    @classmethod
    def _dedupe_strings(cls, v: List[str]) -> List[str]:
        return dedupe([s.strip() for s in v if s and s.strip()])

    @field_validator("complications")
    @classmethod
    def _dedupe_complications(cls, v: List[Complication]) -> List[Complication]:
        return dedupe(v, key=complication_key)

    @field_validator("consultants")
    @classmethod
    def _dedupe_consultants(cls, v: List[ConsultantEntry]) -> List[ConsultantEntry]:
        return dedupe(v, key=consultant_key)

    def is_empty_field(self, name: str) -> bool:
        value = getattr(self, name)
        if isinstance(value, list):
            return len(value) == 0
        return not str(value).strip()


# ============================================================
# VALIDATION / PIPELINE OUTPUT
# ============================================================

class ValidationReport(BaseModel):
    """Immutable result of cross-source validation."""
    model_config = ConfigDict(frozen=True)

    isValid: bool = True
    warnings: List[str] = []
    errors: List[str] = []
    confidenceScores: Dict[str, float] = {}
    completeness: float = 0.0
    missingElements: List[str] = []


class ExtractionResult(BaseModel):
    """Everything one extraction run hands back to the caller."""
    record: ExtractedRecord
    baseline: ExtractedRecord
    validation: ValidationReport
    pipeline: Dict[str, str] = {}
    metadata: Dict[str, Any] = {}


class ExtractRequest(BaseModel):
    """Request body for the extraction endpoint."""
    notes: str
    use_llm: bool = True


class ExtractBundleRequest(BaseModel):
    bundle: NoteBundle
    use_llm: bool = True
