"""
Narrative synthesizer: HPI, hospital course, post-op progress, major events
and current status.

The fallback does not write prose. It reuses the deterministic narrative
fields and, when no hospital course was found, strings one together from the
diagnosis, procedures and complications.
"""

import json

from ..schemas import ExtractedRecord, NoteBundle, SynthesizedNarrative
from .base import AugmentationAdapter

# Baseline fields shown to the model
CONTEXT_FIELDS = (
    "patientName", "age", "sex", "admittingDiagnosis", "dischargeDiagnosis", "procedures",
    "historyPresenting", "hospitalCourse", "complications", "postOpProgress", "majorEvents",
    "dischargeExam", "currentExam", "kps",
)

PROMPT = """You are a neurosurgical documentation specialist. Synthesize a concise clinical narrative from the extracted data and notes.

EXTRACTED DATA:
{extracted}

CLINICAL NOTES:
{notes}

Include:
1. HISTORY OF PRESENTING ILLNESS: chief complaint and timeline
2. HOSPITAL COURSE: chronological summary of treatment and response
3. POST-OPERATIVE PROGRESS: day-by-day progress if applicable
4. MAJOR EVENTS: significant clinical events during hospitalization
5. CURRENT STATUS: condition at discharge

Do not add facts that are not in the notes.

Return ONLY valid JSON:
{{
  "historyPresenting": "Brief HPI...",
  "hospitalCourse": "Chronological summary...",
  "postOpProgress": "POD 1: ... POD 2: ...",
  "majorEvents": ["Event 1", "Event 2"],
  "currentStatus": "Condition at discharge..."
}}"""


def basic_hospital_course(record: ExtractedRecord) -> str:
    parts = []
    if record.admittingDiagnosis:
        parts.append(f"Patient admitted with {record.admittingDiagnosis}.")
    if record.procedures:
        parts.append(f"Underwent {', '.join(record.procedures)}.")
    if record.complications:
        parts.append(f"Complications: {', '.join(c.specific or c.type for c in record.complications)}.")
    if not parts:
        return ""
    parts.append("Patient progressed through recovery as documented in progress notes.")
    return " ".join(parts)


class NarrativeSynthesizer(AugmentationAdapter):
    name = "narrative"
    payload_model = SynthesizedNarrative
    temperature = 0.2
    max_tokens = 2000

    def build_prompt(self, notes: NoteBundle, baseline: ExtractedRecord) -> str:
        extracted = baseline.model_dump(include=set(CONTEXT_FIELDS))
        return PROMPT.format(
            extracted=json.dumps(extracted, indent=2),
            notes=json.dumps(notes.model_dump(), indent=2),
        )

    def fallback(self, notes: NoteBundle, baseline: ExtractedRecord) -> SynthesizedNarrative:
        history = baseline.historyPresenting
        if not history and baseline.admittingDiagnosis:
            history = f"Patient admitted with {baseline.admittingDiagnosis}."
        return SynthesizedNarrative(
            historyPresenting=history,
            hospitalCourse=baseline.hospitalCourse or basic_hospital_course(baseline),
            postOpProgress=list(baseline.postOpProgress),
            majorEvents=list(baseline.majorEvents),
            currentStatus=baseline.dischargeExam or baseline.currentExam,
        )
