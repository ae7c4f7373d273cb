"""
Complication detector: finds post-operative and in-hospital complications.
"""

import re
from typing import Any

from ..schemas import Complication, ComplicationReport, ExtractedRecord, NoteBundle
from .base import AugmentationAdapter

I = re.IGNORECASE

# Checked in this order; first matched term per family is reported
COMPLICATION_FAMILIES = (
    ("infection", re.compile(r"\b(wound[^.\n]*?infection|infection|infected|meningitis|ventriculitis|abscess)\b", I)),
    ("seizure", re.compile(r"\b(seizures?|convulsions?|epileptic|status epilepticus)\b", I)),
    ("deficit", re.compile(r"\b(new[^.\n]*?deficit|weakness|\w*paresis|\w*plegia|numbness|sensory[^.\n]*?loss)\b", I)),
    ("csf_leak", re.compile(r"\b(csf[^.\n]*?leak|cerebrospinal[^.\n]*?leak|rhinorrhea|otorrhea)\b", I)),
    ("hemorrhage", re.compile(r"\b(hemorrhage|bleeding|rebleed|hematoma)\b", I)),
    ("hydrocephalus", re.compile(r"\b(hydrocephalus|ventricular[^.\n]*?dilation)\b", I)),
    # Skips "PE:" exam headers and "DVT/PE prophylaxis" orders
    ("dvt_pe", re.compile(
        r"\b(deep vein thrombosis|pulmonary embolism|DVT|PE)\b"
        r"(?![ \t]*:)(?!(?:[ \t]*/[ \t]*(?:DVT|PE))?[ \t]+(?i:prophylaxis|ppx)\b)")),
)

PROMPT = """You are a neurosurgical complications expert. Analyze these clinical notes and identify ALL complications.

CRITICAL COMPLICATIONS TO DETECT:
- Infections (surgical site, meningitis, ventriculitis, wound infection)
- Seizures (clinical or electrographic)
- New neurological deficits (motor, sensory, cognitive)
- CSF leaks
- Hemorrhage or rebleeding
- Hydrocephalus
- DVT/PE
- Other post-operative complications

Only report complications that actually occurred. Negated findings ("no seizures") are not complications.

NOTES:
Admission: {admission}
Progress: {progress}
Consultant: {consultant}
Procedure: {procedure}
Final: {final}

Return ONLY valid JSON in this format:
{{
  "complications": [
    {{
      "type": "infection",
      "specific": "surgical site infection",
      "onset": "POD 3",
      "severity": "moderate",
      "treatment": "antibiotics started",
      "status": "improving"
    }}
  ],
  "hasComplications": true,
  "complicationCount": 1
}}

If NO complications found, return:
{{"complications": [], "hasComplications": false, "complicationCount": 0}}"""


def build_report(complications) -> ComplicationReport:
    return ComplicationReport(
        complications=complications,
        hasComplications=bool(complications),
        complicationCount=len(complications),
    )


class ComplicationDetector(AugmentationAdapter):
    name = "complications"
    payload_model = ComplicationReport
    temperature = 0.1
    max_tokens = 1500

    def build_prompt(self, notes: NoteBundle, baseline: ExtractedRecord) -> str:
        return PROMPT.format(**notes.model_dump())

    def coerce(self, data: Any) -> ComplicationReport:
        # Count and flag are recomputed, models sometimes disagree with themselves
        if isinstance(data, list):
            data = {"complications": data}
        report = ComplicationReport.model_validate(data)
        return build_report(report.complications)

    def fallback(self, notes: NoteBundle, baseline: ExtractedRecord) -> ComplicationReport:
        text = notes.all_text()
        window = self.thresholds.context_window
        complications = []
        for family, pattern in COMPLICATION_FAMILIES:
            match = pattern.search(text)
            if not match:
                continue
            start, end = match.span()
            complications.append(Complication(
                type=family,
                specific=match.group(1).strip(),
                status="documented",
                context=" ".join(text[max(0, start - window):end + window].split()),
            ))
        return build_report(complications)
