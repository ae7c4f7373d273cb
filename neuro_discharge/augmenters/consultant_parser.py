"""
Consultant parser: per-service recommendations from consultant notes.

Only reads the consultant category. With no consultant text the adapter is
skipped and returns an empty report.
"""

import re
from typing import Any, List, Tuple

from ..extraction_rules import DATE
from ..schemas import ConsultantEntry, ConsultantReport, ExtractedRecord, NoteBundle
from .base import AugmentationAdapter

# Service -> header alternation. "ID" is matched case-sensitively.
SERVICE_HEADERS = (
    ("Infectious Disease", r"(?-i:ID)|Infectious Diseases?"),
    ("Hematology", r"Hematology|Thrombosis|Anticoagulation"),
    ("Cardiology", r"Cardiology"),
    ("Endocrinology", r"Endocrin(?:e|ology)"),
    ("Neurology", r"Neurology"),
    ("Physical Therapy", r"Physical Therapy|(?-i:PT)"),
)

# Service named at the start of a line, or followed by consult/consultation anywhere
_SERVICE_PATTERNS = tuple(
    (service, re.compile(
        rf"^[ \t]*(?:{names})\b|\b(?:{names})[ \t]+(?:consult(?:ation)?|recommendations)\b",
        re.IGNORECASE | re.MULTILINE,
    ))
    for service, names in SERVICE_HEADERS
)

_BULLET_LINE = re.compile(r"^[ \t]*(?:[-•*]|\d+[.)])[ \t]*(.+)$", re.MULTILINE)
_DOSE = re.compile(r"\b\d+(?:\.\d+)?[ \t]*(?:mg|mcg|g|units?|mL)\b", re.IGNORECASE)
_FOLLOW_UP = re.compile(r"[^.\n]*\bfollow[- ]?up\b[^.\n]*", re.IGNORECASE)
_DURATION = re.compile(r"\b(?:for|x)[ \t]+(\d+[ \t]+(?:days?|weeks?|months?))", re.IGNORECASE)
_DATE = re.compile(DATE)

PROMPT = """You are an expert at parsing medical consultant notes. Extract ALL consultant recommendations from these notes.

FOCUS ON:
- Infectious Disease recommendations (antibiotics, monitoring)
- Thrombosis/Hematology recommendations (anticoagulation)
- Endocrinology recommendations
- Cardiology recommendations
- Any specialist follow-up requirements

CONSULTANT NOTES:
{notes}

For each consultant, extract service, date of consultation, key recommendations,
medications prescribed/recommended, follow-up requirements and duration of treatment.

Return ONLY valid JSON:
{{
  "consultants": [
    {{
      "service": "Infectious Disease",
      "date": "12/15/2024",
      "recommendations": ["Continue vancomycin for 6 weeks", "Weekly CBC and CRP monitoring"],
      "medications": ["Vancomycin 1g IV q12h"],
      "followUp": "ID clinic in 2 weeks",
      "duration": "6 weeks"
    }}
  ],
  "count": 1
}}"""


def flatten_recommendations(consultants: List[ConsultantEntry]) -> List[str]:
    return [f"{c.service}: {rec}" for c in consultants for rec in c.recommendations]


def build_report(consultants: List[ConsultantEntry]) -> ConsultantReport:
    return ConsultantReport(
        consultants=consultants,
        recommendations=flatten_recommendations(consultants),
        count=len(consultants),
    )


def find_service_sections(text: str) -> List[Tuple[str, str]]:
    """(service, section text) in document order; a section runs to the next service header."""
    starts = []
    for service, pattern in _SERVICE_PATTERNS:
        match = pattern.search(text)
        if match:
            starts.append((match.start(), service))
    starts.sort()
    sections = []
    for i, (start, service) in enumerate(starts):
        end = starts[i + 1][0] if i + 1 < len(starts) else len(text)
        sections.append((service, text[start:end]))
    return sections


def parse_section(service: str, section: str) -> ConsultantEntry:
    recommendations = [m.group(1).strip() for m in _BULLET_LINE.finditer(section)]
    date = _DATE.search(section)
    follow_up = _FOLLOW_UP.search(section)
    duration = _DURATION.search(section)
    return ConsultantEntry(
        service=service,
        date=date.group(1) if date else "",
        recommendations=recommendations,
        medications=[r for r in recommendations if _DOSE.search(r)],
        followUp=follow_up.group(0).strip(" -*•\t") if follow_up else "",
        duration=duration.group(1) if duration else "",
    )


class ConsultantParser(AugmentationAdapter):
    name = "consultants"
    payload_model = ConsultantReport
    temperature = 0.1
    max_tokens = 1500

    def should_skip(self, notes: NoteBundle) -> bool:
        return not notes.consultant.strip()

    def build_prompt(self, notes: NoteBundle, baseline: ExtractedRecord) -> str:
        return PROMPT.format(notes=notes.consultant)

    def coerce(self, data: Any) -> ConsultantReport:
        if isinstance(data, list):
            data = {"consultants": data}
        report = ConsultantReport.model_validate(data)
        return build_report(report.consultants)

    def fallback(self, notes: NoteBundle, baseline: ExtractedRecord) -> ConsultantReport:
        consultants = []
        for service, section in find_service_sections(notes.consultant):
            entry = parse_section(service, section)
            if entry.recommendations:
                consultants.append(entry)
        return build_report(consultants)
