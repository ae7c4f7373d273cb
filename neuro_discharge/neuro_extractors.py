"""
Deterministic Extractor

Applies the field pattern library to a NoteBundle, one field at a time,
against the note category conventionally holding that information:

    admission        demographics, admit date, admitting diagnosis, HPI,
                     PMH, PSH, allergies
    procedure/prog.  procedures, procedure date (first non-empty category)
    progress         hospital course, post-op progress
    final            discharge date, exams, vitals, medications, discharge
                     diagnosis, disposition, diet, activity, follow-up
    consultant       consultant recommendations
    adm+prog+final   imaging, complications, major events, neuro exam, KPS

When every category a field reads from is empty, the field reads the union
of all categories instead. Diagnoses additionally cascade:
primary category -> all categories -> bare "Diagnosis:" header -> semantic.

No timestamps, no randomness: the same bundle always yields the same
outcome. A field that matches nothing is left empty, never an error.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Tuple

from .config import DEFAULT_THRESHOLDS, ExtractionThresholds
from .extraction_rules import EMPTY_VALUES, FieldPatternLibrary, get_registry
from .functional_status import FunctionalStatusEstimator, condition_tier, describe_kps, get_estimator
from .provenance import SOURCE_ESTIMATED, FieldProvenance
from .schemas import Complication, ExtractedRecord, NoteBundle, NoteCategory
from .semantic_analyzer import SemanticFallbackAnalyzer, get_analyzer

logger = logging.getLogger("neuro-discharge")

A = NoteCategory.ADMISSION
P = NoteCategory.PROGRESS
C = NoteCategory.CONSULTANT
R = NoteCategory.PROCEDURE
F = NoteCategory.FINAL


class Source(NamedTuple):
    categories: Tuple[NoteCategory, ...]
    union: bool = False  # join categories instead of taking the first non-empty one


FIELD_SOURCES: Dict[str, Source] = {
    "patientName": Source((A,)),
    "age": Source((A,)),
    "sex": Source((A,)),
    "mrn": Source((A,)),
    "admitDate": Source((A,)),
    "historyPresenting": Source((A,)),
    "pmh": Source((A,)),
    "psh": Source((A,)),
    "allergies": Source((A,)),
    "procedures": Source((R, P)),
    "procedureDate": Source((R, P)),
    "hospitalCourse": Source((P,)),
    "postOpProgress": Source((P,)),
    "dischargeDate": Source((F,)),
    "currentExam": Source((F,)),
    "dischargeExam": Source((F,)),
    "vitalSigns": Source((F,)),
    "dischargeMedications": Source((F,)),
    "disposition": Source((F,)),
    "diet": Source((F,)),
    "activity": Source((F,)),
    "followUp": Source((F,)),
    "consultantRecommendations": Source((C,)),
    "imaging": Source((A, P, F), union=True),
    "complications": Source((A, P, F), union=True),
    "majorEvents": Source((A, P, F), union=True),
    "neurologicalExam": Source((A, P, F), union=True),
    "kps": Source((A, P, F), union=True),
}

SCALAR_FIELDS = (
    "patientName", "age", "sex", "mrn", "admitDate", "dischargeDate", "procedureDate",
    "historyPresenting", "allergies", "currentExam", "dischargeExam", "neurologicalExam",
    "vitalSigns", "disposition", "diet", "activity",
)

# Fields whose capture blocks are split into items
BLOCK_LIST_FIELDS = ("pmh", "psh", "followUp")

# Confidence groups reported alongside per-category confidence
FIELD_GROUPS = {
    "demographics": ("patientName", "age", "sex", "mrn"),
    "dates": ("admitDate", "dischargeDate", "procedureDate"),
    "diagnoses": ("admittingDiagnosis", "dischargeDiagnosis"),
    "clinical": ("procedures", "historyPresenting", "hospitalCourse"),
    "status": ("dischargeExam", "neurologicalExam", "kps"),
    "medications": ("dischargeMedications",),
    "planning": ("disposition", "followUp"),
}

# Weight of a field in its group by how it was filled
SOURCE_WEIGHTS = {"pattern": 1.0, "semantic": 0.5, "estimated": 0.5}

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")
_LIST_SPLIT = re.compile(r"[,\n]")
_COMPLICATION_SPLIT = re.compile(r"[,;\n]")
_DATE_PARTS = re.compile(r"[/-]")
_DIGIT = re.compile(r"\d")

_COMPLICATION_TYPES = (
    ("infection", re.compile(r"infection|abscess|meningitis|ventriculitis|sepsis|pneumonia|wound", re.I)),
    ("seizure", re.compile(r"seizure|convulsion|status epilepticus", re.I)),
    ("csf_leak", re.compile(r"csf|leak|pseudomeningocele|rhinorrhea", re.I)),
    ("hemorrhage", re.compile(r"hemorrhage|hematoma|bleed", re.I)),
    ("hydrocephalus", re.compile(r"hydrocephalus|ventriculomegaly", re.I)),
    ("dvt_pe", re.compile(r"\b(?:dvt|pe)\b|thrombosis|embolism", re.I)),
    ("deficit", re.compile(r"deficit|weakness|paresis|aphasia|numbness", re.I)),
)


# ============================================================
# VALUE NORMALIZATION
# ============================================================

def normalize_sex(value: str) -> str:
    v = value.strip().upper()
    if v in ("M", "MALE", "MAN"):
        return "Male"
    if v in ("F", "FEMALE", "WOMAN"):
        return "Female"
    return value.strip()


def normalize_date(value: str) -> str:
    """MM/DD/YYYY with zero padding; two-digit years read as 20YY."""
    parts = _DATE_PARTS.split(value.strip())
    if len(parts) != 3:
        return value.strip()
    month, day, year = parts
    if len(year) == 2:
        year = f"20{year}"
    return f"{month.zfill(2)}/{day.zfill(2)}/{year}"


def strip_bullet(line: str) -> str:
    return _BULLET.sub("", line).strip()


def split_list_block(block: str) -> List[str]:
    """Split a captured PMH/PSH/follow-up block into items."""
    items = []
    for raw in _LIST_SPLIT.split(block):
        item = strip_bullet(raw)
        if item and not EMPTY_VALUES.match(item):
            items.append(item)
    return items


def parse_medication_lines(block: str) -> List[str]:
    """
    Medication lines must carry a dose (a digit after any list numbering).
    A line holding several comma-joined dosed medications is split.
    """
    meds = []
    for raw in block.split("\n"):
        line = strip_bullet(raw)
        if not line or not _DIGIT.search(line):
            continue
        pieces = [p.strip() for p in line.split(",") if p.strip()]
        if len(pieces) > 1 and all(_DIGIT.search(p) for p in pieces):
            meds.extend(pieces)
        else:
            meds.append(line)
    return meds


def split_recommendations(block: str) -> List[str]:
    lines = [strip_bullet(line) for line in block.split("\n")]
    return [line for line in lines if len(line) > 5]


def classify_complication(text: str) -> str:
    for name, pattern in _COMPLICATION_TYPES:
        if pattern.search(text):
            return name
    return "other"


# ============================================================
# EXTRACTOR
# ============================================================

@dataclass
class ExtractionOutcome:
    """Record plus where each value came from and how confident the pass was."""
    record: ExtractedRecord
    provenance: Dict[str, FieldProvenance] = field(default_factory=dict)
    confidence: Dict[str, float] = field(default_factory=dict)

    def provenance_dict(self) -> Dict[str, dict]:
        return {name: p.to_dict() for name, p in self.provenance.items()}


class DeterministicExtractor:
    """
    Rule cascade over a NoteBundle.

    The library snapshot is taken once per extract() call, so a concurrent
    registry swap never mixes two rule versions within one record.
    """

    def __init__(
        self,
        library: Optional[FieldPatternLibrary] = None,
        thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS,
        analyzer: Optional[SemanticFallbackAnalyzer] = None,
        estimator: Optional[FunctionalStatusEstimator] = None,
    ):
        self._library = library
        self.thresholds = thresholds
        self.analyzer = analyzer or get_analyzer()
        self.estimator = estimator or get_estimator()

    @property
    def library(self) -> FieldPatternLibrary:
        return self._library or get_registry().current()

    def extract(self, bundle: NoteBundle) -> ExtractionOutcome:
        library = self.library
        record = ExtractedRecord()
        outcome = ExtractionOutcome(record=record)

        if bundle.is_empty():
            outcome.confidence = self._confidence(outcome, bundle)
            return outcome

        for name in SCALAR_FIELDS:
            self._extract_scalar(library, bundle, name, outcome)

        if not record.dischargeExam and record.currentExam:
            record.dischargeExam = record.currentExam
            outcome.provenance["dischargeExam"] = outcome.provenance["currentExam"]

        self._extract_diagnoses(library, bundle, outcome)
        self._extract_lists(library, bundle, outcome)
        self._extract_functional_status(library, bundle, outcome)

        analysis = self.analyzer.analyze(bundle.all_text())
        outcome.provenance.update(self.analyzer.backfill(record, analysis))

        outcome.confidence = self._confidence(outcome, bundle)
        logger.debug(
            f"[EXTRACT] {len(outcome.provenance)} fields filled, "
            f"confidence={outcome.confidence}"
        )
        return outcome

    # ------------------------------------------------------------
    # Text routing
    # ------------------------------------------------------------

    def source_text(self, bundle: NoteBundle, name: str) -> Tuple[str, str]:
        """(text, category label) a field reads from."""
        source = FIELD_SOURCES[name]
        if source.union:
            parts = [bundle.get(c) for c in source.categories if bundle.get(c)]
            if parts:
                return "\n".join(parts), "+".join(c.value for c in source.categories if bundle.get(c))
        else:
            for category in source.categories:
                text = bundle.get(category)
                if text:
                    return text, category.value
        return bundle.all_text(), "all"

    # ------------------------------------------------------------
    # Field passes
    # ------------------------------------------------------------

    def _extract_scalar(self, library: FieldPatternLibrary, bundle: NoteBundle, name: str, outcome: ExtractionOutcome):
        text, category = self.source_text(bundle, name)
        hit = library.first(name, text, self.thresholds)
        if hit is None:
            return
        rule, value, match = hit
        if name == "sex":
            value = normalize_sex(value)
        elif name.endswith("Date"):
            value = normalize_date(value)
        setattr(outcome.record, name, value)
        outcome.provenance[name] = FieldProvenance.from_match(rule.name, category, match)

    def _first_of(self, library, field_name: str, attempts) -> Optional[Tuple[str, FieldProvenance]]:
        for text, category in attempts:
            if not text:
                continue
            hit = library.first(field_name, text, self.thresholds)
            if hit is not None:
                rule, value, match = hit
                return value, FieldProvenance.from_match(rule.name, category, match)
        return None

    def _extract_diagnoses(self, library: FieldPatternLibrary, bundle: NoteBundle, outcome: ExtractionOutcome):
        all_text = bundle.all_text()
        admission = bundle.get(A)
        final = bundle.get(F)

        cascades = {
            "admittingDiagnosis": [
                ("admittingDiagnosis", [(admission, A.value), (all_text, "all")]),
                ("diagnosisHeader", [(admission, A.value), (all_text, "all")]),
            ],
            "dischargeDiagnosis": [
                ("dischargeDiagnosis", [(final, F.value), (all_text, "all")]),
                ("diagnosisHeader", [(final, F.value), (all_text, "all")]),
            ],
        }
        for name, steps in cascades.items():
            for rules_field, attempts in steps:
                found = self._first_of(library, rules_field, attempts)
                if found is not None:
                    value, provenance = found
                    setattr(outcome.record, name, value)
                    outcome.provenance[name] = provenance
                    break

    def _extract_lists(self, library: FieldPatternLibrary, bundle: NoteBundle, outcome: ExtractionOutcome):
        record = outcome.record

        for name in ("procedures", "imaging", "postOpProgress") + BLOCK_LIST_FIELDS + ("dischargeMedications",):
            text, category = self.source_text(bundle, name)
            rule, hits = library.all(name, text, self.thresholds)
            if not hits:
                continue

            if name in BLOCK_LIST_FIELDS:
                values = [item for value, _ in hits for item in split_list_block(value)]
            elif name == "dischargeMedications":
                values = [med for value, _ in hits for med in parse_medication_lines(value)]
            else:
                values = [value for value, _ in hits]

            if values:
                setattr(record, name, values)
                outcome.provenance[name] = FieldProvenance.from_match(rule.name, category, hits[0][1])

        # Hospital course joins every hit of the winning rule
        text, category = self.source_text(bundle, "hospitalCourse")
        rule, hits = library.all("hospitalCourse", text, self.thresholds)
        if not hits and category != "all":
            text, category = bundle.all_text(), "all"
            rule, hits = library.all("hospitalCourse", text, self.thresholds)
        if hits:
            record.hospitalCourse = "\n\n".join(value for value, _ in hits)
            outcome.provenance["hospitalCourse"] = FieldProvenance.from_match(rule.name, category, hits[0][1])

        self._extract_consultant_recommendations(library, bundle, outcome)
        self._extract_complications(library, bundle, outcome)
        self._extract_major_events(library, bundle, outcome)

    def _extract_consultant_recommendations(self, library: FieldPatternLibrary, bundle: NoteBundle, outcome: ExtractionOutcome):
        # A generic "Plan:" block counts only inside consultant notes; elsewhere a
        # named consultant has to be recommending something
        consultant = bundle.get(C)
        rule, hits = library.all("consultantRecommendations", consultant, self.thresholds)
        if hits:
            values = [rec for value, _ in hits for rec in split_recommendations(value)]
            category = C.value
        else:
            rule, hits = library.all("consultantReferences", bundle.all_text(), self.thresholds)
            values = [value for value, _ in hits]
            category = "all"
        if values:
            outcome.record.consultantRecommendations = values
            outcome.provenance["consultantRecommendations"] = FieldProvenance.from_match(rule.name, category, hits[0][1])

    def _extract_complications(self, library: FieldPatternLibrary, bundle: NoteBundle, outcome: ExtractionOutcome):
        text, category = self.source_text(bundle, "complications")
        rule, hits = library.all("complications", text, self.thresholds)
        complications = []
        for value, _ in hits:
            for item in _COMPLICATION_SPLIT.split(value):
                item = strip_bullet(item)
                if len(item) <= 3 or EMPTY_VALUES.match(item):
                    continue
                complications.append(Complication(type=classify_complication(item), specific=item))
        if complications:
            outcome.record.complications = complications
            outcome.provenance["complications"] = FieldProvenance.from_match(rule.name, category, hits[0][1])

    def _extract_major_events(self, library: FieldPatternLibrary, bundle: NoteBundle, outcome: ExtractionOutcome):
        text, category = self.source_text(bundle, "majorEvents")
        rule, hits = library.all("majorEvents", text, self.thresholds)
        events: List[str] = []
        seen_terms = set()
        for term, match in hits:
            key = term.lower()
            if key in seen_terms:
                continue
            seen_terms.add(key)
            start = max(0, match.start() - self.thresholds.event_context_before)
            end = min(len(text), match.start() + self.thresholds.event_context_after)
            events.append(" ".join(text[start:end].split()))
        if events:
            outcome.record.majorEvents = events
            outcome.provenance["majorEvents"] = FieldProvenance.from_match(rule.name, category, hits[0][1])

    def _extract_functional_status(self, library: FieldPatternLibrary, bundle: NoteBundle, outcome: ExtractionOutcome):
        record = outcome.record
        text, category = self.source_text(bundle, "kps")
        hit = library.first("kps", text, self.thresholds)
        if hit is not None:
            rule, value, match = hit
            score = int(value)
            record.kps = str(score)
            record.dischargeConditionScore = condition_tier(score)
            record.functionalStatus = describe_kps(score)
            outcome.provenance["kps"] = FieldProvenance.from_match(rule.name, category, match)
            return

        exam_text = " ".join(v for v in (record.neurologicalExam, record.dischargeExam, record.currentExam) if v)
        if not exam_text:
            return
        estimate = self.estimator.estimate(exam_text)
        if estimate.has_estimate:
            record.kps = str(estimate.kps)
            record.functionalStatus = estimate.description
            record.dischargeConditionScore = estimate.condition_score
            outcome.provenance["kps"] = FieldProvenance(
                rule="functional_status_ladder",
                category="exam",
                source=SOURCE_ESTIMATED,
                context=", ".join(estimate.signals),
            )

    # ------------------------------------------------------------
    # Confidence
    # ------------------------------------------------------------

    def _confidence(self, outcome: ExtractionOutcome, bundle: NoteBundle) -> Dict[str, float]:
        record = outcome.record
        scores: Dict[str, float] = {}

        for group, names in FIELD_GROUPS.items():
            earned = 0.0
            for name in names:
                if record.is_empty_field(name):
                    continue
                provenance = outcome.provenance.get(name)
                earned += SOURCE_WEIGHTS.get(provenance.source, 1.0) if provenance else 1.0
            scores[group] = round(earned / len(names), 3)

        # Per category: share of the fields routed to it that were filled by a pattern read from it
        for category in NoteCategory:
            routed = [n for n, s in FIELD_SOURCES.items() if category in s.categories]
            if not bundle.get(category) or not routed:
                scores[category.value] = 0.0
                continue
            hits = sum(
                1 for n in routed
                if n in outcome.provenance
                and outcome.provenance[n].source == "pattern"
                and category.value in outcome.provenance[n].category.split("+")
            )
            scores[category.value] = round(hits / len(routed), 3)

        return scores


_extractor: Optional[DeterministicExtractor] = None


def get_extractor() -> DeterministicExtractor:
    """Get or create the shared extractor (reads the registry's current library)."""
    global _extractor
    if _extractor is None:
        _extractor = DeterministicExtractor()
    return _extractor
