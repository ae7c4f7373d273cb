"""
Field Pattern Library

Ordered, named extraction rules per field. A rule is data: a compiled
pattern, the capture group holding the value, and an optional acceptance
predicate. Rules for a field are tried in declared order and the first
accepted match wins; for list fields the first rule yielding any accepted
candidate wins with all of its accepted matches.

The library itself is immutable. RuleLibraryRegistry holds the current
snapshot; readers take it without locking, writers build a new snapshot
and swap it in under a lock.

Acceptance predicates encode the precision layer. Header matching on
"Procedure:" or "Reason for Admission:" regularly captures template
boilerplate ("progress", "(s) (LRB)") or narrative prose, so candidates are
rejected on length, narrative markers, sentence count and, for procedures,
the absence of a recognized procedure term.
"""

import logging
import re
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Pattern, Sequence, Tuple

from .config import DEFAULT_THRESHOLDS, ExtractionThresholds

logger = logging.getLogger("neuro-discharge")

Predicate = Callable[[str, ExtractionThresholds], bool]

I = re.IGNORECASE
M = re.MULTILINE


# ============================================================
# ACCEPTANCE PREDICATES
# ============================================================

NARRATIVE_MARKERS = re.compile(
    r"\b(he|she|patient|denies|reports|states|presents with|led to|his|her)\b", I
)

PROCEDURE_TERMS = re.compile(
    r"\b(craniotomy|craniectomy|laminectomy|discectomy|fusion|biopsy|resection|excision|removal|"
    r"drainage|evacuation|decompression|clipping|coiling|shunt|evd|minicraniotomy|duraplasty|"
    r"ventriculostomy|embolization|laminoplasty|foraminotomy|corpectomy|kyphoplasty|vertebroplasty)\b",
    I,
)

# Template tokens that header matching picks up instead of real content
NOISE_TOKENS = re.compile(
    r"^(progress|notes?|s|LRB|RRB|\(s\)|\([A-Z]+\)|assessment|plan|in bed|received|see below|as follows)$", I
)
BARE_ABBREVIATION = re.compile(r"^[()\s\w]{1,5}$")
_SENTENCE_SPLIT = re.compile(r"[.!?]")
_NON_WORD = re.compile(r"[^\w\s]")

EMPTY_VALUES = re.compile(r"^(none|n/?a|nil|noncontributory|non-contributory|unknown|-+)\.?$", I)


def is_narrative(text: str) -> bool:
    return bool(NARRATIVE_MARKERS.search(text))


def looks_like_header(text: str) -> bool:
    stripped = text.strip()
    return not stripped or stripped.endswith(":")


def sentence_parts(text: str) -> int:
    return len(_SENTENCE_SPLIT.split(text))


def is_plausible_diagnosis(text: str, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS) -> bool:
    """Reject prose, over-long captures and bare headers."""
    value = text.strip()
    if looks_like_header(value) or EMPTY_VALUES.match(value):
        return False
    if len(value) > thresholds.diagnosis_max_chars:
        return False
    if is_narrative(value):
        return False
    return sentence_parts(value) <= thresholds.max_sentence_parts


def is_plausible_procedure(text: str, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS) -> bool:
    """Procedure candidates must read like an operation, not template text."""
    value = text.strip()
    if looks_like_header(value):
        return False
    if len(value) < thresholds.procedure_min_chars or len(value) > thresholds.procedure_max_chars:
        return False
    if BARE_ABBREVIATION.match(value) or NOISE_TOKENS.match(value):
        return False
    words = [w for w in _NON_WORD.sub("", value).split() if len(w) >= thresholds.procedure_word_min_len]
    if len(words) < thresholds.procedure_min_words:
        return False
    if not PROCEDURE_TERMS.search(value):
        return False
    if is_narrative(value):
        return False
    return sentence_parts(value) <= thresholds.max_sentence_parts


def has_content(text: str, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS) -> bool:
    value = text.strip()
    return bool(value) and not looks_like_header(value) and not EMPTY_VALUES.match(value)


def is_plausible_name(text: str, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS) -> bool:
    first = text.strip().split()[0] if text.strip() else ""
    return bool(first) and first.lower() not in _NAME_STOPWORDS


_NAME_STOPWORDS = {
    "name", "age", "sex", "gender", "is", "was", "has", "had", "admitted", "presented",
    "underwent", "denies", "reports", "awake", "alert", "doing", "seen", "evaluated",
}


def is_valid_age(text: str, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS) -> bool:
    return text.isdigit() and 0 < int(text) <= 120


def is_valid_kps(text: str, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS) -> bool:
    return text.isdigit() and 0 <= int(text) <= 100


def not_none_statement(text: str, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS) -> bool:
    value = text.strip().lower()
    return has_content(value) and not value.startswith(("no ", "none", "no complication"))


# ============================================================
# RULES
# ============================================================

@dataclass(frozen=True)
class ExtractionRule:
    """
    One named way of finding a field value.

    Attributes:
        name: Stable rule name, recorded in field provenance
        pattern: Compiled regular expression
        group: Capture group holding the value (0 for the whole match)
        accept: Optional predicate over (value, thresholds)
    """
    name: str
    pattern: Pattern
    group: int = 1
    accept: Optional[Predicate] = None

    def candidates(self, text: str, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS) -> Iterator[Tuple[str, "re.Match"]]:
        """Yield every accepted (value, match) pair in text order."""
        if not text:
            return
        for match in self.pattern.finditer(text):
            value = match.group(self.group)
            if value is None:
                continue
            value = value.strip()
            if not value:
                continue
            if self.accept is not None and not self.accept(value, thresholds):
                logger.debug(f"[RULES] {self.name} rejected candidate: {value[:60]!r}")
                continue
            yield value, match

    def first(self, text: str, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS) -> Optional[Tuple[str, "re.Match"]]:
        return next(self.candidates(text, thresholds), None)


def rule(name: str, pattern: str, flags: int = 0, group: int = 1, accept: Optional[Predicate] = None) -> ExtractionRule:
    return ExtractionRule(name=name, pattern=re.compile(pattern, flags), group=group, accept=accept)


def section_header(names: str) -> str:
    """Header at the start of a line, or anywhere when followed by a colon. Needs re.MULTILINE."""
    return r"(?:^[ \t]*(?:" + names + r")\b[ \t]*:?|\b(?:" + names + r")[ \t]*:)"


DATE = r"(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})"
_NAME = r"([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)*)"
_POD_MARKER = r"(?:POD|Post-?op(?:erative)? day|Hospital day|HD)[ \t]*#?[ \t]*\d+"

_MED_SUFFIXES = r"(?:in|ol|ide|zole|pam|cillin|mycin|oxacin|pine|zine|xone|tidine|prazole|olol|pril|sartan|statin)"
_NEURO_MEDS = (
    r"Keppra|Levetiracetam|Dexamethasone|Decadron|Ondansetron|Zofran|Morphine|Oxycodone|Acetaminophen|"
    r"Tylenol|Ibuprofen|Gabapentin|Pregabalin|Baclofen|Diazepam|Lorazepam|Aspirin|Nimodipine|Labetalol|"
    r"Phenytoin|Dilantin|Docusate|Senna|Heparin|Enoxaparin|Lovenox|Cefazolin|Vancomycin"
)
DOSED_MEDICATION = (
    r"\b(?:[A-Z][a-z]+" + _MED_SUFFIXES + r"|(?i:" + _NEURO_MEDS + r"))"
    r"[ \t]+\d+(?:\.\d+)?[ \t]*(?:mg|mcg|g|mL|units?)\b"
    r"(?:[ \t]+(?:PO|IV|IM|SC|SL))?"
    r"(?:[ \t]+(?:daily|BID|TID|QID|QHS|PRN|q\d+h))?"
)

_MED_BLOCK_END = r"(?=\n[ \t]*\n|\n[ \t]*(?:Follow|Disposition|Activity|Diet|Instructions)\b|\Z)"
_EXAM_BLOCK_END = r"(?=\n[ \t]*\n|\n[ \t]*(?:Labs?|Medications|Discharge Medications|Disposition)\b|\Z)"


DEFAULT_RULES: Dict[str, Tuple[ExtractionRule, ...]] = {
    # Demographics
    "patientName": (
        rule("labeled_name", r"\b(?:Patient Name|Patient|Name|Mr\.|Mrs\.|Ms\.)[ \t]*:?[ \t]*" + _NAME,
             accept=is_plausible_name),
        rule("name_is_a_age", r"^[ \t]*" + _NAME + r"[ \t]+is[ \t]+an?[ \t]+\d+", M, accept=is_plausible_name),
        rule("name_before_age", r"([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+){1,3}),?[ \t]+(?:a[ \t]+)?\d{1,3}[ \t-]*(?:year|yo)",
             accept=is_plausible_name),
    ),
    "age": (
        rule("age_years_old", r"\b(\d{1,3})[ \t-]*(?:year|years|yo|y\.o\.|y/o)[ \t-]*old", I, accept=is_valid_age),
        rule("labeled_age", r"\bAge[ \t]*:?[ \t]*(\d{1,3})\b", I, accept=is_valid_age),
        rule("is_a_age", r"\bis[ \t]+an?[ \t]+(\d{1,3})[ \t-]*(?:year|yo)", I, accept=is_valid_age),
        rule("age_yo", r"\b(\d{1,3})[ \t-]*(?:yo|y\.o\.|y/o)\b", I, accept=is_valid_age),
    ),
    "sex": (
        rule("labeled_sex", r"\b(?:Sex|Gender)[ \t]*:?[ \t]*(male|female|M|F)\b", I),
        rule("sex_word", r"\b(male|female|man|woman)\b", I),
        rule("age_adjacent_sex", r"\b\d{1,3}[ \t-]*(?:yo|y/o|y\.o\.)?[ \t]*(M|F)\b"),
    ),
    "mrn": (
        rule("labeled_mrn", r"\b(?:MRN|Medical Record Number|MR#|Medical Record)[ \t]*:?[ \t]*#?[ \t]*(\d+)", I),
        rule("record_number", r"\b(?:Record|Chart)[ \t]*(?:#|Number)?[ \t]*:?[ \t]*(\d+)", I),
    ),

    # Dates
    "admitDate": (
        rule("labeled_admit_date", r"\b(?:Admission Date|Date of Admission|Admit Date|Admitted|DOA)[ \t]*:?[ \t]*" + DATE, I),
        rule("admitted_on", r"\b(?:Admitted on|Admission on)[ \t]*:?[ \t]*" + DATE, I),
    ),
    "dischargeDate": (
        rule("labeled_discharge_date", r"\b(?:Discharge Date|Date of Discharge|DOD|Discharged)[ \t]*:?[ \t]*" + DATE, I),
        rule("discharged_on", r"\b(?:Discharged on|Discharge on)[ \t]*:?[ \t]*" + DATE, I),
    ),
    "procedureDate": (
        rule("labeled_procedure_date",
             r"\b(?:Procedure Date|Surgery Date|Operation Date|Date of (?:Surgery|Procedure|Operation))[ \t]*:?[ \t]*" + DATE, I),
        rule("performed_on", r"\b(?:performed on|underwent on)[ \t]*" + DATE, I),
        rule("note_date_line", r"^[ \t]*Date[ \t]*:[ \t]*" + DATE, I | M),
    ),

    # Diagnoses
    "admittingDiagnosis": (
        rule("admitting_dx_header",
             r"\b(?:Admitting Diagnosis|Admission Diagnosis|Primary Diagnosis)[ \t]*:?\s*([^\n]{1,150}?)[ \t]*(?=\n|\Z)", I,
             accept=is_plausible_diagnosis),
        rule("chief_complaint",
             r"\b(?:(?i:Chief Complaint|Presenting Problem|Reason for Admission)|CC)\b[ \t]*:?\s*([^\n]{1,150}?)[ \t]*(?=\n|\Z)",
             accept=is_plausible_diagnosis),
    ),
    "dischargeDiagnosis": (
        rule("discharge_dx_header",
             r"\b(?:Discharge Diagnos[ie]s|Final Diagnos[ie]s|Diagnosis at Discharge|Primary Diagnosis)[ \t]*:?\s*([^\n]{1,150}?)[ \t]*(?=\n|\Z)", I,
             accept=is_plausible_diagnosis),
    ),
    "diagnosisHeader": (
        rule("bare_diagnosis_header", r"^[ \t]*Diagnos[ie]s[ \t]*:?[ \t]*([^\n]+)", I | M, accept=is_plausible_diagnosis),
    ),

    # History
    "historyPresenting": (
        rule("hpi_block",
             section_header(r"HPI|History of Present(?:ing)? Illness|Present Illness") + r"\s*([\s\S]{20,1500}?)"
             r"(?=\n[ \t]*\n|\n[ \t]*(?:PMH|Past Medical|PSH|Past Surgical|Medications|Allergies)\b|\Z)", I | M),
    ),
    "pmh": (
        rule("pmh_block",
             section_header(r"PMH|Past Medical History|Medical History") + r"\s*([\s\S]{2,500}?)"
             r"(?=\n[ \t]*\n|\n[ \t]*(?:PSH|Past Surgical|Medications|Meds|Allergies|Social History|Family History|"
             r"Procedure|Admitting Diagnosis|Review of Systems)\b|\Z)", I | M,
             accept=has_content),
    ),
    "psh": (
        rule("psh_block",
             section_header(r"PSH|Past Surgical History|Surgical History") + r"\s*([\s\S]{2,500}?)"
             r"(?=\n[ \t]*\n|\n[ \t]*(?:PMH|Past Medical|Medications|Meds|Allergies|Social History|Family History)\b|\Z)", I | M,
             accept=has_content),
    ),
    "allergies": (
        rule("allergy_header", r"\b(?:Allergies|Allergy)\b[ \t]*:?[ \t]*([^\n]+)", I, accept=has_content),
        rule("nkda", r"\b(NKDA|NKA)\b"),
    ),

    # Procedures and course
    "procedures": (
        rule("post_op_header_newline",
             r"\b(?:Post-?Op(?:erative)?[ \t]+)?(?:Procedure|Operation|Surgery)[ \t]*(?:\(s\))?[ \t]*(?:\([A-Z]+\))?"
             r"[ \t]*:[ \t]*\n[ \t]*([^\n]{15,})", I,
             accept=is_plausible_procedure),
        rule("same_line_header",
             r"\b(?:Post-?Op(?:erative)?[ \t]+)?(?:Procedures?|Operations?|Surgery)[ \t]*(?:\(s\))?[ \t]*(?:\([A-Z]+\))?"
             r"[ \t]*:[ \t]*([^\n]+)", I,
             accept=is_plausible_procedure),
        rule("underwent_phrase",
             r"\b(?:underwent|performed|completed|s/p|status post)[ \t]+([^.\n]*?"
             r"(?:craniotomy|craniectomy|laminectomy|discectomy|fusion|decompression|EVD|shunt|biopsy|resection|"
             r"clipping|coiling|evacuation|drainage|duraplasty)[^.\n]*)", I,
             accept=is_plausible_procedure),
    ),
    "hospitalCourse": (
        rule("course_header",
             r"\b(?i:Hospital Course|Clinical Course|Course in Hospital)[ \t]*:?\s*([\s\S]{30,2000}?)"
             r"(?=\n[ \t]*\n[ \t]*[A-Z][A-Za-z /]+:|\n[ \t]*\n[ \t]*(?i:Discharge|Physical Exam|Medications|Disposition)|\Z)"),
        rule("pod_entries",
             r"^[ \t]*" + _POD_MARKER + r"\b[^\n]*(?:\n(?![ \t]*" + _POD_MARKER + r")[^\n]*\S[^\n]*)+", I | M, group=0),
    ),
    "postOpProgress": (
        rule("pod_segments",
             r"^[ \t]*" + _POD_MARKER + r"\b[^\n]*(?:\n(?![ \t]*" + _POD_MARKER + r")[^\n]*\S[^\n]*)*", I | M, group=0),
    ),
    "imaging": (
        rule("imaging_finding",
             r"\b(?:CTA|MRA|CT|MRI|X-ray|XR|(?i:imaging|radiology))"
             r"(?:[ \t]+(?i:head|brain|spine|c-spine|l-spine|scan|report|findings|with contrast|without contrast))*"
             r"[ \t]*(?i:showed|shows?|demonstrated|demonstrates?|revealed|reveals?|findings)[ \t]*:?[ \t]*"
             r"([^\n]{10,500}?)(?=\.(?:\s|\Z)|\n|\Z)"),
    ),
    "complications": (
        rule("complications_header",
             r"\b(?:Post-?op(?:erative)?[ \t]+complications?|Complications?|Adverse Events?)[ \t]*:[ \t]*([^\n]{2,400})", I,
             accept=not_none_statement),
        rule("developed_complication",
             r"\b(?:developed|experienced|had)[ \t]+((?:an?[ \t]+)?[\w \t-]{0,40}?\b"
             r"(?:hemorrhage|hematoma|infection|leak|dehiscence|failure|arrest|sepsis|pneumonia|DVT|PE|MI|stroke|"
             r"seizures?|meningitis|ventriculitis|hydrocephalus))\b", I,
             accept=not_none_statement),
    ),
    "majorEvents": (
        rule("major_event",
             r"\b(code blue|rapid response|ICU transfer|intubat(?:ed|ion)|extubat(?:ed|ion)|cardiac arrest|"
             r"seizure|stroke|hemorrhage|reoperation|transferred to (?:the )?ICU|admitted to (?:the )?ICU|"
             r"return(?:ed)? to (?:the )?OR|emergency surgery)\b", I),
    ),
    "consultantRecommendations": (
        rule("recommendations_block",
             r"\b(?:Recommendations?|Plan|Suggest(?:ions)?|Advise)\b[ \t]*:\s*([\s\S]{10,800}?)"
             r"(?=\n[ \t]*\n|\n[ \t]*(?:Signed|Attending)\b|\Z)", I),
    ),
    # Searched across all notes only when the consultant category has no block
    "consultantReferences": (
        rule("consultant_reference",
             r"\b(?:Consult(?:ant)?|Specialist|Cardiology|Neurology|PT|OT|Rehab|Pain)[ \t]+"
             r"(?:recommend|suggest|advise|state)[sd]?[ \t]*:?[ \t]*[^\n]{20,200}", I, group=0),
    ),

    # Exam and status
    "currentExam": (
        rule("exam_block",
             r"(?:\b(?:Physical Exam(?:ination)?|Exam(?:ination)?)\b|\bPE(?=[ \t]*:))[ \t]*:?\s*([\s\S]{10,600}?)" + _EXAM_BLOCK_END, I),
    ),
    "dischargeExam": (
        rule("discharge_exam_block",
             r"\b(?:Discharge Exam(?:ination)?|Physical Exam(?:ination)? (?:at|on) Discharge|Exam at Discharge|Final Exam)"
             r"[ \t]*:?\s*([\s\S]{10,800}?)" + _EXAM_BLOCK_END, I),
    ),
    "neurologicalExam": (
        rule("neuro_exam_block",
             r"\b(?:Neuro(?:logical)?(?: Exam(?:ination)?)?|Mental Status|Cranial Nerves|CN|Motor|Sensory)[ \t]*:\s*([\s\S]{10,600}?)"
             r"(?=\n[ \t]*\n|\n[ \t]*(?:Cardiovascular|Respiratory|Labs?)\b|\Z)", I),
    ),
    "vitalSigns": (
        rule("vitals_line", r"\b(?:Vital Signs|Vitals|VS)\b[ \t]*:[ \t]*([^\n]+)", I),
    ),
    "kps": (
        rule("explicit_kps", r"\b(?:KPS|Karnofsky(?: Performance Status)?)(?:[ \t]+score)?[ \t]*(?:of|:|=)?[ \t]*(\d{1,3})\b", I,
             accept=is_valid_kps),
    ),

    # Medications and discharge planning
    "dischargeMedications": (
        rule("discharge_meds_section",
             r"\b(?:Discharge Medications|Medications on Discharge|Medications at Discharge|Discharge Meds)\b[ \t]*:?\s*"
             r"([\s\S]{5,1000}?)" + _MED_BLOCK_END, I),
        rule("medications_section", r"\b(?:Medications|Meds)\b[ \t]*:?\s*([\s\S]{5,1000}?)" + _MED_BLOCK_END, I),
        rule("dosed_medication", DOSED_MEDICATION, group=0),
    ),
    "disposition": (
        rule("disposition_header", r"\b(?:Disposition|Discharged? to)\b[ \t]*:?[ \t]*([^\n]+)", I, accept=has_content),
    ),
    "diet": (
        rule("diet_header", r"\bDiet\b[ \t]*:[ \t]*([^\n]+)", I, accept=has_content),
    ),
    "activity": (
        rule("activity_header", r"\bActivity(?: Level)?\b[ \t]*:[ \t]*([^\n]+)", I, accept=has_content),
    ),
    "followUp": (
        rule("follow_up_block",
             r"\b(?:Follow[- ]?up|F/U|Appointments)\b[ \t]*:\s*([\s\S]{5,600}?)"
             r"(?=\n[ \t]*\n|\n[ \t]*(?:Warning|Instructions|Return Precautions)\b|\Z)", I),
    ),
}


# ============================================================
# LIBRARY + REGISTRY
# ============================================================

class FieldPatternLibrary:
    """Immutable mapping of field name to its ordered rules."""

    def __init__(self, rules: Mapping[str, Sequence[ExtractionRule]], version: str = "1"):
        self._rules = MappingProxyType({k: tuple(v) for k, v in rules.items()})
        self.version = version

    def rules(self, field: str) -> Tuple[ExtractionRule, ...]:
        return self._rules.get(field, ())

    def fields(self) -> List[str]:
        return list(self._rules.keys())

    def rule_names(self, field: str) -> List[str]:
        return [r.name for r in self.rules(field)]

    def first(self, field: str, text: str, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS):
        """First accepted (rule, value, match) for a scalar field, or None."""
        for r in self.rules(field):
            hit = r.first(text, thresholds)
            if hit is not None:
                return r, hit[0], hit[1]
        return None

    def all(self, field: str, text: str, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS):
        """All accepted (value, match) pairs of the first rule that yields any."""
        for r in self.rules(field):
            hits = list(r.candidates(text, thresholds))
            if hits:
                return r, hits
        return None, []

    def with_rules(self, field: str, rules: Sequence[ExtractionRule], version: Optional[str] = None) -> "FieldPatternLibrary":
        """Return a new library with one field's rules replaced."""
        updated = dict(self._rules)
        updated[field] = tuple(rules)
        return FieldPatternLibrary(updated, version=version or self.version)

    def __contains__(self, field: str) -> bool:
        return field in self._rules


class RuleLibraryRegistry:
    """
    Holds the current library snapshot.

    Readers call current() and keep the returned snapshot for the whole
    request. Writers serialize on a lock and replace the snapshot; readers
    never block.
    """

    def __init__(self, library: Optional[FieldPatternLibrary] = None):
        self._library = library or FieldPatternLibrary(DEFAULT_RULES)
        self._write_lock = threading.Lock()

    def current(self) -> FieldPatternLibrary:
        return self._library

    def replace(self, library: FieldPatternLibrary) -> FieldPatternLibrary:
        with self._write_lock:
            previous = self._library
            self._library = library
        logger.info(f"[RULES] Library swapped: v{previous.version} -> v{library.version}")
        return previous

    def update_field(self, field: str, rules: Sequence[ExtractionRule], version: Optional[str] = None) -> FieldPatternLibrary:
        with self._write_lock:
            self._library = self._library.with_rules(field, rules, version)
            library = self._library
        logger.info(f"[RULES] Rules for {field} replaced ({len(rules)} rules)")
        return library


_registry: Optional[RuleLibraryRegistry] = None


def get_registry() -> RuleLibraryRegistry:
    """Get or create the process-wide rule registry."""
    global _registry
    if _registry is None:
        _registry = RuleLibraryRegistry()
    return _registry
