"""
Semantic Fallback Analyzer

Closed-vocabulary scan of the full note text. Runs after the rule cascade
and only backfills fields the cascade left empty; a populated field is never
overwritten.

Vocabularies are grouped into families (hemorrhage, tumor, spine, ...). Each
candidate keeps its family and roughly 100 characters of context on either
side so a reviewer can see why it was picked.

Families are scanned in declared order, so "first condition" means the first
hit of the highest-priority family that matched, not the first word in the
text.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Tuple

from .config import DEFAULT_THRESHOLDS, ExtractionThresholds
from .provenance import SOURCE_SEMANTIC, FieldProvenance
from .schemas import ExtractedRecord, normalize_key

logger = logging.getLogger("neuro-discharge")

I = re.IGNORECASE


def _family(name: str, pattern: str, flags: int = I) -> Tuple[str, Pattern]:
    return name, re.compile(pattern, flags)


# ============================================================
# VOCABULARIES
# ============================================================

CONDITION_FAMILIES = (
    _family("hemorrhage", r"\b(intracranial hemorrhage|subdural hematoma|epidural hematoma|subarachnoid hemorrhage|"
                          r"intraparenchymal hemorrhage|intraventricular hemorrhage|intracerebral hemorrhage|"
                          r"hemorrhage|hematoma|bleeding|bleed|ICH|SDH|EDH|SAH|IPH|IVH)\b"),
    _family("tumor", r"\b(glioblastoma|oligodendroglioma|astrocytoma|glioma|GBM|meningioma|schwannoma|acoustic neuroma|"
                     r"pituitary adenoma|craniopharyngioma|metastasis|metastatic|brain mass|spinal tumor|tumor|neoplasm)\b"),
    _family("spine", r"\b(spinal stenosis|herniated disc|disc herniation|radiculopathy|radicular pain|myelopathy|"
                     r"spondylolisthesis|spondylosis|degenerative disc disease|spinal fracture|vertebral fracture|"
                     r"spinal cord injury|SCI)\b"),
    _family("vascular", r"\b(aneurysm|arteriovenous malformation|AVM|cavernous malformation|cavernoma|"
                        r"dural arteriovenous fistula|dural AVF|vasospasm|moyamoya)\b"),
    _family("infection", r"\b(brain abscess|spinal abscess|epidural abscess|abscess|meningitis|encephalitis|"
                         r"osteomyelitis|discitis|subdural empyema|empyema|infection)\b"),
    _family("csf_hydrocephalus", r"\b(CSF leak|cerebrospinal fluid leak|CSF rhinorrhea|CSF otorrhea|"
                                 r"normal pressure hydrocephalus|obstructive hydrocephalus|communicating hydrocephalus|"
                                 r"hydrocephalus|NPH|pseudotumor cerebri|idiopathic intracranial hypertension|IIH|"
                                 r"increased ICP)\b"),
    _family("seizure", r"\b(status epilepticus|post-traumatic epilepsy|epilepsy|seizures|seizure|convulsions?)\b"),
    _family("stroke", r"\b(ischemic stroke|hemorrhagic stroke|cerebrovascular accident|stroke|CVA|"
                      r"transient ischemic attack|TIA)\b"),
    _family("tbi", r"\b(traumatic brain injury|TBI|head trauma|head injury|concussion|contusion|"
                   r"diffuse axonal injury|DAI)\b"),
    _family("congenital", r"\b(Chiari malformation|syringomyelia|tethered cord|spinal dysraphism)\b"),
    _family("general_medical", r"\b(hypertension|HTN|high blood pressure|diabetes|diabetic|DM|pneumonia|"
                               r"urinary tract infection|UTI|sepsis|myocardial infarction|MI|heart attack|"
                               r"heart failure|CHF|COPD|asthma|respiratory failure|renal failure|kidney disease|CKD|"
                               r"acute kidney injury|AKI|deep vein thrombosis|DVT|pulmonary embolism|PE)\b"),
)

PROCEDURE_FAMILIES = (
    _family("cranial", r"\b(craniotomy|craniectomy)\b"),
    _family("vascular", r"\b(clipping|coiling)\b"),
    _family("evacuation", r"\b(evacuation|drainage)\b"),
    _family("spine", r"\b(laminectomy|discectomy|fusion|decompression)\b"),
    _family("csf_diversion", r"\b(shunt|EVD|external ventricular drain|ventriculostomy)\b"),
    _family("tumor", r"\b(biopsy|resection|excision|removal)\b"),
    _family("endovascular", r"\b(embolization|angioplasty)\b"),
)

_FREQUENCY = r"(?:[ \t]+(daily|BID|TID|QID|QHS|q\d+h|PRN))?"
MEDICATION_FAMILIES = (
    _family("suffix_class", r"\b([A-Z][a-z]+(?:cillin|mycin|oxacin|tidine|prazole|olol|pril|sartan|statin))[ \t]+"
                            r"(\d+\.?\d*)[ \t]*(mg|mcg|g|units?)\b" + _FREQUENCY, 0),
    _family("analgesic", r"\b(aspirin|acetaminophen|ibuprofen|morphine|fentanyl|hydrocodone|oxycodone)[ \t]+"
                         r"(\d+\.?\d*)[ \t]*(mg|mcg)\b" + _FREQUENCY),
    _family("antiepileptic", r"\b(levetiracetam|keppra|phenytoin|dilantin|carbamazepine|valproic acid|lacosamide)[ \t]+"
                             r"(\d+\.?\d*)[ \t]*(mg|mcg)\b" + _FREQUENCY),
    _family("cardiovascular", r"\b(nimodipine|labetalol|metoprolol|lisinopril|amlodipine|nicardipine)[ \t]+"
                              r"(\d+\.?\d*)[ \t]*(mg|mcg)\b" + _FREQUENCY),
    _family("steroid", r"\b(dexamethasone|decadron)[ \t]+(\d+\.?\d*)[ \t]*(mg|mcg)\b" + _FREQUENCY),
)

EVENT_FAMILIES = (
    _family("intervention", r"\b(?:underwent|received|completed|tolerated|developed|experienced)[ \t]+[^.\n]+"),
    _family("postoperative", r"\b(?:post[- ]?op(?:erative)?|after surgery|following (?:the )?procedure)[ \t]+[^.\n]+"),
    _family("transfer", r"\b(?:transferred to|admitted to|discharged to)[ \t]+[^.\n]+"),
    _family("day_marker", r"\b(?:POD[ \t]*#?[ \t]*\d+|hospital day[ \t]*\d+|HD[ \t]*\d+)[ \t]*:?[ \t]*[^.\n]+"),
)


@dataclass(frozen=True)
class SemanticCandidate:
    term: str
    family: str
    context: str
    span: Tuple[int, int]

    def provenance(self) -> FieldProvenance:
        return FieldProvenance(rule=self.family, category="all", source=SOURCE_SEMANTIC,
                               span=self.span, context=self.context)


@dataclass
class SemanticAnalysis:
    diagnoses: List[SemanticCandidate] = field(default_factory=list)
    procedures: List[SemanticCandidate] = field(default_factory=list)
    medications: List[SemanticCandidate] = field(default_factory=list)
    events: List[SemanticCandidate] = field(default_factory=list)

    def summary(self) -> Dict[str, int]:
        return {
            "diagnoses": len(self.diagnoses),
            "procedures": len(self.procedures),
            "medications": len(self.medications),
            "events": len(self.events),
        }


def format_medication(match: "re.Match") -> str:
    name, dose, unit, frequency = match.group(1), match.group(2), match.group(3), match.group(4)
    formatted = f"{name} {dose}{unit}"
    if frequency:
        formatted += f" {frequency}"
    return formatted


class SemanticFallbackAnalyzer:
    """Scans text against closed vocabularies. Stateless apart from thresholds."""

    def __init__(self, thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS):
        self.thresholds = thresholds

    def context(self, text: str, start: int, end: int) -> str:
        window = self.thresholds.context_window
        return text[max(0, start - window):min(len(text), end + window)].strip()

    def _scan(self, text: str, families, render=None) -> List[SemanticCandidate]:
        found: List[SemanticCandidate] = []
        seen = set()
        for family, pattern in families:
            for match in pattern.finditer(text):
                term = (render(match) if render else match.group(0)).strip()
                key = normalize_key(term)
                if not key or key in seen:
                    continue
                seen.add(key)
                found.append(SemanticCandidate(
                    term=term,
                    family=family,
                    context=self.context(text, match.start(), match.end()),
                    span=match.span(),
                ))
        return found

    def analyze(self, text: str) -> SemanticAnalysis:
        if not text or not text.strip():
            return SemanticAnalysis()

        analysis = SemanticAnalysis(
            diagnoses=self._scan(text, CONDITION_FAMILIES),
            procedures=self._scan(text, PROCEDURE_FAMILIES),
            medications=self._scan(text, MEDICATION_FAMILIES, render=format_medication),
            events=self._scan(text, EVENT_FAMILIES),
        )
        logger.debug(f"[SEMANTIC] Candidates: {analysis.summary()}")
        return analysis

    def backfill(self, record: ExtractedRecord, analysis: SemanticAnalysis) -> Dict[str, FieldProvenance]:
        """
        Fill empty fields from the analysis. Returns provenance for each field filled.

        Populated fields are left untouched.
        """
        filled: Dict[str, FieldProvenance] = {}

        if analysis.diagnoses:
            if not record.admittingDiagnosis:
                record.admittingDiagnosis = analysis.diagnoses[0].term
                filled["admittingDiagnosis"] = analysis.diagnoses[0].provenance()
            if not record.dischargeDiagnosis:
                top = analysis.diagnoses[:self.thresholds.max_discharge_diagnoses]
                record.dischargeDiagnosis = ", ".join(c.term for c in top)
                filled["dischargeDiagnosis"] = top[0].provenance()

        if analysis.procedures and not record.procedures:
            record.procedures = [c.term for c in analysis.procedures]
            filled["procedures"] = analysis.procedures[0].provenance()

        if analysis.medications and not record.dischargeMedications:
            record.dischargeMedications = [c.term for c in analysis.medications]
            filled["dischargeMedications"] = analysis.medications[0].provenance()

        if analysis.events and not record.hospitalCourse:
            events = analysis.events[:self.thresholds.max_course_events]
            record.hospitalCourse = ". ".join(c.term for c in events) + "."
            filled["hospitalCourse"] = events[0].provenance()

        if filled:
            logger.debug(f"[SEMANTIC] Backfilled: {', '.join(filled)}")
        return filled


_analyzer: Optional[SemanticFallbackAnalyzer] = None


def get_analyzer() -> SemanticFallbackAnalyzer:
    global _analyzer
    if _analyzer is None:
        _analyzer = SemanticFallbackAnalyzer()
    return _analyzer
