"""
Neurosurgical discharge summary extraction.

Turns pasted clinical notes into a structured record for a discharge
summary: note-type detection, a rule-based extraction pass, optional LLM
augmentation with local fallbacks, and cross-source validation.
"""

__version__ = "1.0.0"

from .schemas import (
    NoteBundle,
    NoteCategory,
    ExtractedRecord,
    ValidationReport,
    ExtractionResult,
)
from .note_detector import NoteTypeDetector, detect_note_types
from .extraction_rules import ExtractionRule, FieldPatternLibrary, RuleLibraryRegistry, get_registry
from .neuro_extractors import DeterministicExtractor, ExtractionOutcome
from .semantic_analyzer import SemanticFallbackAnalyzer
from .functional_status import FunctionalStatusEstimator
from .validator import ClinicalDataValidator
from .orchestrator import HybridOrchestrator, get_orchestrator

__all__ = [
    "__version__",
    "NoteBundle",
    "NoteCategory",
    "ExtractedRecord",
    "ValidationReport",
    "ExtractionResult",
    "NoteTypeDetector",
    "detect_note_types",
    "ExtractionRule",
    "FieldPatternLibrary",
    "RuleLibraryRegistry",
    "get_registry",
    "DeterministicExtractor",
    "ExtractionOutcome",
    "SemanticFallbackAnalyzer",
    "FunctionalStatusEstimator",
    "ClinicalDataValidator",
    "HybridOrchestrator",
    "get_orchestrator",
]
