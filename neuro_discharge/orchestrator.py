"""
Hybrid Orchestrator

One extraction request, start to finish:

    DETECTING -> EXTRACTING -> AUGMENTING -> MERGING -> VALIDATING -> DONE

Stages run in order and are never retried; each one owns its own fallback.
AUGMENTING runs the three adapters concurrently and waits for all of them.
When no LLM client is configured (or the caller opts out) AUGMENTING is
skipped, MERGING uses the adapters' local fallbacks and the result is
tagged approach="deterministic-only".

Merge precedence:
    protected   demographics, dates, discharge medications and the
                discharge exam. The deterministic value stands; augmentation
                only fills blanks.
    augmented   narrative, complications, consultants. A non-empty LLM value
                wins, then the deterministic value, then the fallback.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from . import __version__
from .augmenters import AugmentationAdapter, ComplicationDetector, ConsultantParser, NarrativeSynthesizer
from .clients.llm_client import LLMClient, get_client
from .neuro_extractors import DeterministicExtractor, get_extractor
from .note_detector import NoteTypeDetector, get_detector
from .provenance import sha256_text
from .schemas import (
    AugmentationResult,
    ComplicationReport,
    ConsultantReport,
    ExtractedRecord,
    ExtractionResult,
    NoteBundle,
    SynthesizedNarrative,
)
from .telemetry import StageTimer
from .validator import ClinicalDataValidator, get_validator

logger = logging.getLogger("neuro-discharge")


class PipelineStage(str, Enum):
    DETECTING = "detecting"
    EXTRACTING = "extracting"
    AUGMENTING = "augmenting"
    MERGING = "merging"
    VALIDATING = "validating"
    DONE = "done"


APPROACH_HYBRID = "hybrid"
APPROACH_DETERMINISTIC = "deterministic-only"

PROTECTED_FIELDS = (
    "patientName", "age", "sex", "mrn",
    "admitDate", "dischargeDate", "procedureDate",
    "dischargeMedications",
)

# Exam text is quoted from the notes; augmentation only fills a blank
FILL_ONLY_FIELDS = ("dischargeExam",)

# record field <- narrative payload field
NARRATIVE_FIELDS = {
    "historyPresenting": "historyPresenting",
    "hospitalCourse": "hospitalCourse",
    "postOpProgress": "postOpProgress",
    "majorEvents": "majorEvents",
    "dischargeExam": "currentStatus",
}


def _filled(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return bool(str(value or "").strip())


def merge_value(name: str, deterministic: Any, candidate: Any, source: str) -> Any:
    """Pick the value for one record field given the deterministic value and an adapter's."""
    if name in PROTECTED_FIELDS or name in FILL_ONLY_FIELDS:
        return deterministic if _filled(deterministic) else candidate
    if source == "llm" and _filled(candidate):
        return candidate
    if _filled(deterministic):
        return deterministic
    return candidate


def merge_results(baseline: ExtractedRecord, results: Sequence[AugmentationResult]) -> ExtractedRecord:
    """Fold adapter results into a copy of the baseline. The baseline is not modified."""
    merged = baseline.model_copy(deep=True)

    for result in results:
        payload = result.payload
        if result.source == "skipped":
            continue

        if isinstance(payload, SynthesizedNarrative):
            for field_name, payload_field in NARRATIVE_FIELDS.items():
                value = merge_value(field_name, getattr(merged, field_name), getattr(payload, payload_field), result.source)
                setattr(merged, field_name, value)

        elif isinstance(payload, ComplicationReport):
            if result.source == "llm" and payload.complications:
                merged.complications = payload.complications
            else:
                # Keyword hits only add types the rule pass did not already report
                known = {c.type for c in merged.complications}
                extra = [c for c in payload.complications if c.type not in known]
                merged.complications = merged.complications + extra

        elif isinstance(payload, ConsultantReport):
            merged.consultants = merge_value("consultants", merged.consultants, payload.consultants, result.source)
            merged.consultantRecommendations = merge_value(
                "consultantRecommendations", merged.consultantRecommendations, payload.recommendations, result.source)

    return merged


class HybridOrchestrator:
    """
    Runs the full pipeline for one input. Holds no per-request state, so one
    instance can serve concurrent requests.
    """

    def __init__(
        self,
        detector: Optional[NoteTypeDetector] = None,
        extractor: Optional[DeterministicExtractor] = None,
        adapters: Optional[List[AugmentationAdapter]] = None,
        validator: Optional[ClinicalDataValidator] = None,
        client: Optional[LLMClient] = None,
    ):
        self.detector = detector or get_detector()
        self.extractor = extractor or get_extractor()
        self._client = client
        self.adapters = adapters if adapters is not None else [
            ComplicationDetector(client=client),
            ConsultantParser(client=client),
            NarrativeSynthesizer(client=client),
        ]
        self.validator = validator or get_validator()

    @property
    def client(self) -> LLMClient:
        return self._client or get_client()

    # ============================================================
    # ENTRY POINTS
    # ============================================================

    async def run(self, text: str, use_llm: bool = True) -> ExtractionResult:
        """Full pipeline over raw pasted notes."""
        stages: List[Dict[str, Any]] = []
        input_hash = sha256_text(text or "")

        with StageTimer(PipelineStage.DETECTING.value, correlation_id=input_hash) as timer:
            bundle = self.detector.detect(text or "")
            timer.data["categories"] = [c.value for c in bundle.non_empty_categories()]
        stages.append(self._stage_summary(timer))

        return await self._run_from_bundle(bundle, text or "", input_hash, stages, use_llm)

    async def run_bundle(self, bundle: NoteBundle, use_llm: bool = True) -> ExtractionResult:
        """Pipeline over notes that are already split by category (no detection)."""
        raw_text = bundle.all_text()
        return await self._run_from_bundle(bundle, raw_text, sha256_text(raw_text), [], use_llm)

    def run_sync(self, text: str, use_llm: bool = True) -> ExtractionResult:
        """Blocking wrapper for callers without an event loop."""
        return asyncio.run(self.run(text, use_llm=use_llm))

    def describe_pipeline(self) -> Dict[str, Any]:
        client = self.client
        components = [
            {"name": "NoteTypeDetector", "type": "rule-based", "description": "Splits and classifies note segments"},
            {"name": "DeterministicExtractor", "type": "regex",
             "description": f"Field pattern library v{self.extractor.library.version}"},
            {"name": "SemanticFallbackAnalyzer", "type": "rule-based", "description": "Vocabulary backfill for empty fields"},
            {"name": "FunctionalStatusEstimator", "type": "rule-based", "description": "Approximate KPS from exam text"},
        ]
        for adapter in self.adapters:
            components.append({
                "name": type(adapter).__name__,
                "type": "llm",
                "description": f"{adapter.name} (temperature={adapter.temperature}, max_tokens={adapter.max_tokens})",
            })
        components.append({"name": "ClinicalDataValidator", "type": "validation",
                           "description": "Cross-source checks, confidence and completeness"})
        return {
            "version": __version__,
            "approach": APPROACH_HYBRID if client.configured else APPROACH_DETERMINISTIC,
            "llmProvider": client.provider if client.configured else None,
            "stages": [s.value for s in PipelineStage],
            "components": components,
        }

    # ============================================================
    # STAGES
    # ============================================================

    async def _run_from_bundle(
        self,
        bundle: NoteBundle,
        raw_text: str,
        input_hash: str,
        stages: List[Dict[str, Any]],
        use_llm: bool,
    ) -> ExtractionResult:
        augment = use_llm and self.client.configured
        approach = APPROACH_HYBRID if augment else APPROACH_DETERMINISTIC

        with StageTimer(PipelineStage.EXTRACTING.value, correlation_id=input_hash) as timer:
            outcome = self.extractor.extract(bundle)
            timer.data["fieldsFilled"] = len(outcome.provenance)
        stages.append(self._stage_summary(timer))
        baseline = outcome.record

        if augment:
            with StageTimer(PipelineStage.AUGMENTING.value, correlation_id=input_hash) as timer:
                results = await asyncio.gather(*(a.augment(bundle, baseline) for a in self.adapters))
                timer.data["sources"] = {r.adapter: r.source for r in results}
            stages.append(self._stage_summary(timer))
        else:
            logger.info("[HYBRID] LLM augmentation not configured or disabled, using local fallbacks")
            results = []

        with StageTimer(PipelineStage.MERGING.value, correlation_id=input_hash) as timer:
            if not augment:
                results = [a.fallback_result(bundle, baseline) for a in self.adapters]
            merged = merge_results(baseline, results)
            merged.extractionMethod = "hybrid" if any(r.source == "llm" for r in results) else "deterministic"
        stages.append(self._stage_summary(timer))

        with StageTimer(PipelineStage.VALIDATING.value, correlation_id=input_hash) as timer:
            validation = self.validator.validate(merged, baseline, raw_text)
            timer.data["isValid"] = validation.isValid
        stages.append(self._stage_summary(timer))

        pipeline = {r.adapter: r.source for r in results}
        logger.info(
            f"[HYBRID] Done: approach={approach} adapters={pipeline} "
            f"valid={validation.isValid} completeness={validation.completeness:.2f}"
        )

        return ExtractionResult(
            record=merged,
            baseline=baseline,
            validation=validation,
            pipeline=pipeline,
            metadata={
                "approach": approach,
                "llmProvider": self.client.provider if augment else None,
                "generatedAt": datetime.now(timezone.utc).isoformat(),
                "version": __version__,
                "inputHash": input_hash,
                "stage": PipelineStage.DONE.value,
                "stages": stages,
                "provenance": outcome.provenance_dict(),
                "extractionConfidence": outcome.confidence,
                "errors": {r.adapter: r.error for r in results if r.error},
            },
        )

    @staticmethod
    def _stage_summary(timer: StageTimer) -> Dict[str, Any]:
        return {
            "stage": timer.stage,
            "success": timer.success,
            "durationMs": round(timer.duration_ms or 0.0, 2),
        }


_orchestrator: Optional[HybridOrchestrator] = None


def get_orchestrator() -> HybridOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = HybridOrchestrator()
    return _orchestrator
