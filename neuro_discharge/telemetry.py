"""
Pipeline Telemetry
==================

Times each orchestrator stage and emits a stage event:
1. Always logged with structured `extra` (lands in the JSON log file)
2. Optionally forwarded to a sink registered by the host application

Pipeline Position:
  note_detector -> neuro_extractors -> augmenters -> [orchestrator] -> validator
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import logging
import time

logger = logging.getLogger("neuro-discharge")

# Global reference to event sink (set by the host application)
_event_sink: Optional[Callable[[Dict[str, Any]], None]] = None


def set_event_sink(fn: Optional[Callable[[Dict[str, Any]], None]]):
    """Set the sink that receives every stage event. Pass None to clear."""
    global _event_sink
    _event_sink = fn


def emit_stage_event(
    stage: str,
    success: bool = True,
    data: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build a stage event, log it and hand it to the sink.

    Args:
        stage: Orchestrator stage (detecting, extracting, augmenting, ...)
        success: Whether the stage completed without raising
        data: Stage-specific data (segment counts, adapter sources, ...)
        duration_ms: Wall time of the stage in milliseconds
        correlation_id: Input hash, to correlate stages of one run
    """
    event: Dict[str, Any] = {
        "type": "PIPELINE_STAGE",
        "source": "neuro-discharge",
        "stage": stage,
        "success": success,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if data:
        event["data"] = data
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 2)
    if correlation_id:
        event["correlationId"] = correlation_id

    logger.debug(f"[TELEMETRY] {stage} success={success} duration_ms={event.get('duration_ms')}",
                 extra={"telemetry": event})

    if _event_sink:
        try:
            _event_sink(event)
        except Exception as e:
            # Sink is optional, never affects the main flow
            logger.debug(f"Telemetry sink failed: {e}")

    return event


class StageTimer:
    """Context manager for timing a pipeline stage and emitting its event."""

    def __init__(
        self,
        stage: str,
        data: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        self.stage = stage
        self.data = data or {}
        self.correlation_id = correlation_id
        self.start_time = None
        self.duration_ms: Optional[float] = None
        self.success = True
        self.event: Optional[Dict[str, Any]] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type:
            self.success = False
            self.data["errorMessage"] = str(exc_val)

        self.event = emit_stage_event(
            stage=self.stage,
            success=self.success,
            data=self.data,
            duration_ms=self.duration_ms,
            correlation_id=self.correlation_id,
        )

        return False  # Don't suppress exceptions
