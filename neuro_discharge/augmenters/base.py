"""
Augmentation adapter base.

Every adapter has two paths producing the same payload shape:

    LLM       build_prompt() -> client -> permissive JSON parse -> coerce()
    fallback  fallback(), a pure function of the notes and the baseline record

augment() never raises. Missing credentials, HTTP errors, timeouts,
unparseable replies and schema violations all end in the fallback, with the
reason kept on the result's `error` field.
"""

import asyncio
import logging
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from ..clients.llm_client import LLMClient, LLMClientError, get_client
from ..config import DEFAULT_THRESHOLDS, ExtractionThresholds
from ..schemas import AugmentationResult, ExtractedRecord, NoteBundle

logger = logging.getLogger("neuro-discharge.augment")


class AugmentationAdapter:
    """Subclasses set name, payload_model, temperature and max_tokens."""

    name: str = "adapter"
    payload_model = BaseModel
    temperature: float = 0.1
    max_tokens: int = 1500

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        timeout: Optional[float] = None,
        thresholds: ExtractionThresholds = DEFAULT_THRESHOLDS,
    ):
        self._client = client
        self._timeout = timeout
        self.thresholds = thresholds

    @property
    def client(self) -> LLMClient:
        return self._client or get_client()

    @property
    def timeout(self) -> float:
        return self._timeout if self._timeout is not None else self.client.config.request_timeout

    # ------------------------------------------------------------
    # Per-adapter hooks
    # ------------------------------------------------------------

    def should_skip(self, notes: NoteBundle) -> bool:
        return False

    def build_prompt(self, notes: NoteBundle, baseline: ExtractedRecord) -> str:
        raise NotImplementedError

    def coerce(self, data: Any) -> BaseModel:
        return self.payload_model.model_validate(data)

    def fallback(self, notes: NoteBundle, baseline: ExtractedRecord) -> BaseModel:
        raise NotImplementedError

    # ------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------

    def fallback_result(self, notes: NoteBundle, baseline: ExtractedRecord, error: Optional[str] = None) -> AugmentationResult:
        """Local computation only. Used directly when augmentation is not configured."""
        if self.should_skip(notes):
            return AugmentationResult(adapter=self.name, source="skipped", payload=self.payload_model())
        return AugmentationResult(adapter=self.name, source="fallback",
                                  payload=self.fallback(notes, baseline), error=error)

    async def augment(self, notes: NoteBundle, baseline: ExtractedRecord) -> AugmentationResult:
        if self.should_skip(notes):
            logger.debug(f"[{self.name}] Nothing to augment, skipping")
            return AugmentationResult(adapter=self.name, source="skipped", payload=self.payload_model())

        client = self.client
        if not client.configured:
            return self.fallback_result(notes, baseline, error="LLM not configured")

        try:
            data = await asyncio.wait_for(
                client.complete_json(self.build_prompt(notes, baseline), self.temperature, self.max_tokens),
                timeout=self.timeout,
            )
            payload = self.coerce(data)
        except asyncio.TimeoutError:
            error = f"timed out after {self.timeout}s"
        except LLMClientError as e:
            error = str(e)
        except ValidationError as e:
            error = f"schema violation: {e.error_count()} error(s)"
        except ValueError as e:
            error = f"unparseable response: {e}"
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
        else:
            logger.info(f"[{self.name}] LLM augmentation succeeded ({client.provider})")
            return AugmentationResult(adapter=self.name, source="llm", payload=payload)

        logger.warning(f"[{self.name}] LLM augmentation failed, using fallback: {error}")
        return self.fallback_result(notes, baseline, error=error)
