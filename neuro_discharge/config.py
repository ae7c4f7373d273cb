"""
Configuration for discharge extraction.

Two independent pieces:
- LLMConfig: which inference provider the augmentation adapters talk to,
  and with which credentials. Absent credentials are not an error, they
  simply route every adapter to its local fallback.
- ExtractionThresholds: the empirically tuned cutoffs used by the rule
  cascade and the functional status ladder. They have no derivation beyond
  "worked on real notes", so they live here instead of inside the regexes.
"""

import os
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class LLMProvider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"


DEFAULT_MODELS = {
    LLMProvider.ANTHROPIC: "claude-sonnet-4-20250514",
    LLMProvider.OPENAI: "gpt-4-turbo",
    LLMProvider.GOOGLE: "gemini-1.5-pro",
}

# Environment variable per provider, read only by LLMConfig.from_env()
API_KEY_ENV = {
    LLMProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
    LLMProvider.OPENAI: "OPENAI_API_KEY",
    LLMProvider.GOOGLE: "GEMINI_API_KEY",
}


class LLMConfig(BaseModel):
    """Inference provider settings for the augmentation adapters."""
    provider: LLMProvider = LLMProvider.ANTHROPIC
    model_name: Optional[str] = None
    temperature: float = 0.1  # low for medical accuracy
    max_tokens: int = 4000
    request_timeout: float = 30.0
    api_keys: Dict[LLMProvider, Optional[str]] = Field(default_factory=dict)

    @property
    def model(self) -> str:
        return self.model_name or DEFAULT_MODELS[self.provider]

    def api_key(self) -> Optional[str]:
        return self.api_keys.get(self.provider) or None

    def is_configured(self) -> bool:
        return self.api_key() is not None

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Build a config from environment variables (call load_dotenv first)."""
        provider = LLMProvider(os.getenv("LLM_PROVIDER", LLMProvider.ANTHROPIC.value).lower())
        keys = {p: os.getenv(env) for p, env in API_KEY_ENV.items()}
        timeout = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
        return cls(
            provider=provider,
            model_name=os.getenv("LLM_MODEL") or None,
            request_timeout=timeout,
            api_keys=keys,
        )


class ExtractionThresholds(BaseModel):
    """Tuned cutoffs for candidate rejection, segmentation and context capture."""
    model_config = ConfigDict(frozen=True)

    # Note segmentation
    unified_note_min_chars: int = 100
    default_segment_min_chars: int = 50

    # Diagnosis plausibility
    diagnosis_max_chars: int = 100
    max_sentence_parts: int = 2

    # Procedure plausibility
    procedure_min_chars: int = 15
    procedure_max_chars: int = 200
    procedure_min_words: int = 2
    procedure_word_min_len: int = 3

    # Semantic fallback
    context_window: int = 100
    event_context_before: int = 50
    event_context_after: int = 100
    max_course_events: int = 10
    max_discharge_diagnoses: int = 3


DEFAULT_THRESHOLDS = ExtractionThresholds()
