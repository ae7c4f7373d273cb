"""
=============================================================================
LLM CLIENT FOR THE AUGMENTATION ADAPTERS
=============================================================================

PURPOSE:
    Send one prompt to the configured inference provider and hand back the
    text of its reply. The adapters build the prompts and own the fallback;
    this module only knows the provider envelopes.

PROVIDERS:
    anthropic   POST /v1/messages              -> content[0].text
    openai      POST /v1/chat/completions      -> choices[0].message.content
    google      POST :generateContent?key=...  -> candidates[0].content.parts[0].text

FAILURES:
    Every failure (missing key, HTTP status, transport error, unexpected
    envelope) is raised as LLMClientError. The adapters catch it and fall
    back; nothing here is retried.

USAGE:
    from neuro_discharge.clients import get_client

    client = get_client()
    if client.configured:
        text = await client.complete(prompt, temperature=0.1, max_tokens=1500)

=============================================================================
"""

import json
import logging
import re
from typing import Any, Dict, Optional

import httpx

from ..config import LLMConfig, LLMProvider

# ============================================================
# SETUP
# ============================================================

logger = logging.getLogger("neuro-discharge.llm")

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

SYSTEM_PROMPT = (
    "You are a medical data extraction assistant for neurosurgical discharge summaries. "
    "Extract only what the notes state. Respond with JSON only."
)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class LLMClientError(Exception):
    """Raised for any failure talking to the inference provider."""


# ============================================================
# RESPONSE PARSING
# ============================================================

def parse_llm_json(text: str) -> Any:
    """
    Permissive JSON parse of a model reply.

    Tried in order:
        1. The whole reply as JSON
        2. The first markdown code fence (```json ... ```)
        3. The substring between the first '{' and the last '}'

    Raises ValueError when none of them parses.
    """
    if text is None:
        raise ValueError("Empty model response")
    text = text.strip()
    if not text:
        raise ValueError("Empty model response")

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    fenced = _FENCED_JSON.search(text)
    if fenced:
        try:
            return json.loads(fenced.group(1).strip())
        except json.JSONDecodeError:
            pass

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            pass

    raise ValueError(f"No JSON object found in model response: {text[:80]!r}")


# ============================================================
# MAIN CLIENT CLASS
# ============================================================

class LLMClient:
    """
    Provider-agnostic completion client over httpx.

    A custom httpx transport can be injected (httpx.MockTransport in tests).
    """

    def __init__(self, config: Optional[LLMConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or LLMConfig()
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self.config.is_configured()

    @property
    def provider(self) -> str:
        return self.config.provider.value

    async def complete(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send a single prompt and return the reply text."""
        api_key = self.config.api_key()
        if not api_key:
            raise LLMClientError(f"{self.provider} API key not configured")

        temperature = self.config.temperature if temperature is None else temperature
        max_tokens = max_tokens or self.config.max_tokens
        url, headers, body = self._build_request(api_key, prompt, temperature, max_tokens)

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.config.request_timeout) as client:
                response = await client.post(url, headers=headers, json=body)
        except httpx.HTTPError as e:
            raise LLMClientError(f"{self.provider} request failed: {e}") from e

        if response.status_code != 200:
            raise LLMClientError(f"{self.provider} HTTP {response.status_code}: {response.text[:200]}")

        try:
            text = self._extract_text(response.json())
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMClientError(f"Unexpected {self.provider} response envelope: {e}") from e

        logger.debug(f"{self.provider} replied with {len(text)} chars")
        return text

    async def complete_json(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Any:
        """complete() followed by the permissive JSON parse."""
        return parse_llm_json(await self.complete(prompt, temperature, max_tokens))

    # ------------------------------------------------------------
    # Provider envelopes
    # ------------------------------------------------------------

    def _build_request(self, api_key: str, prompt: str, temperature: float, max_tokens: int):
        provider = self.config.provider
        model = self.config.model

        if provider == LLMProvider.ANTHROPIC:
            return ANTHROPIC_URL, {
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "Content-Type": "application/json",
            }, {
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "system": SYSTEM_PROMPT,
                "messages": [{"role": "user", "content": prompt}],
            }

        if provider == LLMProvider.OPENAI:
            return OPENAI_URL, {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }, {
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            }

        return f"{GEMINI_URL.format(model=model)}?key={api_key}", {
            "Content-Type": "application/json",
        }, {
            "contents": [{"parts": [{"text": f"{SYSTEM_PROMPT}\n\n{prompt}"}]}],
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        }

    def _extract_text(self, result: Dict[str, Any]) -> str:
        provider = self.config.provider
        if provider == LLMProvider.ANTHROPIC:
            return result["content"][0]["text"]
        if provider == LLMProvider.OPENAI:
            return result["choices"][0]["message"]["content"]
        return result["candidates"][0]["content"]["parts"][0]["text"]


# ============================================================
# SINGLETON INSTANCE
# ============================================================

# Unconfigured until the host application calls configure_client()
_client: Optional[LLMClient] = None


def get_client() -> LLMClient:
    """Get or create the shared client."""
    global _client
    if _client is None:
        _client = LLMClient()
    return _client


def configure_client(config: LLMConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> LLMClient:
    """Replace the shared client (called once by the application entry point)."""
    global _client
    _client = LLMClient(config, transport=transport)
    logger.info(f"LLM client configured: provider={config.provider.value} model={config.model} "
                f"(configured={_client.configured})")
    return _client
