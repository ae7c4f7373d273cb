"""Tests for the provider client and the permissive JSON parse."""

import asyncio
import json

import httpx
import pytest

from neuro_discharge.clients import llm_client
from neuro_discharge.clients.llm_client import (
    ANTHROPIC_URL,
    ANTHROPIC_VERSION,
    OPENAI_URL,
    SYSTEM_PROMPT,
    LLMClient,
    LLMClientError,
    configure_client,
    get_client,
    parse_llm_json,
)
from neuro_discharge.config import LLMConfig, LLMProvider


def client_for(provider, key, handler, **config):
    cfg = LLMConfig(provider=provider, api_keys={provider: key}, **config)
    return LLMClient(cfg, transport=httpx.MockTransport(handler))


class TestParseLLMJson:
    def test_plain_json(self):
        assert parse_llm_json('{"a": 1}') == {"a": 1}

    def test_plain_list(self):
        assert parse_llm_json("[1, 2]") == [1, 2]

    def test_fenced_block(self):
        text = 'Here is the result:\n```json\n{"a": 1}\n```\nLet me know.'
        assert parse_llm_json(text) == {"a": 1}

    def test_outermost_braces(self):
        assert parse_llm_json('Sure! {"a": {"b": 2}} hope that helps') == {"a": {"b": 2}}

    @pytest.mark.parametrize("text", ["", "   ", "no json here", "{not: valid}"])
    def test_unparseable_raises_value_error(self, text):
        with pytest.raises(ValueError):
            parse_llm_json(text)


class TestProviderEnvelopes:
    def test_anthropic(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json={"content": [{"type": "text", "text": "hello back"}]})

        client = client_for(LLMProvider.ANTHROPIC, "a-key", handler)
        assert asyncio.run(client.complete("hello", temperature=0.3, max_tokens=123)) == "hello back"

        request = seen["request"]
        body = json.loads(request.content)
        assert str(request.url) == ANTHROPIC_URL
        assert request.headers["x-api-key"] == "a-key"
        assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
        assert body["system"] == SYSTEM_PROMPT
        assert body["messages"] == [{"role": "user", "content": "hello"}]
        assert body["max_tokens"] == 123
        assert body["temperature"] == 0.3

    def test_openai(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json={"choices": [{"message": {"content": "hi"}}]})

        client = client_for(LLMProvider.OPENAI, "sk-test", handler, model_name="gpt-test")
        assert asyncio.run(client.complete("hello")) == "hi"

        request = seen["request"]
        body = json.loads(request.content)
        assert str(request.url) == OPENAI_URL
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert body["model"] == "gpt-test"
        assert body["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert body["messages"][1] == {"role": "user", "content": "hello"}
        assert body["temperature"] == 0.1

    def test_google(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})

        client = client_for(LLMProvider.GOOGLE, "g-key", handler)
        assert asyncio.run(client.complete("hello")) == "ok"

        request = seen["request"]
        body = json.loads(request.content)
        assert request.url.params["key"] == "g-key"
        assert request.url.path.endswith("gemini-1.5-pro:generateContent")
        assert body["contents"][0]["parts"][0]["text"].endswith("hello")

    def test_complete_json_parses_fenced_reply(self):
        def handler(request):
            text = '```json\n{"complications": []}\n```'
            return httpx.Response(200, json={"content": [{"type": "text", "text": text}]})

        client = client_for(LLMProvider.ANTHROPIC, "a-key", handler)
        assert asyncio.run(client.complete_json("x")) == {"complications": []}


class TestFailures:
    def test_missing_key_never_calls_provider(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        client = LLMClient(LLMConfig(), transport=httpx.MockTransport(handler))
        assert not client.configured
        with pytest.raises(LLMClientError, match="not configured"):
            asyncio.run(client.complete("hello"))
        assert calls == []

    def test_http_error_status(self):
        client = client_for(LLMProvider.ANTHROPIC, "a-key", lambda r: httpx.Response(500, text="overloaded"))
        with pytest.raises(LLMClientError, match="HTTP 500"):
            asyncio.run(client.complete("hello"))

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = client_for(LLMProvider.ANTHROPIC, "a-key", handler)
        with pytest.raises(LLMClientError, match="request failed"):
            asyncio.run(client.complete("hello"))

    def test_unexpected_envelope(self):
        client = client_for(LLMProvider.OPENAI, "sk", lambda r: httpx.Response(200, json={"unexpected": True}))
        with pytest.raises(LLMClientError, match="Unexpected"):
            asyncio.run(client.complete("hello"))


class TestSharedClient:
    def test_default_client_is_unconfigured(self, monkeypatch):
        monkeypatch.setattr(llm_client, "_client", None)
        assert get_client().configured is False

    def test_configure_client_replaces_singleton(self, monkeypatch, anthropic_config):
        monkeypatch.setattr(llm_client, "_client", None)
        client = configure_client(anthropic_config)
        assert get_client() is client
        assert client.configured
        assert client.provider == "anthropic"


class TestConfigFromEnv:
    def test_reads_provider_and_key(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "OpenAI")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "5")
        config = LLMConfig.from_env()
        assert config.provider == LLMProvider.OPENAI
        assert config.api_key() == "sk-env"
        assert config.request_timeout == 5.0
        assert config.model == "gpt-4-turbo"

    def test_no_keys_means_unconfigured(self, monkeypatch):
        monkeypatch.delenv("LLM_PROVIDER", raising=False)
        for env in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GEMINI_API_KEY"):
            monkeypatch.delenv(env, raising=False)
        assert not LLMConfig.from_env().is_configured()
