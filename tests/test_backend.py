"""Tests for the OpenAI-compatible completion backend."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from sshai_client.config import AIConfig
from sshai_client.errors import GenerationError, GenerationErrorKind
from sshai_client.services.backend import OpenAICompatibleBackend, build_system_prompt, parse_payload
from sshai_client.storage.models import TerminalContext

_REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


def completion(content: str, model: str = "gpt-4o-mini"):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        model=model,
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=30),
    )


def make_backend(create: AsyncMock) -> OpenAICompatibleBackend:
    client = MagicMock()
    client.chat.completions.create = create
    return OpenAICompatibleBackend(model="gpt-4o-mini", provider="openai", client=client)


def status_error(cls, status: int):
    response = httpx.Response(status, request=_REQUEST)
    return cls("error", response=response, body=None)


class TestParsePayload:
    def test_plain_json(self):
        assert parse_payload('{"command": "ls"}') == {"command": "ls"}

    def test_fenced_json(self):
        content = 'Here you go:\n```json\n{"command": "df -h"}\n```\n'
        assert parse_payload(content) == {"command": "df -h"}

    def test_json_with_surrounding_prose(self):
        assert parse_payload('Sure! {"command": "pwd"} Enjoy.') == {"command": "pwd"}

    @pytest.mark.parametrize("content", ["", "   ", "just run ls", "[1, 2]", "{not json}"])
    def test_malformed(self, content):
        with pytest.raises(GenerationError) as exc_info:
            parse_payload(content)
        assert exc_info.value.kind == GenerationErrorKind.MALFORMED


class TestPrompt:
    def test_context_in_prompt(self):
        ctx = TerminalContext(
            os_name="Darwin",
            os_version="14.0",
            architecture="arm64",
            shell="zsh",
            working_directory="/Users/test",
            recent_commands=["pwd", "ls"],
        )
        prompt = build_system_prompt(ctx)
        assert "Darwin 14.0" in prompt
        assert "Shell: zsh" in prompt
        assert "arm64" in prompt
        assert "/Users/test" in prompt
        assert "pwd, ls" in prompt
        assert "requires_confirmation" in prompt


class TestOpenAICompatibleBackend:
    @pytest.mark.asyncio
    async def test_complete(self, context):
        payload = {"command": "df -h", "confidence": 0.9, "risk": {"level": "safe"}}
        create = AsyncMock(return_value=completion(json.dumps(payload)))
        backend = make_backend(create)

        response = await backend.complete("how do I free disk space", context)

        assert response.payload == payload
        assert response.model == "gpt-4o-mini"
        assert response.provider == "openai"
        assert response.total_tokens == 150
        kwargs = create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][1] == {"role": "user", "content": "how do I free disk space"}
        assert kwargs["messages"][0]["role"] == "system"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, kind",
        [
            (openai.APITimeoutError(request=_REQUEST), GenerationErrorKind.TIMEOUT),
            (openai.APIConnectionError(request=_REQUEST), GenerationErrorKind.NETWORK_FAILURE),
            (status_error(openai.AuthenticationError, 401), GenerationErrorKind.AUTH_FAILURE),
            (status_error(openai.RateLimitError, 429), GenerationErrorKind.RATE_LIMITED),
            (status_error(openai.InternalServerError, 503), GenerationErrorKind.NETWORK_FAILURE),
        ],
    )
    async def test_error_mapping(self, context, error, kind):
        backend = make_backend(AsyncMock(side_effect=error))
        with pytest.raises(GenerationError) as exc_info:
            await backend.complete("q", context)
        assert exc_info.value.kind == kind

    @pytest.mark.asyncio
    async def test_non_json_completion(self, context):
        backend = make_backend(AsyncMock(return_value=completion("I cannot help with that.")))
        with pytest.raises(GenerationError) as exc_info:
            await backend.complete("q", context)
        assert exc_info.value.kind == GenerationErrorKind.MALFORMED

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("SSHAI_API_KEY", raising=False)
        with pytest.raises(GenerationError) as exc_info:
            OpenAICompatibleBackend.from_config(AIConfig(provider="groq"))
        assert exc_info.value.kind == GenerationErrorKind.AUTH_FAILURE

    def test_ollama_needs_no_key(self, monkeypatch):
        monkeypatch.delenv("SSHAI_API_KEY", raising=False)
        backend = OpenAICompatibleBackend.from_config(AIConfig(provider="ollama"))
        assert backend.model == "llama3.1"
        assert backend.provider == "ollama"

    def test_from_config_uses_preset(self, monkeypatch):
        monkeypatch.setenv("SSHAI_API_KEY", "sk-test")
        backend = OpenAICompatibleBackend.from_config(AIConfig(provider="groq"))
        assert backend.model == "llama-3.3-70b-versatile"
        assert str(backend._client.base_url).startswith("https://api.groq.com/openai/v1")
