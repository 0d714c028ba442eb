"""Completion backends that turn a natural-language request into a suggestion payload."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI

from sshai_client.config import AIConfig
from sshai_client.errors import GenerationError, GenerationErrorKind
from sshai_client.storage.models import TerminalContext

logger = logging.getLogger(__name__)

# Local servers such as ollama accept any key.
KEYLESS_PROVIDERS = frozenset({"ollama"})

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


@dataclass
class BackendResponse:
    payload: dict[str, Any]
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class CompletionBackend(Protocol):
    async def complete(self, query: str, context: TerminalContext) -> BackendResponse: ...


def build_system_prompt(context: TerminalContext) -> str:
    recent = ", ".join(context.recent_commands[-10:]) or "(none)"
    os_line = f"{context.os_name} {context.os_version}".strip()
    return (
        "You are an expert system administrator and command-line assistant. "
        "Convert the user's natural-language request into ONE safe, accurate shell command.\n\n"
        "CONTEXT:\n"
        f"- Operating System: {os_line}\n"
        f"- Shell: {context.shell}\n"
        f"- Architecture: {context.architecture or 'unknown'}\n"
        f"- Working Directory: {context.working_directory}\n"
        f"- Recent Commands: {recent}\n\n"
        "Respond ONLY with a JSON object:\n"
        "{\n"
        '  "command": "the exact shell command",\n'
        '  "explanation": "brief explanation of what the command does",\n'
        '  "confidence": 0.95,\n'
        '  "risk": {"level": "safe|low|medium|high|critical", "score": 0.0, '
        '"factors": ["..."], "warnings": ["..."], "requires_confirmation": false},\n'
        '  "alternatives": [{"command": "...", "description": "...", "tradeoffs": "..."}]\n'
        "}\n\n"
        "SAFETY RULES:\n"
        "1. Never generate commands that delete important system files.\n"
        "2. Flag destructive operations (rm, dd, mkfs, etc.) as high or critical "
        "and set requires_confirmation to true.\n"
        "3. Prefer safe flags (rm -i over rm -f).\n"
        "4. Use only tools available on the described system."
    )


def parse_payload(content: str) -> dict[str, Any]:
    """Extract the JSON object from a completion. Raises GenerationError(MALFORMED)."""
    text = content.strip()
    if not text:
        raise GenerationError(GenerationErrorKind.MALFORMED, "Empty completion")

    fenced = _FENCED_JSON.search(text)
    if fenced:
        text = fenced.group(1)
    elif not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            text = text[start : end + 1]

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise GenerationError(GenerationErrorKind.MALFORMED, f"Completion is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise GenerationError(GenerationErrorKind.MALFORMED, "Completion JSON is not an object")
    return data


class OpenAICompatibleBackend:
    """Chat-completions backend for any OpenAI-compatible endpoint."""

    def __init__(
        self,
        model: str,
        provider: str = "openai",
        api_key: str = "",
        base_url: str = "",
        timeout: float = 30.0,
        max_tokens: int = 500,
        temperature: float = 0.1,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.provider = provider
        self.max_tokens = max_tokens
        self.temperature = temperature
        if client is None:
            if not api_key and provider in KEYLESS_PROVIDERS:
                api_key = provider
            if not api_key:
                raise GenerationError(GenerationErrorKind.AUTH_FAILURE, f"No API key configured for {provider}")
            # Retries are left to the caller.
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url or None,
                timeout=timeout,
                max_retries=0,
            )
        self._client = client

    @classmethod
    def from_config(cls, config: AIConfig) -> OpenAICompatibleBackend:
        return cls(
            model=config.resolved_model(),
            provider=config.provider,
            api_key=os.environ.get(config.api_key_env, ""),
            base_url=config.resolved_base_url(),
            timeout=config.timeout,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )

    async def complete(self, query: str, context: TerminalContext) -> BackendResponse:
        messages = [
            {"role": "system", "content": build_system_prompt(context)},
            {"role": "user", "content": query},
        ]
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                response_format={"type": "json_object"},
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.APITimeoutError as e:
            raise GenerationError(GenerationErrorKind.TIMEOUT, "Completion request timed out") from e
        except openai.APIConnectionError as e:
            raise GenerationError(GenerationErrorKind.NETWORK_FAILURE, f"Cannot reach {self.provider}: {e}") from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise GenerationError(GenerationErrorKind.AUTH_FAILURE, "Invalid API key") from e
        except openai.RateLimitError as e:
            raise GenerationError(GenerationErrorKind.RATE_LIMITED, "Rate limit exceeded") from e
        except openai.APIStatusError as e:
            raise GenerationError(
                GenerationErrorKind.NETWORK_FAILURE, f"{self.provider} returned HTTP {e.status_code}"
            ) from e

        if not response.choices:
            raise GenerationError(GenerationErrorKind.MALFORMED, "Completion has no choices")
        content = response.choices[0].message.content or ""
        usage = response.usage
        return BackendResponse(
            payload=parse_payload(content),
            model=response.model or self.model,
            provider=self.provider,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )
