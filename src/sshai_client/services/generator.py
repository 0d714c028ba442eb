"""Suggestion generation on top of a completion backend."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from sshai_client.errors import GenerationError, GenerationErrorKind
from sshai_client.services.backend import BackendResponse, CompletionBackend
from sshai_client.services.blacklist import BlacklistChecker, blacklist_checker
from sshai_client.storage.models import Suggestion, TerminalContext

logger = logging.getLogger(__name__)


@dataclass
class GenerationMetrics:
    """Running totals for completed generations."""

    requests: int = 0
    failures: int = 0
    total_latency_ms: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    last_latency_ms: int = 0

    @property
    def average_latency_ms(self) -> float:
        return self.total_latency_ms / self.requests if self.requests else 0.0

    def record(self, latency_ms: int, response: BackendResponse | None = None) -> None:
        self.last_latency_ms = latency_ms
        if response is None:
            self.failures += 1
            return
        self.requests += 1
        self.total_latency_ms += latency_ms
        self.prompt_tokens += response.prompt_tokens
        self.completion_tokens += response.completion_tokens


@dataclass
class GeneratedSuggestion:
    suggestion: Suggestion
    model_id: str
    provider_id: str


class SuggestionGenerator:
    """Ask the backend for a command and vet the result locally."""

    def __init__(
        self,
        backend: CompletionBackend,
        checker: BlacklistChecker | None = None,
    ) -> None:
        self.backend = backend
        self.checker = checker or blacklist_checker
        self.metrics = GenerationMetrics()

    async def generate(self, query: str, context: TerminalContext) -> Suggestion:
        """Produce a suggestion or raise GenerationError. Not retried."""
        return (await self.generate_detailed(query, context)).suggestion

    async def generate_detailed(self, query: str, context: TerminalContext) -> GeneratedSuggestion:
        """Like generate(), also reporting which model and provider answered."""
        start = time.monotonic()
        try:
            response = await self.backend.complete(query, context)
        except GenerationError as e:
            self.metrics.record(int((time.monotonic() - start) * 1000))
            logger.warning("Generation failed (%s): %s", e.kind.value, e)
            raise
        elapsed_ms = int((time.monotonic() - start) * 1000)

        try:
            suggestion = Suggestion.from_dict(response.payload)
        except (KeyError, ValueError, TypeError) as e:
            self.metrics.record(elapsed_ms)
            raise GenerationError(GenerationErrorKind.MALFORMED, f"Invalid suggestion payload: {e}") from e

        suggestion.risk = self.checker.screen(suggestion.command, suggestion.risk)
        self.metrics.record(elapsed_ms, response)
        logger.info(
            "Generated suggestion via %s/%s in %dms (tokens: %d prompt, %d completion)",
            response.provider,
            response.model,
            elapsed_ms,
            response.prompt_tokens,
            response.completion_tokens,
        )
        return GeneratedSuggestion(
            suggestion=suggestion,
            model_id=response.model,
            provider_id=response.provider,
        )
