"""Tests for suggestion generation and local risk screening."""

from __future__ import annotations

import pytest

from sshai_client.errors import GenerationError, GenerationErrorKind
from sshai_client.services.generator import SuggestionGenerator
from sshai_client.storage.models import RiskLevel
from conftest import FakeBackend


class TestSuggestionGenerator:
    @pytest.mark.asyncio
    async def test_generate(self, context):
        backend = FakeBackend()
        generator = SuggestionGenerator(backend)
        suggestion = await generator.generate("how big is the log dir", context)
        assert suggestion.command == "du -sh /var/log"
        assert suggestion.risk.level == RiskLevel.SAFE
        assert suggestion.risk.requires_confirmation is False
        assert backend.calls == ["how big is the log dir"]

    @pytest.mark.asyncio
    async def test_generate_detailed_reports_model(self, context):
        generator = SuggestionGenerator(FakeBackend())
        generated = await generator.generate_detailed("q", context)
        assert generated.model_id == "test-model"
        assert generated.provider_id == "test"

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, context):
        generator = SuggestionGenerator(FakeBackend())
        await generator.generate("q1", context)
        await generator.generate("q2", context)
        assert generator.metrics.requests == 2
        assert generator.metrics.prompt_tokens == 24
        assert generator.metrics.completion_tokens == 16
        assert generator.metrics.failures == 0

    @pytest.mark.asyncio
    async def test_backend_error_propagates(self, context):
        backend = FakeBackend(error=GenerationError(GenerationErrorKind.RATE_LIMITED, "slow down"))
        generator = SuggestionGenerator(backend)
        with pytest.raises(GenerationError) as exc_info:
            await generator.generate("q", context)
        assert exc_info.value.kind == GenerationErrorKind.RATE_LIMITED
        assert generator.metrics.failures == 1
        # Not retried
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_command_is_malformed(self, context):
        generator = SuggestionGenerator(FakeBackend(payload={"explanation": "no command here"}))
        with pytest.raises(GenerationError) as exc_info:
            await generator.generate("q", context)
        assert exc_info.value.kind == GenerationErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_blank_command_is_malformed(self, context):
        generator = SuggestionGenerator(FakeBackend(payload={"command": "   "}))
        with pytest.raises(GenerationError) as exc_info:
            await generator.generate("q", context)
        assert exc_info.value.kind == GenerationErrorKind.MALFORMED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"command": "ls", "risk": ["high"]},
            {"command": "ls", "risk": 3},
            {"command": "ls", "alternatives": ["ls -la"]},
            {"command": "ls", "alternatives": 5},
        ],
    )
    async def test_wrong_shapes_are_malformed(self, context, payload):
        generator = SuggestionGenerator(FakeBackend(payload=payload))
        with pytest.raises(GenerationError) as exc_info:
            await generator.generate("q", context)
        assert exc_info.value.kind == GenerationErrorKind.MALFORMED
        assert generator.metrics.failures == 1

    @pytest.mark.asyncio
    async def test_destructive_command_escalated(self, context):
        payload = {"command": "rm -rf /", "confidence": 0.9, "risk": {"level": "safe", "score": 0.0}}
        generator = SuggestionGenerator(FakeBackend(payload=payload))
        suggestion = await generator.generate("wipe everything", context)
        assert suggestion.risk.level == RiskLevel.CRITICAL
        assert suggestion.risk.requires_confirmation is True
        assert suggestion.risk.score >= 0.95

    @pytest.mark.asyncio
    async def test_high_risk_requires_confirmation(self, context):
        payload = {"command": "systemctl stop nginx", "risk": {"level": "high", "requires_confirmation": False}}
        generator = SuggestionGenerator(FakeBackend(payload=payload))
        suggestion = await generator.generate("stop the web server", context)
        assert suggestion.risk.level == RiskLevel.HIGH
        assert suggestion.risk.requires_confirmation is True

    @pytest.mark.asyncio
    async def test_legacy_risk_string(self, context):
        payload = {"command": "chmod 600 key.pem", "risk": "caution", "confidence": 1.7}
        generator = SuggestionGenerator(FakeBackend(payload=payload))
        suggestion = await generator.generate("lock down the key", context)
        assert suggestion.risk.level == RiskLevel.MEDIUM
        assert suggestion.confidence == 1.0
