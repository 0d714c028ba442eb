"""Shared test fixtures."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from sshai_client.config import AIConfig, AppConfig, CacheConfig, LoggingConfig, SSHConfig, StorageConfig
from sshai_client.errors import GenerationError
from sshai_client.services.backend import BackendResponse
from sshai_client.storage.database import Database
from sshai_client.storage.models import ConnectionConfig, PasswordAuth, TerminalContext


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """Completion backend returning a fixed payload and counting calls."""

    def __init__(self, payload: dict | None = None, error: GenerationError | None = None) -> None:
        self.payload = payload or {
            "command": "du -sh /var/log",
            "confidence": 0.9,
            "explanation": "Show disk usage of the log directory",
            "risk": {"level": "safe", "score": 0.1},
        }
        self.error = error
        self.calls: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}

    async def complete(self, query: str, context: TerminalContext) -> BackendResponse:
        self.calls.append(query)
        gate = self.gates.get(query)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        payload = dict(self.payload)
        if gate is not None:
            payload["explanation"] = f"answer for {query}"
        return BackendResponse(
            payload=payload,
            model="test-model",
            provider="test",
            prompt_tokens=12,
            completion_tokens=8,
        )


@pytest.fixture
def app_config(tmp_path):
    """Create a test configuration."""
    return AppConfig(
        ssh=SSHConfig(host="test.example.com", username="alice", command_timeout=5),
        ai=AIConfig(provider="openai", model="gpt-4o-mini"),
        cache=CacheConfig(ttl_seconds=60, max_rows=10),
        storage=StorageConfig(db_path=str(tmp_path / "test.db")),
        logging=LoggingConfig(level="DEBUG", file=str(tmp_path / "test.log")),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def context():
    return TerminalContext(os_name="Linux", shell="bash", working_directory="/home/alice")


@pytest.fixture
def connection():
    return ConnectionConfig(host="test.example.com", username="alice", auth=PasswordAuth("secret"), timeout=5.0)


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    await database.connect()
    yield database
    await database.close()
