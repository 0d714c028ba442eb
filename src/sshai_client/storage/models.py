"""Data models for sshai-client."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class InputType(str, Enum):
    COMMAND = "command"
    NATURAL_LANGUAGE = "natural_language"


class RiskLevel(str, Enum):
    SAFE = "safe"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def description(self) -> str:
        return _RISK_DESCRIPTIONS[self]


_RISK_DESCRIPTIONS = {
    RiskLevel.SAFE: "Safe to execute",
    RiskLevel.LOW: "Low impact",
    RiskLevel.MEDIUM: "Review before executing",
    RiskLevel.HIGH: "Modifies system state - confirm before executing",
    RiskLevel.CRITICAL: "Potentially destructive - use with extreme caution",
}

CONFIRMATION_LEVELS = frozenset({RiskLevel.HIGH, RiskLevel.CRITICAL})


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    FAILED = "failed"


# --- Connection ---


@dataclass(frozen=True)
class PasswordAuth:
    password: str = field(repr=False)

    @property
    def method(self) -> str:
        return "password"


@dataclass(frozen=True)
class KeyAuth:
    """Private key given either as a file path or as PEM text."""

    key_path: str = ""
    key_data: str = field(default="", repr=False)
    passphrase: str | None = field(default=None, repr=False)

    @property
    def method(self) -> str:
        return "key"


@dataclass(frozen=True)
class ConnectionConfig:
    host: str
    username: str
    auth: PasswordAuth | KeyAuth
    port: int = 22
    timeout: float = 15.0
    verify_host_key: bool = True


@dataclass
class Session:
    """A remote session tracked by the session manager."""

    id: str
    host: str
    port: int
    user: str
    auth_method: str
    state: SessionState = SessionState.DISCONNECTED
    handle: Any = field(default=None, repr=False)


# --- Execution ---


@dataclass(frozen=True)
class CommandRequest:
    command: str
    working_directory: str | None = None
    environment: dict[str, str] | None = None
    pty: bool = False


@dataclass
class CommandResult:
    """Result from a remote command execution."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def execution_time_ms(self) -> int:
        return max(int((self.finished_at - self.started_at) * 1000), 0)


@dataclass(frozen=True)
class HistoryItem:
    """A single executed (or rejected) command with sanitized output."""

    command: str
    output: str
    error: str | None
    exit_code: int
    timestamp: float = field(default_factory=time.time)
    source: str = "direct"

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0


# --- Classification & generation ---


@dataclass(frozen=True)
class Classification:
    type: InputType
    confidence: float
    reason: str


@dataclass
class TerminalContext:
    """What the client knows about the remote shell environment."""

    os_name: str = "Linux"
    os_version: str = ""
    architecture: str = ""
    shell: str = "bash"
    working_directory: str = "~"
    username: str = ""
    session_id: str = ""
    recent_commands: list[str] = field(default_factory=list)

    def fingerprint(self) -> tuple[str, str, str]:
        """Fields that participate in cache keys. Nothing volatile belongs here."""
        return (self.os_name, self.shell, self.working_directory)


@dataclass
class RiskAssessment:
    level: RiskLevel = RiskLevel.MEDIUM
    score: float = 0.5
    factors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    requires_confirmation: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "score": self.score,
            "factors": list(self.factors),
            "warnings": list(self.warnings),
            "requires_confirmation": self.requires_confirmation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RiskAssessment:
        raw_level = str(data.get("level", "medium")).lower()
        level = _LEVEL_ALIASES.get(raw_level) or _parse_level(raw_level)
        return cls(
            level=level,
            score=_clamp(float(data.get("score", 0.5))),
            factors=[str(f) for f in data.get("factors") or []],
            warnings=[str(w) for w in data.get("warnings") or []],
            requires_confirmation=bool(data.get("requires_confirmation", False)),
        )


@dataclass
class Alternative:
    command: str
    description: str = ""
    tradeoffs: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"command": self.command, "description": self.description, "tradeoffs": self.tradeoffs}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Alternative:
        return cls(
            command=str(data["command"]),
            description=str(data.get("description", "")),
            tradeoffs=data.get("tradeoffs"),
        )


@dataclass
class Suggestion:
    """A generated candidate command plus its risk and explanation metadata."""

    command: str
    confidence: float
    risk: RiskAssessment
    explanation: str = ""
    alternatives: list[Alternative] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "confidence": self.confidence,
            "risk": self.risk.to_dict(),
            "explanation": self.explanation,
            "alternatives": [a.to_dict() for a in self.alternatives],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Suggestion:
        """Build from the wire/persisted payload. Raises KeyError/ValueError/TypeError on bad input."""
        command = data["command"]
        if not isinstance(command, str) or not command.strip():
            raise ValueError("suggestion command must be a non-empty string")
        risk = data.get("risk") or {}
        if isinstance(risk, str):
            risk = {"level": risk}
        if not isinstance(risk, dict):
            raise TypeError(f"risk must be an object or a level name, not {type(risk).__name__}")
        return cls(
            command=command.strip(),
            confidence=_clamp(float(data.get("confidence", 0.0))),
            risk=RiskAssessment.from_dict(risk),
            explanation=str(data.get("explanation", "")),
            alternatives=[Alternative.from_dict(a) for a in data.get("alternatives") or []],
        )


@dataclass
class CacheEntry:
    """A persisted suggestion-cache row."""

    key: str
    query: str
    fingerprint: str
    suggestion: Suggestion
    model_id: str
    provider_id: str
    created_at: float = 0.0
    expires_at: float = 0.0
    accepted: bool = False
    id: int | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


_LEVEL_ALIASES = {
    "caution": RiskLevel.MEDIUM,
    "dangerous": RiskLevel.CRITICAL,
}


def _parse_level(raw: str) -> RiskLevel:
    try:
        return RiskLevel(raw)
    except ValueError:
        return RiskLevel.MEDIUM


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
