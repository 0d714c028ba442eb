"""Destructive command screening for generated suggestions."""

from __future__ import annotations

import logging
import re

from sshai_client.storage.models import CONFIRMATION_LEVELS, RiskAssessment, RiskLevel

logger = logging.getLogger(__name__)

BLACKLIST_PATTERNS: list[tuple[str, str]] = [
    (r":\(\)\s*\{\s*:\|:\s*&\s*\}", "Fork bomb detected"),
    (r"\brm\s+(-[rfRF]+\s+)?/\s*$", "Dangerous rm on root"),
    (r"\brm\s+-[a-zA-Z]*[rR][a-zA-Z]*\s", "Recursive delete"),
    (r"\bmkfs\b", "Filesystem format"),
    (r"\bdd\s+if=", "Raw disk write"),
    (r">\s*/dev/sd[a-z]", "Write to block device"),
    (r"\bchmod\s+(-R\s+)?777\s+/", "World-writable system path"),
    (r"(^|[;&|]\s*)(sudo\s+)?(shutdown|reboot|halt|poweroff)\b", "System control"),
    (r"\b(curl|wget)\b[^|]*\|\s*(sudo\s+)?(ba|z)?sh\b", "Pipes remote script into a shell"),
]


class BlacklistChecker:
    """Regex-based destructive command checker."""

    def __init__(self) -> None:
        self._patterns: list[tuple[re.Pattern[str], str]] = []
        for pattern, reason in BLACKLIST_PATTERNS:
            try:
                self._patterns.append((re.compile(pattern, re.IGNORECASE), reason))
            except re.error:
                logger.error("Invalid blacklist pattern: %s", pattern)

    def check(self, command: str) -> tuple[bool, str]:
        """Check if a command is destructive. Returns (matched, reason)."""
        for compiled, reason in self._patterns:
            if compiled.search(command):
                logger.warning("Destructive command: %s (reason: %s)", command, reason)
                return True, reason
        return False, ""

    def screen(self, command: str, risk: RiskAssessment) -> RiskAssessment:
        """Return a risk assessment no weaker than what local screening finds.

        High and critical levels always require confirmation, whatever the
        backend reported.
        """
        matched, reason = self.check(command)
        if matched:
            return RiskAssessment(
                level=RiskLevel.CRITICAL,
                score=max(risk.score, 0.95),
                factors=[*risk.factors, reason],
                warnings=[*risk.warnings, f"Blocked pattern: {reason}"],
                requires_confirmation=True,
            )
        if risk.level in CONFIRMATION_LEVELS and not risk.requires_confirmation:
            return RiskAssessment(
                level=risk.level,
                score=risk.score,
                factors=list(risk.factors),
                warnings=list(risk.warnings),
                requires_confirmation=True,
            )
        return risk


blacklist_checker = BlacklistChecker()
