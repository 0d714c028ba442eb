"""Tests for formatting utilities."""

from __future__ import annotations

from sshai_client.storage.models import Alternative, HistoryItem, RiskAssessment, RiskLevel, Suggestion
from sshai_client.utils.formatting import (
    format_duration,
    format_history_item,
    format_risk,
    format_suggestion,
    truncate_output,
)


class TestFormatDuration:
    def test_milliseconds(self):
        assert format_duration(500) == "500ms"

    def test_seconds(self):
        assert format_duration(5500) == "5.5s"

    def test_minutes(self):
        assert format_duration(125000) == "2m 5s"


class TestTruncateOutput:
    def test_short(self):
        assert truncate_output("abc", max_len=10) == "abc"

    def test_keeps_tail(self):
        result = truncate_output("0123456789", max_len=4)
        assert result.endswith("6789")
        assert "6 characters omitted" in result


class TestFormatHistoryItem:
    def test_success(self):
        item = HistoryItem(command="pwd", output="/tmp\n", error=None, exit_code=0)
        text = format_history_item(item)
        assert "$ pwd" in text
        assert "[OK]" in text
        assert "/tmp" in text

    def test_failure(self):
        item = HistoryItem(command="nope", output="", error="bash: nope: command not found\n", exit_code=127)
        text = format_history_item(item)
        assert "ERR(127)" in text
        assert "command not found" in text

    def test_no_output(self):
        item = HistoryItem(command="true", output="", error=None, exit_code=0)
        assert "(no output)" in format_history_item(item)


class TestFormatSuggestion:
    def make(self, **risk) -> Suggestion:
        return Suggestion(
            command="find . -name '[a-z]*.log'",
            confidence=0.87,
            risk=RiskAssessment(**risk),
            explanation="Find log files",
            alternatives=[Alternative(command="ls *.log", description="current directory only")],
        )

    def test_lines(self):
        lines = format_suggestion(self.make(level=RiskLevel.SAFE, score=0.1))
        assert "[a-z]" in lines[0].replace("\\[", "[")
        assert "87%" in lines[2]
        assert any("ls *.log" in line for line in lines)

    def test_cached_marker(self):
        lines = format_suggestion(self.make(), from_cache=True)
        assert "cached" in lines[2]

    def test_confirmation_label(self):
        label = format_risk(self.make(level=RiskLevel.HIGH, score=0.8, requires_confirmation=True))
        assert "HIGH" in label
        assert "confirmation required" in label
