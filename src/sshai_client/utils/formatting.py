"""Text formatting helpers for the terminal front end."""

from __future__ import annotations

from rich.markup import escape

from sshai_client.storage.models import HistoryItem, RiskLevel, Suggestion

MAX_DISPLAY_CHARS = 20000

RISK_STYLES: dict[RiskLevel, str] = {
    RiskLevel.SAFE: "green",
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "red",
    RiskLevel.CRITICAL: "bold red",
}


def format_duration(ms: int) -> str:
    """Format milliseconds to human-readable duration."""
    if ms < 1000:
        return f"{ms}ms"
    elif ms < 60000:
        return f"{ms / 1000:.1f}s"
    else:
        minutes = ms // 60000
        seconds = (ms % 60000) // 1000
        return f"{minutes}m {seconds}s"


def truncate_output(text: str, max_len: int = MAX_DISPLAY_CHARS) -> str:
    """Keep the tail of long output, where errors usually are."""
    if len(text) <= max_len:
        return text
    dropped = len(text) - max_len
    return f"... ({dropped} characters omitted)\n{text[-max_len:]}"


def format_history_item(item: HistoryItem) -> str:
    """Format an executed command for plain-text display."""
    status = "OK" if item.is_success else f"ERR({item.exit_code})"
    body = item.output
    if item.error:
        body = f"{body}{item.error}" if body else item.error
    return f"$ {item.command}\n[{status}]\n{truncate_output(body) or '(no output)'}"


def format_risk(suggestion: Suggestion) -> str:
    """Rich markup for a suggestion's risk level."""
    risk = suggestion.risk
    style = RISK_STYLES[risk.level]
    label = f"[{style}]{risk.level.value.upper()}[/{style}] ({risk.score:.2f})"
    if risk.requires_confirmation:
        label += " [bold]confirmation required[/bold]"
    return label


def format_suggestion(suggestion: Suggestion, from_cache: bool = False) -> list[str]:
    """Rich markup lines describing a suggestion."""
    lines = [
        f"[bold cyan]{escape(suggestion.command)}[/bold cyan]",
        f"Risk: {format_risk(suggestion)} - {suggestion.risk.level.description}",
        f"Confidence: {suggestion.confidence:.0%}" + (" [dim](cached)[/dim]" if from_cache else ""),
    ]
    if suggestion.explanation:
        lines.append(escape(suggestion.explanation))
    for warning in suggestion.risk.warnings:
        lines.append(f"[yellow]! {escape(warning)}[/yellow]")
    for alt in suggestion.alternatives:
        line = f"  alt: [cyan]{escape(alt.command)}[/cyan]"
        if alt.description:
            line += f" - {escape(alt.description)}"
        lines.append(line)
    return lines
