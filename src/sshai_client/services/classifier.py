"""Rule-based intent classifier: direct shell command vs natural-language request."""

from __future__ import annotations

import logging
import re

from sshai_client.storage.models import Classification, InputType, TerminalContext

logger = logging.getLogger(__name__)

KNOWN_EXECUTABLES: frozenset[str] = frozenset(
    {
        "apt", "apt-get", "awk", "brew", "bash", "cargo", "cd", "chmod", "chown", "cp",
        "crontab", "curl", "df", "diff", "dig", "dnf", "docker", "du", "env", "git",
        "grep", "gzip", "helm", "hostname", "htop", "ifconfig", "ip", "journalctl",
        "jq", "kubectl", "ln", "ls", "lsblk", "lsof", "mkdir", "mv", "netstat", "node",
        "npm", "nslookup", "pip", "pip3", "ping", "pkill", "ps", "pwd", "python",
        "python3", "rm", "rmdir", "rsync", "scp", "sed", "sh", "ssh", "ss", "stat",
        "sudo", "systemctl", "tar", "tee", "terraform", "tmux", "traceroute", "uname",
        "unzip", "uptime", "vim", "wc", "wget", "whoami", "xargs", "yarn", "yum",
        "zip", "zsh",
    }
)

# Executables that are also everyday English words; these need argument-like syntax.
ENGLISH_OVERLAP: frozenset[str] = frozenset(
    {
        "cat", "clear", "cut", "date", "echo", "export", "file", "find", "free", "go",
        "head", "history", "id", "kill", "less", "make", "man", "more", "service",
        "sort", "tail", "test", "time", "top", "touch", "watch", "which", "who", "yes",
    }
)

NATURAL_LANGUAGE_PHRASES: tuple[str, ...] = (
    "how to", "how do i", "how can i", "what is", "what are", "why", "can you",
    "could you", "help me", "show me", "tell me", "find me", "explain", "list all",
    "get all", "display all", "i want", "i need", "please",
)

STOP_WORDS: frozenset[str] = frozenset(
    {
        "a", "all", "an", "and", "any", "are", "big", "for", "from", "in", "is", "it",
        "large", "me", "my", "of", "on", "that", "the", "this", "to", "which", "with",
    }
)

_SHELL_OPERATORS = ("&&", "||", "$(", "|", ">", "<", ";", "`")
_PATH_PREFIXES = ("/", "./", "../", "~/", "~")
_ENV_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=\S*\s")
_CJK = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")


class IntentClassifier:
    """Classify user input in fixed priority order.

    1. Syntactic command markers -> command (high confidence)
    2. Natural-language markers -> natural language
    3. Heuristic score; ties go to natural language
    """

    def classify(self, text: str, context: TerminalContext | None = None) -> Classification:
        trimmed = text.strip()
        if not trimmed:
            return Classification(InputType.COMMAND, 0.5, "Empty input")

        unquoted = _strip_quoted(trimmed)

        marker = self._command_marker(trimmed, unquoted, context)
        if marker:
            return Classification(InputType.COMMAND, 0.9, marker)

        marker = self._natural_language_marker(unquoted)
        if marker:
            confidence = 0.95 if marker.startswith("Contains Chinese") else 0.8
            return Classification(InputType.NATURAL_LANGUAGE, confidence, marker)

        return self._heuristic(trimmed)

    def _command_marker(
        self, trimmed: str, unquoted: str, context: TerminalContext | None
    ) -> str:
        if context and trimmed in context.recent_commands:
            return "Matches a recent command"
        if _is_fully_quoted(trimmed):
            return "Quoted literal"
        if trimmed.startswith(_PATH_PREFIXES):
            return "Starts with a path"
        for op in _SHELL_OPERATORS:
            if op in unquoted:
                return f"Contains shell operator '{op}'"
        if _ENV_ASSIGNMENT.match(trimmed):
            return "Starts with an environment assignment"

        tokens = trimmed.split()
        first = tokens[0].lower()
        if first in KNOWN_EXECUTABLES and first == tokens[0]:
            return f"Starts with known executable '{first}'"
        if first in ENGLISH_OVERLAP and first == tokens[0]:
            rest = unquoted.split()[1:]
            if not rest:
                if len(tokens) == 1:
                    return f"Bare '{first}'"
                return f"Starts with '{first}' and a quoted argument"
            if any(_is_flag(t) for t in rest):
                return f"Starts with '{first}' followed by flags"
            # "find large files in /var/log" is a request, not a find invocation.
            if any(t.lower() in STOP_WORDS for t in rest):
                return ""
            if any(_looks_like_argument(t) for t in rest):
                return f"Starts with '{first}' followed by arguments"
        return ""

    def _natural_language_marker(self, unquoted: str) -> str:
        if _CJK.search(unquoted):
            return "Contains Chinese characters"
        lowered = unquoted.lower()
        words = f" {' '.join(re.findall(r'[a-z]+', lowered))} "
        for phrase in NATURAL_LANGUAGE_PHRASES:
            if f" {phrase} " in words:
                return f"Contains natural language phrase '{phrase}'"
        if lowered.rstrip().endswith("?"):
            return "Ends with a question mark"
        return ""

    def _heuristic(self, trimmed: str) -> Classification:
        tokens = trimmed.split()
        command_score = 0.0
        prose_score = 0.0

        if len(tokens) == 1:
            command_score += 1.0
        elif len(tokens) >= 4:
            prose_score += 1.0

        for token in tokens:
            lowered = token.lower()
            if _looks_like_argument(token):
                command_score += 1.0
            elif lowered in STOP_WORDS:
                prose_score += 1.0

        if command_score > prose_score:
            confidence = min(0.5 + 0.1 * (command_score - prose_score), 0.75)
            result = Classification(
                InputType.COMMAND,
                confidence,
                f"Heuristic score favours command ({command_score:.0f} vs {prose_score:.0f})",
            )
        else:
            confidence = min(0.5 + 0.1 * (prose_score - command_score), 0.75)
            result = Classification(
                InputType.NATURAL_LANGUAGE,
                confidence,
                f"Heuristic score favours natural language ({prose_score:.0f} vs {command_score:.0f})",
            )
        logger.debug("Heuristic classification for %r: %s", trimmed, result.reason)
        return result


def _is_flag(token: str) -> bool:
    return len(token) > 1 and token[0] in "-+"


def _looks_like_argument(token: str) -> bool:
    if _is_flag(token):
        return True
    if "/" in token or "=" in token or token.startswith(("~", "$", "*")):
        return True
    # file.txt, archive.tar.gz - but not a trailing full stop
    return "." in token.strip(".") and not token.endswith(".")


def _is_fully_quoted(text: str) -> bool:
    return len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"')


def _strip_quoted(text: str) -> str:
    """Return text with the contents of quoted segments blanked out."""
    out: list[str] = []
    quote: str | None = None
    escaped = False
    for ch in text:
        if escaped:
            escaped = False
            out.append(" " if quote else ch)
            continue
        if ch == "\\" and quote != "'":
            escaped = True
            out.append(" " if quote else ch)
            continue
        if quote:
            if ch == quote:
                quote = None
            out.append(" ")
            continue
        if ch in ("'", '"'):
            quote = ch
            out.append(" ")
            continue
        out.append(ch)
    if quote:
        # Unbalanced quote, most likely an apostrophe in prose ("what's").
        return text
    return "".join(out)
