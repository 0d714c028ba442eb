"""Terminal control sequence stripping for command output.

Two sequence classes are removed:

- OSC: ``ESC ]`` + 1-4 digit class code + ``;`` + payload, terminated by
  BEL or ``ESC \\`` (e.g. iTerm2 ``ESC ] 1337 ; ... BEL`` shell integration).
- CSI: ``ESC [`` + parameter bytes (0x30-0x3F) + intermediate bytes
  (0x20-0x2F) + one final byte (0x40-0x7E), e.g. ``ESC [ 0;31m``.

Anything that does not match either shape is left untouched.
"""

from __future__ import annotations

ESC = "\x1b"
BEL = "\x07"

_MAX_OSC_CODE_DIGITS = 4


def sanitize(text: str) -> str:
    """Remove OSC and CSI sequences from text."""
    if ESC not in text:
        return text
    while True:
        cleaned, removed = _scan(text)
        # A removal can join a stray ESC with the text after it; rescan until stable.
        if not removed or ESC not in cleaned:
            return cleaned
        text = cleaned


def _scan(text: str) -> tuple[str, bool]:
    out: list[str] = []
    removed = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == ESC and i + 1 < n:
            nxt = text[i + 1]
            end = -1
            if nxt == "]":
                end = _match_osc(text, i + 2)
            elif nxt == "[":
                end = _match_csi(text, i + 2)
            if end != -1:
                removed = True
                i = end
                continue
        out.append(ch)
        i += 1
    return "".join(out), removed


def _match_osc(text: str, start: int) -> int:
    """Return the index just past an OSC sequence body, or -1."""
    n = len(text)
    i = start
    while i < n and i - start < _MAX_OSC_CODE_DIGITS and "0" <= text[i] <= "9":
        i += 1
    if i == start or i >= n or text[i] != ";":
        return -1
    i += 1
    while i < n:
        ch = text[i]
        if ch == BEL:
            return i + 1
        if ch == ESC and i + 1 < n and text[i + 1] == "\\":
            return i + 2
        if ch == "\n":
            return -1
        i += 1
    return -1


def _match_csi(text: str, start: int) -> int:
    """Return the index just past a CSI sequence body, or -1."""
    n = len(text)
    i = start
    while i < n and "\x30" <= text[i] <= "\x3f":
        i += 1
    while i < n and "\x20" <= text[i] <= "\x2f":
        i += 1
    if i < n and "\x40" <= text[i] <= "\x7e":
        return i + 1
    return -1
