"""Shared text helpers for turnbridge."""

from __future__ import annotations

import os

# Only these variables are forwarded to AI CLI subprocesses.
AI_CLI_ENV_ALLOWLIST = ("PATH", "HOME", "ANTHROPIC_API_KEY", "TMPDIR", "LANG", "LC_ALL")


def strip_control(text: str) -> str:
    """Remove ANSI CSI escape sequences and control characters.

    Newlines are kept. A CSI sequence is ``ESC [`` followed by anything up
    to and including the first ASCII letter; a bare ESC is dropped on its own.

    Args:
        text: Text about to be typed into a terminal pane

    Returns:
        The visible characters of ``text``, in order
    """
    out: list[str] = []
    i = 0
    length = len(text)
    while i < length:
        ch = text[i]
        if ch == "\x1b":
            i += 1
            if i < length and text[i] == "[":
                i += 1
                while i < length:
                    terminator = text[i]
                    i += 1
                    if terminator.isascii() and terminator.isalpha():
                        break
            continue
        if ch != "\n" and _is_control(ch):
            i += 1
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _is_control(ch: str) -> bool:
    code = ord(ch)
    return code < 0x20 or 0x7F <= code <= 0x9F


def sanitise_for_applescript(text: str) -> str:
    """Drop characters that break an AppleScript string literal passed via ``osascript -e``."""
    return "".join(
        ch for ch in text if ch not in ("\n", "\r", "¬") and not _is_control(ch)
    )


def applescript_quote(text: str) -> str:
    """Sanitise and escape ``text`` for use inside double quotes in AppleScript."""
    return sanitise_for_applescript(text).replace("\\", "\\\\").replace('"', '\\"')


def ai_cli_env() -> dict[str, str]:
    return {key: value for key, value in os.environ.items() if key in AI_CLI_ENV_ALLOWLIST}


def strip_think(text: str) -> str:
    """Remove ``<think>...</think>`` blocks emitted by reasoning models.

    An unterminated ``<think>`` drops everything after it.
    """
    result: list[str] = []
    rest = text
    while True:
        start = rest.find("<think>")
        if start == -1:
            break
        result.append(rest[:start])
        end = rest.find("</think>", start)
        if end == -1:
            rest = ""
            break
        rest = rest[end + len("</think>"):].lstrip()
    result.append(rest)
    return "".join(result).strip()


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]
