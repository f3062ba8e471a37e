"""Terminal snapshot cleaning.

Pure functions; cleaning a cleaned snapshot returns it unchanged.
"""

from __future__ import annotations

import re

_ANSI_RE = re.compile(
    r"[\u001b\u009b][\[()#;?]*(?:[0-9]{1,4}(?:;[0-9]{0,4})*)?[0-9A-ORZcf-nqry=><]"
)

_BANNER_MARKERS = ("▐▛", "▝▜", "▘▘", "Claude Code v")
_MODEL_LINE_RE = re.compile(r"^(Opus|Sonnet|Haiku)\s+\d+(\.\d+)?\s*[·|]")
_STATUS_PREFIXES = ("⏸", "▶")
_TIP_MARKERS = ("/ide for",)
_SEPARATOR_RE = re.compile(r"^─{10,}$")

SEPARATOR_REPLACEMENT = "─" * 24


def strip_ansi(text: str) -> str:
    if not text:
        return text
    return _ANSI_RE.sub("", text)


def _is_noise(trimmed: str) -> bool:
    if any(marker in trimmed for marker in _BANNER_MARKERS):
        return True
    if _MODEL_LINE_RE.match(trimmed):
        return True
    if trimmed.startswith(_STATUS_PREFIXES):
        return True
    return any(marker in trimmed for marker in _TIP_MARKERS)


def clean_terminal_output(text: str) -> str:
    """Drop banner/status/tip lines and shorten long rule lines."""
    cleaned: list[str] = []
    for line in strip_ansi(text or "").split("\n"):
        trimmed = line.strip()
        if _is_noise(trimmed):
            continue
        if _SEPARATOR_RE.match(trimmed):
            cleaned.append(SEPARATOR_REPLACEMENT)
            continue
        cleaned.append(line)
    return "\n".join(cleaned).strip()
