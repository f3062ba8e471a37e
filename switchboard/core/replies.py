"""Parsing of human replies to approval and question requests."""

from __future__ import annotations

import re

from switchboard.core.correlator import QuestionOption
from switchboard.core.ports import ApprovalDecision

_ALLOW_WORDS = {"allow", "yes", "y", "approve", "ok"}
_DENY_WORDS = {"deny", "no", "n", "reject"}
_ALWAYS_WORDS = {"always", "always allow", "always-allow"}
_FEEDBACK_RE = re.compile(r"^(?:deny|no)\s*[:\-]\s*(?P<feedback>.+)$", re.I | re.S)


def parse_approval_reply(text: str) -> ApprovalDecision | None:
    """Map `allow`, `deny`, `always` or `deny: <feedback>` to a decision.

    Returns None when the text is not an approval reply at all.
    """
    raw = (text or "").strip()
    if not raw:
        return None
    match = _FEEDBACK_RE.match(raw)
    if match:
        return ApprovalDecision.deny(match.group("feedback").strip())

    word = raw.lower().rstrip(".!")
    if word in _ALWAYS_WORDS:
        return ApprovalDecision.always()
    if word in _ALLOW_WORDS:
        return ApprovalDecision.allow()
    if word in _DENY_WORDS:
        return ApprovalDecision.deny()
    return None


def parse_approval_choice(choice: str, feedback: str | None = None) -> ApprovalDecision | None:
    """Decision from a button value (`allow`, `deny`, `always`, `feedback`)."""
    value = (choice or "").strip().lower()
    if value == "feedback":
        return ApprovalDecision.deny(feedback or None)
    if value in ("always", "always_allow", "always-allow"):
        return ApprovalDecision.always()
    if value == "allow":
        return ApprovalDecision.allow()
    if value == "deny":
        return ApprovalDecision.deny(feedback or None)
    return None


def parse_question_reply(
    options: tuple[QuestionOption, ...] | list[QuestionOption],
    text: str,
    *,
    multi_select: bool = False,
) -> str | None:
    """Resolve a reply by option number or label.

    Free text is accepted as-is when the question has no options. Multi-select
    answers are joined with ", ". Returns None when nothing matched.
    """
    seg = (text or "").strip()
    if not seg:
        return None
    if not options:
        return seg

    seg_norm = seg.lower()
    direct = next(
        (
            opt.value
            for opt in options
            if opt.label.lower() == seg_norm or opt.value.lower() == seg_norm
        ),
        None,
    )
    if direct is not None:
        return direct

    chosen: list[str] = []
    for tok in re.split(r"[\s,]+", seg):
        if not tok:
            continue
        if tok.isdigit():
            n = int(tok)
            if 1 <= n <= len(options):
                chosen.append(options[n - 1].value)
            continue
        match = next((opt.value for opt in options if opt.label.lower() == tok.lower()), None)
        if match is not None:
            chosen.append(match)

    seen: set[str] = set()
    chosen = [x for x in chosen if not (x in seen or seen.add(x))]
    if not chosen:
        return None
    if not multi_select:
        return chosen[0]
    return ", ".join(chosen)
