"""Inbound message parsing helpers for the bridge bot."""

from __future__ import annotations

import json
import logging
import re

log = logging.getLogger(__name__)


_URL_RE = re.compile(r"https?://[^\s<>\]\)\}]+", re.IGNORECASE)
_FENCE_RE = re.compile(r"^```[\w+-]*\n?(?P<body>.*?)\n?```$", re.S)


def extract_meta(
    msg, *, meta_ns: str
) -> tuple[str | None, dict[str, str] | None, object | None]:
    """Extract the message meta extension (best-effort)."""
    for child in getattr(msg, "xml", []) or []:
        if getattr(child, "tag", None) != f"{{{meta_ns}}}meta":
            continue
        attrs = dict(getattr(child, "attrib", {}) or {})
        meta_type = attrs.get("type")

        payload_obj: object | None = None
        payload = child.find(f"{{{meta_ns}}}payload")
        if payload is not None and (payload.get("format") or "").lower() == "json":
            raw = (payload.text or "").strip()
            if raw:
                try:
                    payload_obj = json.loads(raw)
                except ValueError:
                    log.debug("Ignoring malformed meta payload")

        return meta_type, attrs, payload_obj

    return None, None, None


def extract_attachment_urls(msg, body: str) -> list[str]:
    urls: list[str] = []

    # jabber:x:oob and similar: scan all descendants for <url> elements.
    for el in getattr(msg, "xml", []) or []:
        for child in list(el.iter()):
            tag = getattr(child, "tag", "")
            if not isinstance(tag, str):
                continue
            if tag.endswith("}url") or tag == "url":
                text = (getattr(child, "text", None) or "").strip()
                if text.startswith("http"):
                    urls.append(text)

    for m in _URL_RE.finditer(body or ""):
        url = m.group(0).rstrip(".,;:!?")
        if url.startswith("http"):
            urls.append(url)

    seen: set[str] = set()
    out: list[str] = []
    for u in urls:
        if u in seen:
            continue
        seen.add(u)
        out.append(u)
    return out


def strip_urls_from_body(body: str, urls: list[str]) -> str:
    if not body:
        return body
    out = body
    for u in urls:
        out = out.replace(u, "")
    return " ".join(out.split()).strip()


def strip_code_fence(body: str) -> str:
    """Unwrap a message sent entirely inside ``` or ` quotes."""
    text = (body or "").strip()
    match = _FENCE_RE.match(text)
    if match:
        return match.group("body").strip()
    if len(text) > 1 and text.startswith("`") and text.endswith("`") and "\n" not in text:
        return text.strip("`").strip()
    return text


def normalize_leading_at(body: str) -> str:
    body = (body or "").strip()
    if body.startswith("@"):  # convenience alias for slash commands
        return "/" + body[1:]
    return body
