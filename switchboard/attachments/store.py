from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable
from urllib.parse import urlparse

import aiohttp

from .config import AttachmentsConfig

log = logging.getLogger("attachments")


@dataclass(frozen=True)
class Attachment:
    id: str
    kind: str  # "image" for inbound downloads, "file" for uploads
    mime: str
    filename: str
    local_path: str
    size_bytes: int
    sha256: str
    original_url: str | None = None
    public_url: str | None = None


_IMAGE_EXT_BY_MIME: dict[str, str] = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def _safe_slug(text: str) -> str:
    text = text.strip().lower()
    text = re.sub(r"[^a-z0-9._-]+", "-", text)
    text = re.sub(r"-+", "-", text).strip("-")
    return text or "file"


def _safe_filename(name: str) -> str:
    stem, ext = os.path.splitext(os.path.basename(name or ""))
    ext = ext.lower() if re.match(r"^\.[a-zA-Z0-9]{1,6}$", ext) else ".txt"
    return f"{_safe_slug(stem)}{ext}"


def _guess_ext(mime: str, url: str | None = None) -> str:
    if mime in _IMAGE_EXT_BY_MIME:
        return _IMAGE_EXT_BY_MIME[mime]
    if url:
        _, ext = os.path.splitext(urlparse(url).path)
        if ext and re.match(r"^\.[a-zA-Z0-9]{1,6}$", ext):
            return ext.lower()
    return ".bin"


def is_disallowed_url(url: str) -> bool:
    """Refuse non-http schemes, loopback and obvious private address literals."""
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        return True
    host = (parsed.hostname or "").strip().lower()
    if not host:
        return True
    if host in {"localhost", "127.0.0.1", "::1"}:
        return True
    if re.match(r"^10\.", host) or re.match(r"^192\.168\.", host):
        return True
    if re.match(r"^172\.(1[6-9]|2\d|3[0-1])\.", host):
        return True
    return host.startswith("169.254.")


class AttachmentStore:
    """Files exchanged with a channel, kept under one directory per channel."""

    def __init__(self, config: AttachmentsConfig):
        self.config = config
        self.base_dir = config.base_dir
        self.public_base_url = (config.public_base_url or "").rstrip("/")
        self.token = config.token
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def channel_dir(self, channel: str) -> Path:
        d = self.base_dir / _safe_slug(channel)
        d.mkdir(parents=True, exist_ok=True)
        return d

    def build_public_url(self, channel: str, filename: str) -> str | None:
        if not self.public_base_url or not self.token:
            return None
        return f"{self.public_base_url}/attachments/{self.token}/{_safe_slug(channel)}/{filename}"

    def write_text(self, channel: str, filename: str, content: str) -> Attachment:
        """Store an outbound text file (long output, plans) for download."""
        data = content.encode("utf-8")
        stored = f"{uuid.uuid4().hex[:8]}_{_safe_filename(filename)}"
        path = self.channel_dir(channel) / stored
        path.write_bytes(data)
        return Attachment(
            id=f"att_{uuid.uuid4().hex[:12]}",
            kind="file",
            mime="text/plain",
            filename=stored,
            local_path=str(path),
            size_bytes=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
            public_url=self.build_public_url(channel, stored),
        )

    async def download_images(self, channel: str, urls: Iterable[str]) -> list[Attachment]:
        out: list[Attachment] = []
        batch = f"att_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"
        timeout = aiohttp.ClientTimeout(total=self.config.fetch_timeout_s)

        async with aiohttp.ClientSession(timeout=timeout) as http:
            for url in urls:
                url = (url or "").strip()
                if not url or is_disallowed_url(url):
                    continue
                try:
                    att = await self._fetch_image(http, channel, batch, len(out) + 1, url)
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                    log.info("Skipping attachment %s: %s", url, exc)
                    continue
                if att is not None:
                    out.append(att)
        return out

    async def _fetch_image(
        self,
        http: aiohttp.ClientSession,
        channel: str,
        batch: str,
        idx: int,
        url: str,
    ) -> Attachment | None:
        async with http.get(url, headers={"Accept": "image/*"}) as resp:
            if resp.status >= 400:
                return None
            mime = (resp.headers.get("Content-Type") or "").split(";", 1)[0].strip().lower()
            if not mime.startswith("image/"):
                return None

            data = bytearray()
            async for chunk in resp.content.iter_chunked(64 * 1024):
                data.extend(chunk)
                if len(data) > self.config.max_bytes:
                    log.info("Attachment %s exceeds %d bytes", url, self.config.max_bytes)
                    return None
            if not data:
                return None

        batch_dir = self.channel_dir(channel) / batch
        batch_dir.mkdir(parents=True, exist_ok=True)
        stem = f"img_{idx:02d}_{uuid.uuid4().hex[:6]}{_guess_ext(mime, url=url)}"
        path = batch_dir / stem
        path.write_bytes(bytes(data))
        filename = f"{batch}/{stem}"
        return Attachment(
            id=f"att_{uuid.uuid4().hex[:12]}",
            kind="image",
            mime=mime,
            filename=filename,
            local_path=str(path),
            size_bytes=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
            original_url=url,
            public_url=self.build_public_url(channel, filename),
        )
