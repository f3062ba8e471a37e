from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger("attachments")


@dataclass(frozen=True)
class AttachmentsConfig:
    base_dir: Path
    token: str
    host: str
    port: int
    public_base_url: str
    max_bytes: int = 10 * 1024 * 1024
    fetch_timeout_s: float = 20.0


def _default_base_dir() -> Path:
    # Stable path next to the package so the agent can read uploaded files.
    default = Path(__file__).resolve().parents[2] / "uploads"
    return Path(os.getenv("SWITCHBOARD_ATTACHMENTS_DIR", str(default)))


def _load_or_create_token(base_dir: Path) -> str:
    env = (os.getenv("SWITCHBOARD_ATTACHMENTS_TOKEN") or "").strip()
    if env:
        return env

    token_path = base_dir / ".token"
    if token_path.exists():
        t = token_path.read_text(encoding="utf-8", errors="replace").strip()
        if t:
            return t

    base_dir.mkdir(parents=True, exist_ok=True)
    token = secrets.token_urlsafe(24)
    try:
        token_path.write_text(token, encoding="utf-8")
        os.chmod(token_path, 0o600)
    except OSError:
        # The token still works for this run; links break after a restart.
        log.warning("Could not persist attachments token to %s", token_path)
    return token


def public_base_url_for(host: str, port: int) -> str:
    explicit = (os.getenv("SWITCHBOARD_PUBLIC_ATTACHMENT_BASE_URL") or "").strip()
    if explicit:
        return explicit.rstrip("/")
    url_host = host
    if url_host in {"0.0.0.0", "::", "[::]", ""}:
        url_host = "127.0.0.1"
    return f"http://{url_host}:{port}"


def get_attachments_config() -> AttachmentsConfig:
    base_dir = _default_base_dir()
    host = (os.getenv("SWITCHBOARD_ATTACHMENTS_HOST") or "127.0.0.1").strip() or "127.0.0.1"
    port = int(os.getenv("SWITCHBOARD_ATTACHMENTS_PORT", "7777"))

    return AttachmentsConfig(
        base_dir=base_dir,
        token=_load_or_create_token(base_dir),
        host=host,
        port=port,
        public_base_url=public_base_url_for(host, port),
        max_bytes=int(
            os.getenv("SWITCHBOARD_ATTACHMENT_MAX_BYTES", str(10 * 1024 * 1024))
        ),
        fetch_timeout_s=float(os.getenv("SWITCHBOARD_ATTACHMENT_FETCH_TIMEOUT_S", "20")),
    )
