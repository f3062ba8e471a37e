from __future__ import annotations

import logging
import re
from pathlib import Path

from aiohttp import web

log = logging.getLogger("attachments")


def _safe_part(text: str) -> str:
    return "".join(ch for ch in (text or "") if ch.isalnum() or ch in {"-", "_", "."}) or "_"


def _safe_relpath(text: str) -> str:
    """Sanitize a nested relative path; drops `.`/`..` segments."""
    raw = re.sub(r"/+", "/", (text or "").strip().replace("\\", "/"))
    parts = [_safe_part(p.strip()) for p in raw.split("/") if p.strip() not in {"", ".", ".."}]
    if not parts:
        return "_"
    return "/".join(parts[:12])


def build_attachments_app(base_dir: Path, *, token: str) -> web.Application:
    """Serve /attachments/{token}/{channel}/{path} from base_dir."""
    token = (token or "").strip()
    if not token:
        raise ValueError("Attachments server requires a token")
    base = base_dir.resolve()

    async def handle(request: web.Request) -> web.StreamResponse:
        if request.match_info.get("token", "") != token:
            raise web.HTTPNotFound()
        channel = _safe_part(request.match_info.get("channel", ""))
        rel = _safe_relpath(request.match_info.get("path", ""))
        path = (base / channel / rel).resolve()
        if base not in path.parents or not path.is_file():
            raise web.HTTPNotFound()
        return web.FileResponse(path)

    app = web.Application()
    app.router.add_get("/attachments/{token}/{channel}/{path:.*}", handle)
    return app


async def start_attachments_server(
    base_dir: Path,
    *,
    token: str,
    host: str = "127.0.0.1",
    port: int = 7777,
) -> web.AppRunner:
    runner = web.AppRunner(build_attachments_app(base_dir, token=token))
    await runner.setup()
    site = web.TCPSite(runner, host=host, port=port)
    await site.start()
    log.info("Serving attachments on http://%s:%d", host, port)
    return runner
