"""Environment-driven configuration.

Call load_env() before get_bridge_config() so values from `.env` are visible.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _parse_bool(value: object, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        raw = default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


# =============================================================================
# Environment Loading
# =============================================================================


def load_env(env_path: Path | None = None) -> None:
    """Load .env file into os.environ. Handles quoted values and spaces."""
    if env_path is None:
        env_path = Path(__file__).parent.parent / ".env"

    if not env_path.exists():
        return

    for line in env_path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, val = line.split("=", 1)
            val = val.strip().strip('"').strip("'")
            os.environ[key.strip()] = val


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class RenderConfig:
    rotation_s: float = 60.0
    display_budget: int = 2500
    hard_limit: int = 3000


@dataclass(frozen=True)
class TmuxConfig:
    width: int = 200
    height: int = 50
    buffer_lines: int = 50
    polling_interval_s: float = 1.0
    claude_path: str = "claude"


@dataclass(frozen=True)
class BridgeConfig:
    jid: str
    password: str
    server: str
    port: int
    allowed_jids: tuple[str, ...]
    transport: str
    default_project_path: str
    allowed_tools: tuple[str, ...]
    auto_approve_tools: tuple[str, ...]
    render: RenderConfig = field(default_factory=RenderConfig)
    tmux: TmuxConfig = field(default_factory=TmuxConfig)
    attachments_enabled: bool = True
    use_tls: bool = True
    log_level: str = "INFO"

    def is_allowed(self, sender: str) -> bool:
        """Single allow-list check; an empty list admits everyone."""
        if not self.allowed_jids:
            return True
        return sender.split("/", 1)[0] in self.allowed_jids


def get_bridge_config() -> BridgeConfig:
    """Build the bridge configuration from the environment."""
    jid = os.getenv("XMPP_JID", "switchboard@your.xmpp.server")
    server = os.getenv("XMPP_SERVER") or jid.split("@", 1)[-1].split("/", 1)[0]

    transport = (os.getenv("SWITCHBOARD_TRANSPORT") or "sdk").strip().lower()
    if transport not in {"sdk", "tmux"}:
        raise ValueError(f"SWITCHBOARD_TRANSPORT must be 'sdk' or 'tmux', got {transport!r}")

    render = RenderConfig(
        rotation_s=_env_int("MESSAGE_ROTATION_MS", 60000) / 1000.0,
        display_budget=_env_int("MAX_MESSAGE_LENGTH", 2500),
        hard_limit=_env_int("FILE_UPLOAD_THRESHOLD", 3000),
    )
    tmux = TmuxConfig(
        width=_env_int("TMUX_WIDTH", 200),
        height=_env_int("TMUX_HEIGHT", 50),
        buffer_lines=_env_int("TMUX_BUFFER_LINES", 50),
        polling_interval_s=_env_int("POLLING_INTERVAL_MS", 1000) / 1000.0,
        claude_path=os.getenv("CLAUDE_PATH", "claude"),
    )

    return BridgeConfig(
        jid=jid,
        password=os.getenv("XMPP_PASSWORD", ""),
        server=server,
        port=_env_int("XMPP_PORT", 5222),
        allowed_jids=_env_list("ALLOWED_JIDS", ""),
        transport=transport,
        default_project_path=os.getenv("DEFAULT_PROJECT_PATH", os.getcwd()),
        allowed_tools=_env_list(
            "ALLOWED_TOOLS", "Read,Write,Edit,Bash,Glob,Grep,WebSearch,WebFetch"
        ),
        auto_approve_tools=_env_list("AUTO_APPROVE_TOOLS", "Read,Glob,Grep"),
        render=render,
        tmux=tmux,
        attachments_enabled=_parse_bool(
            os.getenv("SWITCHBOARD_ATTACHMENTS_ENABLE"), default=True
        ),
        use_tls=_parse_bool(os.getenv("XMPP_USE_TLS"), default=True),
        log_level=(os.getenv("SWITCHBOARD_LOG_LEVEL") or "INFO").strip().upper(),
    )
