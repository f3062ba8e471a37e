#!/usr/bin/env python3
"""
Switchboard - XMPP to Claude bridge

One XMPP account relays chat to Claude. Every allowed contact gets its own
agent session, with tool approvals and questions answered from the chat.

Send a message to start a session, `/help` lists the commands.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from aiohttp import web

from switchboard.attachments import (
    AttachmentStore,
    get_attachments_config,
    start_attachments_server,
)
from switchboard.bots import ChannelBot
from switchboard.config import BridgeConfig, get_bridge_config, load_env
from switchboard.core import (
    InteractionCorrelator,
    OutputRenderer,
    SessionController,
    SessionRegistry,
)
from switchboard.core.presenter import SurfacePresenter
from switchboard.runners import create_transport

log = logging.getLogger("bridge")


def build_controller(
    config: BridgeConfig, bot: ChannelBot, *, transport=None
) -> SessionController:
    """Wire the core against the bot as chat surface."""
    controller = SessionController(
        registry=SessionRegistry(config.default_project_path),
        correlator=InteractionCorrelator(SurfacePresenter(bot)),
        renderer=OutputRenderer(bot, config.render),
        transport=transport or create_transport(config.transport, tmux=config.tmux),
        surface=bot,
        events=bot.event_sink(),
        auto_approve_tools=config.auto_approve_tools,
        allowed_tools=config.allowed_tools,
    )
    bot.bind(controller)
    return controller


async def recover_orphans(controller: SessionController, bot: ChannelBot) -> int:
    """Re-attach agents a previous bridge left running for allowed contacts."""
    recovered = 0
    for jid in bot.config.allowed_jids:
        if not await controller.recover_orphan(jid):
            continue
        recovered += 1
        session = controller.registry.get(jid)
        name = (session.external_name if session else None) or jid
        log.info("Recovered running session %s for %s", name, jid)
        bot.send_reply(f"Re-attached to running session {name}.", jid)
    return recovered


async def _start_attachments(
    config: BridgeConfig,
) -> tuple[AttachmentStore | None, web.AppRunner | None]:
    if not config.attachments_enabled:
        log.info("Attachments disabled (SWITCHBOARD_ATTACHMENTS_ENABLE)")
        return None, None
    cfg = get_attachments_config()
    store = AttachmentStore(cfg)
    try:
        server = await start_attachments_server(
            cfg.base_dir, token=cfg.token, host=cfg.host, port=cfg.port
        )
    except OSError:
        log.exception("Failed to start attachments server; uploads stay local")
        return store, None
    return store, server


async def main(config: BridgeConfig | None = None) -> None:
    config = config or get_bridge_config()
    store, server = await _start_attachments(config)

    bot = ChannelBot(config, attachments=store)
    controller = build_controller(config, bot)
    log.info(
        "Starting bridge as %s (transport=%s, cwd=%s)",
        config.jid,
        controller.transport.name,
        config.default_project_path,
    )
    if not config.allowed_jids:
        log.warning("ALLOWED_JIDS is empty; every contact can drive the agent")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    bot.connect_to_server(config.server, config.port, use_tls=config.use_tls)
    try:
        if await bot.wait_connected(timeout=30):
            await recover_orphans(controller, bot)
        else:
            log.warning("Not connected after 30s; still trying")
        await stop.wait()
    finally:
        log.info("Shutting down...")
        await bot.shutdown()
        if server is not None:
            await server.cleanup()


def run() -> None:
    load_env()
    config = get_bridge_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        asyncio.run(main(config))
    except KeyboardInterrupt:
        log.info("Interrupted")


if __name__ == "__main__":
    run()
