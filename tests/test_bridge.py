from unittest.mock import Mock

from conftest import CHANNEL
from switchboard.bridge import build_controller, recover_orphans
from switchboard.config import BridgeConfig


def make_config(tmp_path):
    return BridgeConfig(
        jid="bridge@example.com",
        password="",
        server="example.com",
        port=5222,
        allowed_jids=(CHANNEL, "bob@example.com"),
        transport="tmux",
        default_project_path=str(tmp_path),
        allowed_tools=("Read",),
        auto_approve_tools=("Read",),
    )


async def test_recover_orphans_for_allowed_contacts(transport, tmp_path):
    config = make_config(tmp_path)
    bot = Mock(config=config, event_sink=Mock(return_value=None))
    transport.orphans.add(CHANNEL)

    controller = build_controller(config, bot, transport=transport)
    try:
        assert await recover_orphans(controller, bot) == 1
    finally:
        await controller.shutdown()

    bot.bind.assert_called_once_with(controller)
    assert transport.attached == [CHANNEL]
    bot.send_reply.assert_called_once_with(
        f"Re-attached to running session {CHANNEL}.", CHANNEL
    )
