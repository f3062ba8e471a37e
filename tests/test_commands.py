from unittest.mock import Mock

import pytest

from conftest import CHANNEL
from switchboard.commands import CommandHandler
from switchboard.commands.handlers import HELP_TEXT
from switchboard.core.session import PermissionMode


@pytest.fixture
def bot():
    return Mock()


@pytest.fixture
def commands(bot, controller):
    return CommandHandler(bot, controller)


def replies(bot):
    return [c.args[0] for c in bot.send_reply.call_args_list]


def test_discovers_aliases(commands):
    assert {"/cd", "cd", "/open", "/exit", "종료", "/cancel", "clear", "/mode"} <= set(
        commands.names
    )


async def test_plain_text_is_not_a_command(commands, bot):
    assert not await commands.handle(CHANNEL, "fix the login bug")
    assert not await commands.handle(CHANNEL, "cdk deploy")
    assert not await commands.handle(CHANNEL, "/modes")
    bot.send_reply.assert_not_called()


async def test_cd_to_missing_directory(commands, bot, controller):
    assert await commands.handle(CHANNEL, "/cd /does/not/exist")
    assert replies(bot) == ["Directory not found: /does/not/exist"]
    assert controller.registry.get(CHANNEL) is None


async def test_cd_starts_new_session(commands, bot, controller, tmp_path):
    target = tmp_path / "proj"
    target.mkdir()

    assert await commands.handle(CHANNEL, f"open {target}")
    assert replies(bot) == [f"Working directory: {target}\nStarted a new session."]
    assert controller.registry.get(CHANNEL).working_dir == str(target)


async def test_exit_with_and_without_session(commands, bot, controller):
    assert await commands.handle(CHANNEL, "/exit")
    await controller.session_for(CHANNEL)
    assert await commands.handle(CHANNEL, " EXIT ")
    assert replies(bot) == ["No active session.", "Session closed."]


async def test_stop_when_idle(commands, bot):
    assert await commands.handle(CHANNEL, "/cancel")
    assert replies(bot) == ["Nothing running to interrupt."]


async def test_mode_show_and_set(commands, bot, controller):
    assert await commands.handle(CHANNEL, "/mode")
    assert await commands.handle(CHANNEL, "/mode accept-edits")
    assert await commands.handle(CHANNEL, "/mode yolo")

    shown, applied, rejected = replies(bot)
    assert shown.startswith("Permission mode: default")
    assert applied == "Permission mode set to accept-edits. Applies from the next message."
    assert rejected.startswith("Unknown permission mode 'yolo'")
    assert controller.registry.get(CHANNEL).permission_mode is PermissionMode.ACCEPT_EDITS


async def test_full_without_output(commands, bot):
    assert await commands.handle(CHANNEL, "/full")
    assert replies(bot) == ["No output to upload."]


async def test_reset_status_and_help(commands, bot):
    assert await commands.handle(CHANNEL, "clear")
    assert await commands.handle(CHANNEL, "/status")
    assert await commands.handle(CHANNEL, "/help")
    assert replies(bot) == [
        "Output reset.",
        "No session. Send a message to start one.",
        HELP_TEXT,
    ]


def test_collaborators_are_not_commands():
    commands = CommandHandler(Mock(), Mock())
    assert "bot" not in commands.names
    assert "controller" not in commands.names
    assert "/help" in commands.names
