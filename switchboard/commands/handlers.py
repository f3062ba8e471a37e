"""Text commands understood by the channel bot."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, cast

from switchboard.core.session import PermissionMode
from switchboard.errors import ValidationError

if TYPE_CHECKING:
    from switchboard.bots.session import ChannelBot
    from switchboard.core.controller import SessionController


HELP_TEXT = "\n".join(
    [
        "Commands:",
        "  /cd <path>, /open <path>  change directory (restarts the session)",
        "  /stop, /cancel            interrupt the running query",
        "  /exit, /close             end the session",
        "  /reset, clear             start a new output block",
        "  /full                     upload the full output as a file",
        "  /mode [default|accept-edits|bypass]",
        "  /status                   session details and token usage",
        "Anything else is sent to Claude. Reply allow / deny / always to approvals.",
    ]
)


def command(name: str, *aliases: str, exact: bool = True):
    """Decorator to register a command handler.

    Args:
        name: Primary command name (e.g., "/cd")
        *aliases: Additional names that trigger this command
        exact: If True, requires exact match; if False, the name may be
            followed by whitespace and arguments
    """

    def decorator(
        func: Callable[..., Awaitable[bool]],
    ) -> Callable[..., Awaitable[bool]]:
        setattr(func, "_command_name", name)
        setattr(func, "_command_aliases", aliases)
        setattr(func, "_command_exact", exact)
        return func

    return decorator


def _argument(body: str) -> str:
    parts = body.strip().split(maxsplit=1)
    return parts[1].strip() if len(parts) > 1 else ""


class CommandHandler:
    """Handles text commands for every channel of the bot.

    Commands are registered via the @command decorator on methods.
    The handler auto-discovers all decorated methods on init.
    """

    def __init__(self, bot: "ChannelBot", controller: "SessionController"):
        self.bot = bot
        self.controller = controller
        self._commands: dict[str, tuple[Callable[..., Awaitable[bool]], bool]] = {}
        self._discover_commands()

    def _discover_commands(self) -> None:
        """Find all @command decorated methods and register them.

        Only the class is scanned; collaborators stored on the instance are
        never mistaken for commands.
        """
        for name in dir(type(self)):
            if not hasattr(getattr(type(self), name), "_command_name"):
                continue
            method = getattr(self, name)
            if callable(method):
                m = cast(Any, method)
                handler = cast(Callable[..., Awaitable[bool]], method)
                exact = cast(bool, m._command_exact)
                self._commands[cast(str, m._command_name)] = (handler, exact)
                for alias in cast(tuple[str, ...], m._command_aliases):
                    self._commands[alias] = (handler, exact)

    @property
    def names(self) -> list[str]:
        return sorted(self._commands)

    async def handle(self, channel: str, body: str) -> bool:
        """Handle a command. Returns True if command was handled."""
        cmd = body.strip().lower()

        handler_exact = self._commands.get(cmd)
        if handler_exact is not None:
            return await handler_exact[0](channel, body)

        # Prefix commands need a word boundary so "cdk deploy" is a prompt.
        best: tuple[int, Callable[..., Awaitable[bool]]] | None = None
        for prefix, (handler, exact) in self._commands.items():
            if exact or not cmd.startswith(prefix + " "):
                continue
            if best is None or len(prefix) > best[0]:
                best = (len(prefix), handler)
        if best is not None:
            return await best[1](channel, body)

        return False

    def _reply(self, channel: str, text: str) -> None:
        self.bot.send_reply(text, channel)

    @command("/cd", "/open", "cd", "open", exact=False)
    async def cd(self, channel: str, body: str) -> bool:
        """Restart the channel's session in another directory."""
        try:
            session = await self.controller.change_directory(channel, _argument(body))
        except ValidationError as exc:
            self._reply(channel, str(exc))
            return True
        self._reply(channel, f"Working directory: {session.working_dir}\nStarted a new session.")
        return True

    @command("/exit", "exit", "종료", "/close")
    async def exit(self, channel: str, _body: str) -> bool:
        if await self.controller.close(channel):
            self._reply(channel, "Session closed.")
        else:
            self._reply(channel, "No active session.")
        return True

    @command("/stop", "/cancel", "/interrupt")
    async def stop(self, channel: str, _body: str) -> bool:
        """Soft stop; the next message resumes the same conversation."""
        if await self.controller.interrupt(channel):
            self._reply(channel, "Interrupted.")
        else:
            self._reply(channel, "Nothing running to interrupt.")
        return True

    @command("/reset", "reset", "clear")
    async def reset(self, channel: str, _body: str) -> bool:
        await self.controller.reset_output(channel)
        self._reply(channel, "Output reset.")
        return True

    @command("/full", "full")
    async def full(self, channel: str, _body: str) -> bool:
        if not await self.controller.upload_full(channel):
            self._reply(channel, "No output to upload.")
        return True

    @command("/mode", exact=False)
    async def mode(self, channel: str, body: str) -> bool:
        arg = _argument(body)
        if not arg:
            session = self.controller.registry.get(channel)
            current = session.permission_mode if session else PermissionMode.DEFAULT
            self._reply(
                channel,
                f"Permission mode: {current.value}\nUsage: /mode default|accept-edits|bypass",
            )
            return True
        try:
            mode = await self.controller.set_permission_mode(channel, arg)
        except ValidationError as exc:
            self._reply(channel, str(exc))
            return True
        self._reply(channel, f"Permission mode set to {mode.value}. Applies from the next message.")
        return True

    @command("/status")
    async def status(self, channel: str, _body: str) -> bool:
        self._reply(channel, self.controller.status_text(channel))
        return True

    @command("/help")
    async def help(self, channel: str, _body: str) -> bool:
        self._reply(channel, HELP_TEXT)
        return True
