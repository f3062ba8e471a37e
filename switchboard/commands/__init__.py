from switchboard.commands.handlers import CommandHandler, command

__all__ = ["CommandHandler", "command"]
