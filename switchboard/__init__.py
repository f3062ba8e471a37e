"""Switchboard - chat channel to Claude Code session bridge."""

__version__ = "0.3.0"
