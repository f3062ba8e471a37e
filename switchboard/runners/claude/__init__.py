from switchboard.runners.claude.runner import ClaudeQuery, ClaudeSDKTransport

__all__ = ["ClaudeQuery", "ClaudeSDKTransport"]
