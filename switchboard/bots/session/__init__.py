from switchboard.bots.session.bot import ChannelBot, augment_prompt

__all__ = ["ChannelBot", "augment_prompt"]
