"""Discord adapter: gateway client producing InboundMessage."""

from sp_bridge.adapters.discord.gateway import DiscordGateway, resolve_mentions

__all__ = ["DiscordGateway", "resolve_mentions"]
