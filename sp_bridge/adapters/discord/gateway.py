"""Discord gateway adapter: turns discord.Message into InboundMessage.

discord.py keeps the gateway connection alive and reconnects on its own;
this module only filters, converts and queues messages, and exposes them as
an async iterator for the dispatcher.
"""

import asyncio
import re
import sys
from typing import AsyncIterator, Mapping, Optional

import discord

from sp_bridge.config import DEFAULT_COMMAND_PREFIX
from sp_bridge.errors import GatewayError
from sp_bridge.ports.inbound import InboundMessage


def _log(msg: str):
    print(msg, file=sys.stderr)


_USER_MENTION_RE = re.compile(r"<@!?(\d+)>")
_CHANNEL_MENTION_RE = re.compile(r"<#(\d+)>")
_ROLE_MENTION_RE = re.compile(r"<@&(\d+)>")


def resolve_mentions(
    content: str,
    users: Mapping[int, str],
    channels: Mapping[int, str],
    roles: Mapping[int, str],
) -> str:
    """Rewrite ``<@id>``, ``<#id>`` and ``<@&id>`` into readable names.

    Unknown ids are left as they are.
    """

    def _sub(pattern: re.Pattern, names: Mapping[int, str], prefix: str, text: str) -> str:
        def repl(m: re.Match) -> str:
            name = names.get(int(m.group(1)))
            return f"{prefix}{name}" if name else m.group(0)
        return pattern.sub(repl, text)

    content = _sub(_ROLE_MENTION_RE, roles, "@", content)
    content = _sub(_USER_MENTION_RE, users, "@", content)
    content = _sub(_CHANNEL_MENTION_RE, channels, "#", content)
    return content


class _GatewayClosed:
    def __init__(self, error: Optional[BaseException] = None):
        self.error = error


class DiscordGateway(discord.Client):
    """discord.Client that feeds forwardable messages into a queue."""

    def __init__(self, command_prefix: str = DEFAULT_COMMAND_PREFIX, **discord_kwargs):
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(intents=intents, **discord_kwargs)
        self._command_prefix = command_prefix
        self._events: asyncio.Queue = asyncio.Queue()

    def should_forward(self, message: discord.Message) -> bool:
        """Bots (including ourselves) and bot commands are never forwarded."""
        if message.author.bot:
            return False
        if self.user is not None and message.author.id == self.user.id:
            return False
        if self._command_prefix and message.content.startswith(self._command_prefix):
            return False
        return True

    def to_inbound(self, message: discord.Message) -> InboundMessage:
        """Convert a Discord message to platform-agnostic InboundMessage."""
        content = resolve_mentions(
            message.content,
            users={u.id: u.display_name for u in message.mentions},
            channels={c.id: c.name for c in message.channel_mentions},
            roles={r.id: r.name for r in message.role_mentions},
        )
        return InboundMessage(
            source_channel_id=str(message.channel.id),
            author_display_name=message.author.display_name,
            author_id=str(message.author.id),
            text_content=content,
            source_message_id=str(message.id),
            received_at=message.created_at,
            guild_id=str(message.guild.id) if message.guild else None,
            attachment_count=len(message.attachments),
        )

    async def on_ready(self):
        _log(f"[discord] logged in as {self.user}")

    async def on_message(self, message: discord.Message):
        if not self.should_forward(message):
            return
        self._events.put_nowait(self.to_inbound(message))

    async def run_forever(self, token: str):
        """Run the client until close(); always terminates the subscribe() stream."""
        try:
            await self.start(token)
        except asyncio.CancelledError:
            self._events.put_nowait(_GatewayClosed())
            raise
        except Exception as e:
            _log(f"[discord] gateway stopped: {type(e).__name__}: {e}")
            self._events.put_nowait(_GatewayClosed(e))
        else:
            self._events.put_nowait(_GatewayClosed())

    async def subscribe(self) -> AsyncIterator[InboundMessage]:
        """Yield forwardable messages until the gateway closes.

        Raises GatewayError if the client stopped because of an error.
        """
        while True:
            event = await self._events.get()
            if isinstance(event, _GatewayClosed):
                if event.error is not None:
                    raise GatewayError(f"Discord gateway failed: {event.error}") from event.error
                return
            yield event
