"""Inbound port: platform-agnostic chat message representation."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sp_bridge.errors import ProtocolError

_REQUIRED_FIELDS = ("source_channel_id", "author_display_name", "author_id", "source_message_id")


@dataclass(frozen=True)
class InboundMessage:
    """A chat message as delivered by the gateway. Read-only to the core."""

    source_channel_id: str
    author_display_name: str
    author_id: str
    text_content: str
    source_message_id: str
    received_at: datetime
    guild_id: Optional[str] = None
    attachment_count: int = 0

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "InboundMessage":
        """Decode a raw gateway frame. Raises ProtocolError if it is unusable."""
        if not isinstance(data, dict):
            raise ProtocolError(f"expected a mapping, got {type(data).__name__}")

        missing = [k for k in _REQUIRED_FIELDS if not str(data.get(k) or "").strip()]
        if missing:
            raise ProtocolError(f"missing fields: {', '.join(missing)}")

        received_at = data.get("received_at")
        if received_at is None:
            received_at = datetime.now(timezone.utc)
        elif isinstance(received_at, str):
            try:
                received_at = datetime.fromisoformat(received_at)
            except ValueError:
                raise ProtocolError(f"bad received_at: {received_at!r}")
        elif not isinstance(received_at, datetime):
            raise ProtocolError(f"bad received_at: {received_at!r}")

        try:
            attachment_count = int(data.get("attachment_count") or 0)
        except (TypeError, ValueError):
            raise ProtocolError(f"bad attachment_count: {data.get('attachment_count')!r}")

        guild_id = data.get("guild_id")
        return cls(
            source_channel_id=str(data["source_channel_id"]).strip(),
            author_display_name=str(data["author_display_name"]),
            author_id=str(data["author_id"]).strip(),
            text_content=str(data.get("text_content") or ""),
            source_message_id=str(data["source_message_id"]).strip(),
            received_at=received_at,
            guild_id=str(guild_id) if guild_id else None,
            attachment_count=attachment_count,
        )
