"""Outbound ports: destination store types and collaborator interfaces."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional, Protocol, runtime_checkable

from sp_bridge.ports.inbound import InboundMessage

CHAT_MESSAGE_COLLECTION = "place.stream.chat.message"


@dataclass(frozen=True)
class Session:
    """Authenticated PDS session. Replaced, never mutated."""

    did: str
    handle: str
    access_token: str
    refresh_token: str
    expires_at: datetime


@dataclass(frozen=True)
class RecordRef:
    uri: str
    cid: Optional[str] = None


@dataclass(frozen=True)
class OutboundRecord:
    """One chat message record, addressed to a streamer."""

    destination_account_id: str
    body: str
    created_at: datetime
    collection_type: str = CHAT_MESSAGE_COLLECTION

    def to_record(self) -> Dict[str, Any]:
        """Lexicon payload for com.atproto.repo.createRecord."""
        created = self.created_at.isoformat()
        if created.endswith("+00:00"):
            created = created[:-6] + "Z"
        return {
            "$type": self.collection_type,
            "text": self.body,
            "createdAt": created,
            "streamer": self.destination_account_id,
        }


@dataclass
class PublishResult:
    """Unified result type for a publish attempt sequence."""

    success: bool
    record_ref: Optional[RecordRef] = None
    attempts: int = 0
    error: Optional[str] = None


@runtime_checkable
class DestinationPort(Protocol):
    """Interface for the record store (AT Protocol PDS)."""

    async def login(self, identifier: str, secret: str) -> Session: ...

    async def refresh(self, session: Session) -> Session: ...

    async def create_record(
        self,
        session: Session,
        collection: str,
        record: Dict[str, Any],
    ) -> RecordRef: ...


@runtime_checkable
class GatewayPort(Protocol):
    """Interface for the source chat gateway."""

    def subscribe(self) -> AsyncIterator[InboundMessage]: ...
