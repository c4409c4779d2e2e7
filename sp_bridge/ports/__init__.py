"""Port interfaces (Hexagonal Architecture)."""

from sp_bridge.ports.inbound import InboundMessage
from sp_bridge.ports.outbound import (
    CHAT_MESSAGE_COLLECTION,
    DestinationPort,
    GatewayPort,
    OutboundRecord,
    PublishResult,
    RecordRef,
    Session,
)

__all__ = [
    "InboundMessage",
    "CHAT_MESSAGE_COLLECTION",
    "DestinationPort",
    "GatewayPort",
    "OutboundRecord",
    "PublishResult",
    "RecordRef",
    "Session",
]
