"""sp-bridge: Discord to Streamplace chat relay package."""

from sp_bridge.config import __version__, BridgeConfig
from sp_bridge.errors import (
    AuthError,
    BridgeError,
    ConfigError,
    GatewayError,
    PermanentError,
    ProtocolError,
    SessionFailedError,
    TransientError,
)
from sp_bridge.ports.inbound import InboundMessage
from sp_bridge.ports.outbound import OutboundRecord, PublishResult, RecordRef, Session
from sp_bridge.domain.mapping import MappingTable
from sp_bridge.domain.formatter import format_message, build_record
from sp_bridge.domain.session import SessionManager
from sp_bridge.domain.pipeline import PublishPipeline
from sp_bridge.domain.dispatcher import Dispatcher

__all__ = [
    "__version__",
    "BridgeConfig",
    "AuthError",
    "BridgeError",
    "ConfigError",
    "GatewayError",
    "PermanentError",
    "ProtocolError",
    "SessionFailedError",
    "TransientError",
    "InboundMessage",
    "OutboundRecord",
    "PublishResult",
    "RecordRef",
    "Session",
    "MappingTable",
    "format_message",
    "build_record",
    "SessionManager",
    "PublishPipeline",
    "Dispatcher",
]
