"""Domain layer: the forwarding engine, no framework dependencies."""

from sp_bridge.domain.backoff import AttemptState, PublishAttempt, RetryPolicy, RetrySchedule
from sp_bridge.domain.dispatcher import Dispatcher
from sp_bridge.domain.formatter import build_record, format_message, truncate_text
from sp_bridge.domain.mapping import MappingTable
from sp_bridge.domain.pipeline import PublishPipeline
from sp_bridge.domain.session import SessionManager, SessionState

__all__ = [
    "AttemptState",
    "PublishAttempt",
    "RetryPolicy",
    "RetrySchedule",
    "Dispatcher",
    "build_record",
    "format_message",
    "truncate_text",
    "MappingTable",
    "PublishPipeline",
    "SessionManager",
    "SessionState",
]
