"""Message formatter: InboundMessage to chat record text.

Pure domain logic, no framework dependencies.
"""

import unicodedata
from datetime import datetime, timezone
from typing import Optional

from sp_bridge.ports.inbound import InboundMessage
from sp_bridge.ports.outbound import OutboundRecord

# place.stream.chat.message text is limited to 300 graphemes
MAX_TEXT_LENGTH = 300
SOURCE_LABEL = "Discord"
EMPTY_PLACEHOLDER = "[empty message]"

_KEEP_IN_BODY = frozenset({"\n", "\t"})
_ZWJ = "\u200d"  # joins emoji sequences


def _strip_controls(text: str, keep: frozenset = frozenset()) -> str:
    return "".join(
        ch for ch in text
        if ch in keep or ch == _ZWJ or unicodedata.category(ch) not in ("Cc", "Cf")
    )


def clean_author(name: str) -> str:
    """Single-line, control-free author name."""
    name = " ".join((name or "").split())
    return _strip_controls(name).strip() or "unknown"


def clean_body(text: str) -> str:
    return _strip_controls(text or "", keep=_KEEP_IN_BODY).strip()


def placeholder_for(message: InboundMessage) -> str:
    if message.attachment_count == 1:
        return "[attachment]"
    if message.attachment_count > 1:
        return f"[{message.attachment_count} attachments]"
    return EMPTY_PLACEHOLDER


def truncate_text(text: str, limit: int = MAX_TEXT_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def format_message(message: InboundMessage, limit: int = MAX_TEXT_LENGTH) -> str:
    """Render ``"{author} (Discord): {text}"`` within the record text limit.

    Messages with no text (attachment-only, embeds) get a placeholder so every
    mapped message still yields exactly one record.
    """
    body = clean_body(message.text_content) or placeholder_for(message)
    author = clean_author(message.author_display_name)
    return truncate_text(f"{author} ({SOURCE_LABEL}): {body}", limit)


def build_record(
    message: InboundMessage,
    destination_account_id: str,
    now: Optional[datetime] = None,
    limit: int = MAX_TEXT_LENGTH,
) -> OutboundRecord:
    return OutboundRecord(
        destination_account_id=destination_account_id,
        body=format_message(message, limit),
        created_at=now or datetime.now(timezone.utc),
    )
