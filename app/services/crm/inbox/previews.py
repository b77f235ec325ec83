"""Last-message previews for conversation list pages.

Previews for a whole page are loaded with a single windowed query, never one
query per conversation.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import case, func, null, select
from sqlalchemy.orm import Session

from app.models.crm.conversation import Message
from app.models.crm.enums import MEDIA_MESSAGE_TYPES, MessageType
from app.schemas.crm.conversation import MessagePreview
from app.schemas.crm.message import (
    DocumentMetadata,
    ImageMetadata,
    VideoMetadata,
    parse_message_metadata,
)
from app.services.common import as_utc

PREVIEW_MAX_CHARS = 100
ELLIPSIS = "..."


def truncate_preview(text: str | None, max_chars: int = PREVIEW_MAX_CHARS) -> str | None:
    if text is None:
        return None
    if len(text) > max_chars:
        return text[:max_chars] + ELLIPSIS
    return text


def media_placeholder(message_type: MessageType) -> str:
    return f"[{message_type.value}]"


def media_preview_text(message_type: MessageType, metadata: dict | None) -> str:
    """Human-readable text for a media message: caption, filename or a placeholder."""
    parsed = parse_message_metadata(message_type, metadata)
    if isinstance(parsed, ImageMetadata | VideoMetadata) and parsed.caption:
        return parsed.caption
    if isinstance(parsed, DocumentMetadata):
        if parsed.caption:
            return parsed.caption
        if parsed.filename:
            return parsed.filename
    return media_placeholder(message_type)


class PreviewResolver:
    """Resolves the most recent active message for a set of conversations."""

    def __init__(self, max_chars: int = PREVIEW_MAX_CHARS) -> None:
        self.max_chars = max_chars

    def _statement(self, conversation_ids: list[int]):
        media_types = list(MEDIA_MESSAGE_TYPES)
        # Media rows may carry data URLs in content; never pull them for a preview.
        content = case(
            (Message.message_type.in_(media_types), null()),
            else_=func.substr(Message.content, 1, self.max_chars + 1),
        ).label("content")
        metadata = case(
            (Message.message_type.in_(media_types), Message.metadata_),
            else_=null(),
        ).label("metadata")
        rank = (
            func.row_number()
            .over(
                partition_by=Message.conversation_id,
                order_by=(Message.sent_at.desc(), Message.id.desc()),
            )
            .label("recency_rank")
        )
        ranked = (
            select(
                Message.id.label("message_id"),
                Message.conversation_id,
                content,
                metadata,
                Message.message_type,
                Message.is_from_contact,
                Message.sent_at,
                Message.is_internal_note,
                rank,
            )
            .where(Message.conversation_id.in_(conversation_ids))
            .where(Message.is_deleted.is_(False))
            .subquery("ranked_messages")
        )
        return select(ranked).where(ranked.c.recency_rank == 1)

    def resolve(self, db: Session, conversation_ids: Iterable[int]) -> dict[int, MessagePreview]:
        ids = list(dict.fromkeys(int(value) for value in conversation_ids))
        if not ids:
            return {}
        rows = db.execute(self._statement(ids)).mappings().all()
        previews: dict[int, MessagePreview] = {}
        for row in rows:
            message_type = row["message_type"]
            if not isinstance(message_type, MessageType):
                message_type = MessageType(message_type)
            if message_type in MEDIA_MESSAGE_TYPES:
                text = media_preview_text(message_type, row["metadata"])
            else:
                text = row["content"]
            previews[row["conversation_id"]] = MessagePreview(
                conversation_id=row["conversation_id"],
                message_id=row["message_id"],
                content=truncate_preview(text, self.max_chars),
                message_type=message_type,
                is_from_contact=bool(row["is_from_contact"]),
                sent_at=as_utc(row["sent_at"]),
                is_internal_note=bool(row["is_internal_note"]),
            )
        return previews
