"""Message lifecycle: create, delete, hide and outbound send."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.logging import get_logger
from app.models.crm.conversation import Conversation, Message
from app.models.crm.enums import MEDIA_MESSAGE_TYPES, MessageType
from app.schemas.crm.message import GenericMetadata, MessageCreate, parse_message_metadata
from app.services.common import as_utc, utcnow
from app.services.crm.inbox import cache as inbox_cache
from app.services.crm.inbox.cache import TTLCache
from app.services.crm.inbox.errors import (
    InboxExternalError,
    InboxNotFoundError,
    InboxTimeWindowError,
    InboxValidationError,
)
from app.services.crm.inbox.notifications import InboxNotifier
from app.services.crm.inbox.observability import OUTBOUND_MESSAGES
from app.services.crm.inbox.previews import media_preview_text, truncate_preview
from app.services.crm.inbox.providers import ProviderAdapter
from app.services.crm.inbox.unread import apply_new_message, refresh_unread_count
from app.websocket.broadcaster import conversation_payload, message_payload
from app.websocket.events import EventType

logger = get_logger(__name__)


@dataclass(frozen=True)
class SendMessageResult:
    message: Message
    provider_delivered: bool
    provider_message_id: str | None = None
    provider_error: str | None = None


@dataclass(frozen=True)
class MessageDeletionResult:
    message: Message
    deleted_for_everyone: bool
    provider_error: str | None = None


def message_preview_text(message: Message) -> str | None:
    if message.message_type in MEDIA_MESSAGE_TYPES:
        return media_preview_text(message.message_type, message.metadata_)
    return truncate_preview(message.content, settings.inbox_preview_max_chars)


def _get_conversation(db: Session, conversation_id: int) -> Conversation:
    conversation = db.get(Conversation, conversation_id)
    if not conversation:
        raise InboxNotFoundError("conversation_not_found", "Conversation not found")
    return conversation


def _get_message(db: Session, message_id: int) -> Message:
    message = db.get(Message, message_id)
    if not message:
        raise InboxNotFoundError("message_not_found", "Message not found")
    return message


def ensure_within_delete_window(
    message: Message,
    now: datetime | None = None,
    window_seconds: int | None = None,
) -> None:
    """Deletion is allowed up to and including the window length after ``sent_at``."""
    window = timedelta(seconds=settings.message_delete_window_seconds if window_seconds is None else window_seconds)
    sent_at = as_utc(message.sent_at) or utcnow()
    elapsed = (now or utcnow()) - sent_at
    if elapsed > window:
        minutes = int(window.total_seconds() // 60)
        raise InboxTimeWindowError(f"Message can no longer be deleted {minutes} minutes after it was sent")


def _notify_message(
    notifier: InboxNotifier | None,
    event: EventType,
    message: Message,
    conversation: Conversation,
    extra: dict | None = None,
) -> None:
    if notifier is None:
        return
    data = message_payload(message, preview=message_preview_text(message))
    if extra:
        data.update(extra)
    notifier.enqueue(conversation.id, event, data)
    notifier.enqueue_global(EventType.CONVERSATION_LIST_UPDATED, conversation_payload(conversation))
    notifier.flush()


def create_message(
    db: Session,
    payload: MessageCreate,
    *,
    active_conversation_id: int | None = None,
    cache: TTLCache | None = None,
    notifier: InboxNotifier | None = None,
    commit: bool = True,
) -> Message:
    conversation = _get_conversation(db, payload.conversation_id)
    if not payload.is_internal_note and payload.message_type == MessageType.text and not (payload.content or "").strip():
        raise InboxValidationError("empty_message", "Text messages need content")
    sent_at = as_utc(payload.sent_at) or utcnow()
    message = Message(
        conversation_id=conversation.id,
        content=payload.content,
        is_from_contact=payload.is_from_contact,
        message_type=payload.message_type,
        external_id=payload.external_id,
        author_id=payload.author_id,
        sent_at=sent_at,
        is_internal_note=payload.is_internal_note,
        note_priority=payload.note_priority,
        note_tags=payload.note_tags,
        is_private=payload.is_private,
        metadata_=payload.metadata_,
    )
    db.add(message)
    current_last = as_utc(conversation.last_message_at)
    if current_last is None or sent_at >= current_last:
        conversation.last_message_at = sent_at
    apply_new_message(db, message, active_conversation_id=active_conversation_id)
    if not commit:
        return message
    db.commit()
    db.refresh(message)
    db.refresh(conversation)
    inbox_cache.invalidate_inbox_list(cache)
    _notify_message(notifier, EventType.MESSAGE_NEW, message, conversation)
    return message


def soft_delete_received_message(
    db: Session,
    message_id: int,
    actor_id: int | None,
    *,
    now: datetime | None = None,
    cache: TTLCache | None = None,
    notifier: InboxNotifier | None = None,
) -> Message:
    """Globally soft delete a contact message inside the grace window."""
    message = _get_message(db, message_id)
    if not message.is_from_contact:
        raise InboxValidationError("not_received_message", "Only received messages can be soft deleted")
    if message.is_deleted:
        return message
    current = now or utcnow()
    ensure_within_delete_window(message, now=current)
    message.is_deleted = True
    message.deleted_by = actor_id
    message.deleted_at = current
    refresh_unread_count(db, message.conversation_id)
    db.commit()
    db.refresh(message)
    conversation = message.conversation
    db.refresh(conversation)
    inbox_cache.invalidate_inbox_list(cache)
    _notify_message(notifier, EventType.MESSAGE_DELETED, message, conversation, {"deleted_for_everyone": False})
    return message


def hide_message_for_user(
    db: Session,
    message_id: int,
    actor_id: int,
    *,
    now: datetime | None = None,
    notifier: InboxNotifier | None = None,
) -> Message:
    """Hide a message from the acting user's view only.

    The message stays active: it still counts as unread and still previews.
    """
    message = _get_message(db, message_id)
    message.is_deleted_by_user = True
    message.hidden_by = actor_id
    message.hidden_at = now or utcnow()
    db.commit()
    db.refresh(message)
    if notifier is not None:
        notifier.enqueue(
            message.conversation_id,
            EventType.MESSAGE_UPDATED,
            {"message_id": message.id, "conversation_id": message.conversation_id, "hidden_for_user_id": actor_id},
        )
        notifier.flush()
    return message


def provider_message_id_for(message: Message) -> str | None:
    if message.external_id:
        return message.external_id
    metadata = parse_message_metadata(MessageType.text, message.metadata_)
    if isinstance(metadata, GenericMetadata):
        return metadata.provider_message_id
    return None


def delete_sent_message(
    db: Session,
    message_id: int,
    actor_id: int | None,
    *,
    provider: ProviderAdapter | None = None,
    phone: str | None = None,
    provider_message_id: str | None = None,
    now: datetime | None = None,
    cache: TTLCache | None = None,
    notifier: InboxNotifier | None = None,
) -> MessageDeletionResult:
    """Delete an agent message for everyone, then soft delete it locally.

    The local delete always happens inside the window. A provider failure is
    reported in the result, not raised.
    """
    message = _get_message(db, message_id)
    if message.is_from_contact:
        raise InboxValidationError("not_sent_message", "Only sent messages can be deleted for everyone")
    current = now or utcnow()
    ensure_within_delete_window(message, now=current)

    conversation = message.conversation
    recipient = phone or (conversation.contact.phone if conversation.contact else None)
    remote_id = provider_message_id or provider_message_id_for(message)
    deleted_for_everyone = False
    provider_error = None
    if provider is None:
        provider_error = "No provider available for this channel"
    elif not remote_id or not recipient:
        provider_error = "Message has no provider id or recipient phone"
    else:
        try:
            provider.delete_message(recipient, remote_id)
            deleted_for_everyone = True
        except InboxExternalError as exc:
            provider_error = exc.detail
            logger.warning("inbox_provider_delete_failed message_id=%s error=%s", message.id, exc.detail)

    if not message.is_deleted:
        message.is_deleted = True
        message.deleted_by = actor_id
        message.deleted_at = current
    refresh_unread_count(db, message.conversation_id)
    db.commit()
    db.refresh(message)
    db.refresh(conversation)
    inbox_cache.invalidate_inbox_list(cache)
    _notify_message(
        notifier,
        EventType.MESSAGE_DELETED,
        message,
        conversation,
        {"deleted_for_everyone": deleted_for_everyone},
    )
    return MessageDeletionResult(
        message=message,
        deleted_for_everyone=deleted_for_everyone,
        provider_error=provider_error,
    )


def send_message(
    db: Session,
    conversation_id: int,
    content: str,
    author_id: int | None,
    *,
    provider: ProviderAdapter | None = None,
    message_type: MessageType = MessageType.text,
    cache: TTLCache | None = None,
    notifier: InboxNotifier | None = None,
) -> SendMessageResult:
    """Persist an agent message, then hand it to the provider.

    The local row is the source of truth; provider failures produce a
    partial-success result and are left to the caller to retry.
    """
    conversation = _get_conversation(db, conversation_id)
    message = create_message(
        db,
        MessageCreate(
            conversation_id=conversation.id,
            content=content,
            is_from_contact=False,
            message_type=message_type,
            author_id=author_id,
        ),
        active_conversation_id=conversation.id,
        commit=False,
    )
    db.commit()
    db.refresh(message)
    db.refresh(conversation)
    inbox_cache.invalidate_inbox_list(cache)

    channel = conversation.channel.value if conversation.channel else "unknown"
    recipient = conversation.contact.phone if conversation.contact else None
    provider_message_id = None
    provider_error = None
    if provider is None:
        provider_error = "No provider available for this channel"
    elif not recipient:
        provider_error = "Contact has no phone number"
    else:
        try:
            sent = provider.send_text(recipient, content)
            provider_message_id = sent.provider_message_id
        except InboxExternalError as exc:
            provider_error = exc.detail
            logger.warning("inbox_provider_send_failed conversation_id=%s error=%s", conversation.id, exc.detail)

    delivered = provider_error is None
    OUTBOUND_MESSAGES.labels(channel_type=channel, status="sent" if delivered else "failed").inc()
    if provider_message_id:
        message.external_id = provider_message_id
        db.commit()
        db.refresh(message)

    _notify_message(notifier, EventType.MESSAGE_NEW, message, conversation)
    return SendMessageResult(
        message=message,
        provider_delivered=delivered,
        provider_message_id=provider_message_id,
        provider_error=provider_error,
    )
