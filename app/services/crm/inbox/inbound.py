"""Inbound message processing for CRM inbox.

Provider webhook adapters normalize their payloads into
``InboundMessageEvent``; this module turns one event into Contact,
Conversation and Message rows via find-or-create.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.crm.contact import Contact
from app.models.crm.conversation import Conversation, Message
from app.models.crm.enums import ChannelType, ConversationStatus
from app.schemas.crm.message import InboundMessageEvent, MessageCreate
from app.services.common import as_utc, utcnow
from app.services.crm.contacts import ContactDuplicationResult, check_phone_duplicates, contacts
from app.services.crm.inbox import cache as inbox_cache
from app.services.crm.inbox.cache import TTLCache
from app.services.crm.inbox.messages import create_message, message_preview_text
from app.services.crm.inbox.notifications import InboxNotifier
from app.services.crm.inbox.observability import INBOUND_MESSAGES
from app.websocket.broadcaster import conversation_payload, message_payload
from app.websocket.events import EventType

logger = get_logger(__name__)

_REOPEN_STATUSES = {ConversationStatus.closed, ConversationStatus.resolved}


@dataclass(frozen=True)
class InboundResult:
    contact: Contact
    conversation: Conversation
    message: Message
    contact_created: bool
    conversation_created: bool
    duplicate_event: bool
    duplicates: ContactDuplicationResult


def _find_duplicate_inbound_message(
    db: Session, conversation_id: int, provider_message_id: str | None
) -> Message | None:
    if not provider_message_id:
        return None
    return db.scalars(
        select(Message)
        .where(Message.conversation_id == conversation_id, Message.external_id == provider_message_id)
        .limit(1)
    ).first()


def find_or_create_conversation(
    db: Session,
    contact: Contact,
    channel: ChannelType,
    channel_id: int | None = None,
) -> tuple[Conversation, bool]:
    """Latest conversation for ``(contact, channel)``; a closed one is reopened."""
    conversation = db.scalars(
        select(Conversation)
        .where(Conversation.contact_id == contact.id, Conversation.channel == channel)
        .order_by(Conversation.last_message_at.desc().nullslast(), Conversation.id.desc())
        .limit(1)
    ).first()
    if conversation is not None:
        if conversation.status in _REOPEN_STATUSES:
            conversation.status = ConversationStatus.open
        if channel_id is not None and conversation.channel_id is None:
            conversation.channel_id = channel_id
        return conversation, False
    conversation = Conversation(
        contact_id=contact.id,
        channel=channel,
        channel_id=channel_id,
        status=ConversationStatus.open,
        unread_count=0,
        tags=[],
    )
    db.add(conversation)
    db.flush()
    return conversation, True


def _provider_metadata(event: InboundMessageEvent) -> dict:
    metadata = dict(event.attachments or {})
    if event.provider_message_id and "messageId" not in metadata:
        metadata["messageId"] = event.provider_message_id
    return metadata


def receive_inbound_message(
    db: Session,
    event: InboundMessageEvent,
    *,
    active_conversation_id: int | None = None,
    cache: TTLCache | None = None,
    notifier: InboxNotifier | None = None,
) -> InboundResult:
    channel_label = event.platform.value
    try:
        contact, contact_created = contacts.find_or_create(
            db,
            platform=event.platform,
            sender_id=event.sender_id,
            name=event.sender_name,
            phone=event.phone,
            email=event.email,
            profile_image_url=event.profile_image_url,
        )
        conversation, conversation_created = find_or_create_conversation(
            db, contact, event.platform, channel_id=event.channel_id
        )

        existing = _find_duplicate_inbound_message(db, conversation.id, event.provider_message_id)
        if existing is not None:
            db.commit()
            logger.info(
                "inbox_inbound_duplicate conversation_id=%s provider_message_id=%s",
                conversation.id,
                event.provider_message_id,
            )
            return InboundResult(
                contact=contact,
                conversation=conversation,
                message=existing,
                contact_created=contact_created,
                conversation_created=conversation_created,
                duplicate_event=True,
                duplicates=ContactDuplicationResult(),
            )

        message = create_message(
            db,
            MessageCreate(
                conversation_id=conversation.id,
                content=event.body,
                is_from_contact=True,
                message_type=event.message_type,
                sent_at=as_utc(event.timestamp) or utcnow(),
                external_id=event.provider_message_id,
                metadata=_provider_metadata(event),
            ),
            active_conversation_id=active_conversation_id,
            commit=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        INBOUND_MESSAGES.labels(channel_type=channel_label, status="error").inc()
        raise
    db.refresh(message)
    db.refresh(conversation)
    INBOUND_MESSAGES.labels(channel_type=channel_label, status="success").inc()

    duplicates = ContactDuplicationResult()
    if contact_created and contact.phone:
        duplicates = check_phone_duplicates(db, contact.phone, exclude_contact_id=contact.id)

    inbox_cache.invalidate_inbox_list(cache)
    if notifier is not None:
        summary = conversation_payload(conversation)
        if conversation_created:
            notifier.enqueue_global(EventType.CONVERSATION_CREATED, summary)
        notifier.enqueue(conversation.id, EventType.MESSAGE_NEW, message_payload(message, message_preview_text(message)))
        notifier.enqueue_global(EventType.CONVERSATION_LIST_UPDATED, summary)
        notifier.flush()

    logger.info(
        "inbox_inbound_received conversation_id=%s message_id=%s channel=%s contact_created=%s",
        conversation.id,
        message.id,
        channel_label,
        contact_created,
    )
    return InboundResult(
        contact=contact,
        conversation=conversation,
        message=message,
        contact_created=contact_created,
        conversation_created=conversation_created,
        duplicate_event=False,
        duplicates=duplicates,
    )
