"""Unread counter maintenance.

``Conversation.unread_count`` always equals the number of active
(``is_deleted = false``), contact-originated messages without ``read_at``.
Every writer recomputes it from the messages table in a single UPDATE rather
than incrementing, so concurrent writers converge on the true count (last
write wins, and the last write is always a full recount).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.crm.conversation import Conversation, Message
from app.services.common import utcnow
from app.services.crm.inbox import cache as inbox_cache
from app.services.crm.inbox.cache import TTLCache
from app.services.crm.inbox.errors import InboxNotFoundError
from app.services.crm.inbox.notifications import InboxNotifier
from app.websocket.events import EventType

logger = get_logger(__name__)


def _unread_messages():
    return (
        Message.is_from_contact.is_(True),
        Message.is_deleted.is_(False),
        Message.read_at.is_(None),
    )


def unread_count_expression():
    """Correlated COUNT of unread messages for the conversation row being updated."""
    return (
        select(func.count(Message.id))
        .where(Message.conversation_id == Conversation.id, *_unread_messages())
        .scalar_subquery()
    )


def count_unread_messages(db: Session, conversation_id: int) -> int:
    return db.scalar(
        select(func.count(Message.id)).where(Message.conversation_id == conversation_id, *_unread_messages())
    ) or 0


def refresh_unread_count(db: Session, conversation_id: int) -> int:
    db.flush()
    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(unread_count=unread_count_expression())
        .execution_options(synchronize_session=False)
    )
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        return 0
    db.refresh(conversation, attribute_names=["unread_count"])
    return conversation.unread_count


def _mark_all_read(db: Session, conversation_id: int, read_at: datetime) -> int:
    result = db.execute(
        update(Message)
        .where(Message.conversation_id == conversation_id, *_unread_messages())
        .values(read_at=read_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def apply_new_message(
    db: Session,
    message: Message,
    active_conversation_id: int | None = None,
    now: datetime | None = None,
) -> int:
    """Update unread state after ``message`` was added to the session.

    A message landing in the caller's active conversation counts as read
    immediately, together with anything still unread there.
    """
    db.flush()
    if active_conversation_id is not None and active_conversation_id == message.conversation_id:
        _mark_all_read(db, message.conversation_id, now or utcnow())
        if message.is_from_contact and message.read_at is None:
            db.refresh(message, attribute_names=["read_at"])
    return refresh_unread_count(db, message.conversation_id)


def _get_conversation(db: Session, conversation_id: int) -> Conversation:
    conversation = db.get(Conversation, conversation_id)
    if not conversation:
        raise InboxNotFoundError("conversation_not_found", "Conversation not found")
    return conversation


def _after_change(
    conversation: Conversation,
    cache: TTLCache | None,
    notifier: InboxNotifier | None,
) -> None:
    inbox_cache.invalidate_inbox_list(cache)
    if notifier is None:
        return
    data = {"conversation_id": conversation.id, "unread_count": conversation.unread_count}
    notifier.enqueue(conversation.id, EventType.UNREAD_UPDATED, data)
    notifier.enqueue_global(EventType.UNREAD_UPDATED, data)
    notifier.flush()


def mark_conversation_read(
    db: Session,
    conversation_id: int,
    *,
    cache: TTLCache | None = None,
    notifier: InboxNotifier | None = None,
    now: datetime | None = None,
) -> Conversation:
    conversation = _get_conversation(db, conversation_id)
    marked = _mark_all_read(db, conversation.id, now or utcnow())
    refresh_unread_count(db, conversation.id)
    db.commit()
    db.refresh(conversation)
    logger.debug("inbox_conversation_read conversation_id=%s marked=%s", conversation.id, marked)
    _after_change(conversation, cache, notifier)
    return conversation


def mark_conversation_unread(
    db: Session,
    conversation_id: int,
    *,
    cache: TTLCache | None = None,
    notifier: InboxNotifier | None = None,
) -> Conversation:
    """Flag the latest active contact message as unread again.

    Conversations without contact messages stay at zero; the counter never
    claims more unread messages than exist.
    """
    conversation = _get_conversation(db, conversation_id)
    latest = db.scalars(
        select(Message)
        .where(
            Message.conversation_id == conversation.id,
            Message.is_from_contact.is_(True),
            Message.is_deleted.is_(False),
        )
        .order_by(Message.sent_at.desc(), Message.id.desc())
        .limit(1)
    ).first()
    if latest is not None:
        latest.read_at = None
    refresh_unread_count(db, conversation.id)
    db.commit()
    db.refresh(conversation)
    _after_change(conversation, cache, notifier)
    return conversation


def recalculate_unread_counts(db: Session, cache: TTLCache | None = None) -> int:
    """Repair every drifted counter. Returns how many conversations changed."""
    expected = unread_count_expression()
    result = db.execute(
        update(Conversation)
        .where(Conversation.unread_count != expected)
        .values(unread_count=unread_count_expression())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    changed = result.rowcount or 0
    db.expire_all()
    if changed:
        logger.info("inbox_unread_counts_repaired conversations=%s", changed)
        inbox_cache.invalidate_inbox_list(cache)
    return changed


def get_total_unread_count(db: Session) -> int:
    return int(db.scalar(select(func.coalesce(func.sum(Conversation.unread_count), 0))) or 0)
