"""Tests for unread counter maintenance."""

from datetime import UTC, datetime, timedelta

from app.models.crm.conversation import Conversation
from app.schemas.crm.message import MessageCreate
from app.services.crm.inbox import messages as message_service
from app.services.crm.inbox import unread

BASE = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def _incoming(conversation, content="oi", minutes=0):
    return MessageCreate(
        conversation_id=conversation.id,
        content=content,
        is_from_contact=True,
        sent_at=BASE + timedelta(minutes=minutes),
    )


def _assert_counter_matches(db_session, conversation):
    db_session.refresh(conversation)
    assert conversation.unread_count == unread.count_unread_messages(db_session, conversation.id)


def test_new_contact_message_increments(db_session, conversation):
    message_service.create_message(db_session, _incoming(conversation))
    message_service.create_message(db_session, _incoming(conversation, minutes=1))

    db_session.refresh(conversation)
    assert conversation.unread_count == 2


def test_agent_messages_do_not_count(db_session, conversation, agent_user):
    message_service.create_message(
        db_session,
        MessageCreate(conversation_id=conversation.id, content="olá", is_from_contact=False, author_id=agent_user.id),
    )

    db_session.refresh(conversation)
    assert conversation.unread_count == 0


def test_message_in_active_conversation_is_read_immediately(db_session, conversation):
    message_service.create_message(db_session, _incoming(conversation))
    message = message_service.create_message(
        db_session, _incoming(conversation, minutes=1), active_conversation_id=conversation.id
    )

    db_session.refresh(conversation)
    assert conversation.unread_count == 0
    assert message.read_at is not None


def test_active_other_conversation_does_not_mark_read(db_session, make_conversation, contact, conversation):
    other = make_conversation(contact)
    message_service.create_message(db_session, _incoming(conversation), active_conversation_id=other.id)

    db_session.refresh(conversation)
    assert conversation.unread_count == 1


def test_mark_read_and_unread(db_session, conversation, notifier, gateway):
    for minute in range(3):
        message_service.create_message(db_session, _incoming(conversation, minutes=minute))

    read = unread.mark_conversation_read(db_session, conversation.id, notifier=notifier)
    assert read.unread_count == 0

    flagged = unread.mark_conversation_unread(db_session, conversation.id, notifier=notifier)
    assert flagged.unread_count == 1
    assert "unread_updated" in gateway.event_types()


def test_mark_unread_without_contact_messages_stays_zero(db_session, conversation):
    result = unread.mark_conversation_unread(db_session, conversation.id)
    assert result.unread_count == 0


def test_deleting_unread_message_decrements(db_session, conversation):
    message_service.create_message(db_session, _incoming(conversation))
    latest = message_service.create_message(db_session, _incoming(conversation, minutes=1))

    message_service.soft_delete_received_message(
        db_session, latest.id, actor_id=None, now=BASE + timedelta(minutes=2)
    )

    db_session.refresh(conversation)
    assert conversation.unread_count == 1


def test_counter_matches_messages_across_sequences(db_session, conversation, agent_user):
    steps = [
        lambda: message_service.create_message(db_session, _incoming(conversation, minutes=0)),
        lambda: message_service.create_message(db_session, _incoming(conversation, minutes=1)),
        lambda: unread.mark_conversation_read(db_session, conversation.id),
        lambda: message_service.create_message(db_session, _incoming(conversation, minutes=2)),
        lambda: message_service.send_message(db_session, conversation.id, "resposta", agent_user.id),
        lambda: message_service.create_message(db_session, _incoming(conversation, minutes=3)),
        lambda: unread.mark_conversation_unread(db_session, conversation.id),
    ]
    for step in steps:
        step()
        _assert_counter_matches(db_session, conversation)


def test_recalculate_repairs_drift(db_session, conversation, make_message, list_cache):
    make_message(conversation, sent_at=BASE)
    make_message(conversation, sent_at=BASE + timedelta(minutes=1))
    # Rows inserted directly leave the counter stale.
    db_session.refresh(conversation)
    assert conversation.unread_count == 0

    changed = unread.recalculate_unread_counts(db_session, cache=list_cache)

    assert changed == 1
    assert db_session.get(Conversation, conversation.id).unread_count == 2
    assert unread.recalculate_unread_counts(db_session) == 0


def test_total_unread_count(db_session, make_conversation, contact, conversation):
    other = make_conversation(contact)
    message_service.create_message(db_session, _incoming(conversation))
    message_service.create_message(db_session, _incoming(other))
    message_service.create_message(db_session, _incoming(other, minutes=1))

    assert unread.get_total_unread_count(db_session) == 3


def test_total_unread_count_empty(db_session):
    assert unread.get_total_unread_count(db_session) == 0
