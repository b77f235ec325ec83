import os
from datetime import UTC, datetime, timedelta

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

load_dotenv(os.path.join(os.getcwd(), ".env"))

from app.db import Base  # noqa: E402
from app.models.crm.contact import Contact  # noqa: E402
from app.models.crm.conversation import Conversation, Message  # noqa: E402
from app.models.crm.enums import (  # noqa: E402
    ChannelType,
    ConversationPriority,
    ConversationStatus,
    MessageType,
    TeamType,
)
from app.models.crm.team import SystemUser, Team  # noqa: E402
from app.services.crm.inbox.cache import TTLCache  # noqa: E402
from app.services.crm.inbox.notifications import InboxNotifier  # noqa: E402


@pytest.fixture()
def engine():
    # Services commit internally, so every test gets its own in-memory database.
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def query_counter(engine):
    """Collects SQL statements executed against the test engine."""
    statements: list[str] = []

    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", _before_cursor_execute)
    try:
        yield statements
    finally:
        event.remove(engine, "before_cursor_execute", _before_cursor_execute)


class RecordingGateway:
    """Broadcast gateway that keeps every event it is handed."""

    def __init__(self):
        self.conversation_events: list[tuple[int, object]] = []
        self.global_events: list[object] = []

    async def broadcast(self, conversation_id, event):
        self.conversation_events.append((conversation_id, event))

    async def broadcast_to_all(self, event):
        self.global_events.append(event)

    def event_types(self) -> list[str]:
        names = [event.event.value for _, event in self.conversation_events]
        names.extend(event.event.value for event in self.global_events)
        return names


@pytest.fixture()
def gateway():
    return RecordingGateway()


@pytest.fixture()
def notifier(gateway):
    return InboxNotifier(gateway=gateway)


@pytest.fixture()
def list_cache():
    return TTLCache(ttl_seconds=3.0, max_entries=64)


# ============================================================================
# CRM Fixtures
# ============================================================================


@pytest.fixture()
def make_contact(db_session):
    def _make(name="Test Contact", phone=None, email=None, **kwargs):
        contact = Contact(name=name, phone=phone, email=email, **kwargs)
        db_session.add(contact)
        db_session.commit()
        db_session.refresh(contact)
        return contact

    return _make


@pytest.fixture()
def make_conversation(db_session):
    def _make(contact, channel=ChannelType.whatsapp, last_message_at=None, **kwargs):
        kwargs.setdefault("status", ConversationStatus.open)
        kwargs.setdefault("priority", ConversationPriority.normal)
        conversation = Conversation(
            contact_id=contact.id,
            channel=channel,
            last_message_at=last_message_at,
            **kwargs,
        )
        db_session.add(conversation)
        db_session.commit()
        db_session.refresh(conversation)
        return conversation

    return _make


@pytest.fixture()
def make_message(db_session):
    def _make(
        conversation,
        content="hello",
        is_from_contact=True,
        sent_at=None,
        message_type=MessageType.text,
        **kwargs,
    ):
        message = Message(
            conversation_id=conversation.id,
            content=content,
            is_from_contact=is_from_contact,
            message_type=message_type,
            sent_at=sent_at or datetime.now(UTC),
            **kwargs,
        )
        db_session.add(message)
        db_session.commit()
        db_session.refresh(message)
        return message

    return _make


@pytest.fixture()
def make_user(db_session):
    def _make(username="agent", role="agent", display_name=None, **kwargs):
        user = SystemUser(username=username, role=role, display_name=display_name or username.title(), **kwargs)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_team(db_session):
    def _make(name="Suporte", team_type=TeamType.suporte, **kwargs):
        team = Team(name=name, team_type=team_type, **kwargs)
        db_session.add(team)
        db_session.commit()
        db_session.refresh(team)
        return team

    return _make


@pytest.fixture()
def admin_user(make_user):
    return make_user(username="admin", role="admin", display_name="Admin")


@pytest.fixture()
def agent_user(make_user):
    return make_user(username="ana", role="agent", display_name="Ana")


@pytest.fixture()
def contact(make_contact):
    return make_contact(name="Maria Silva", phone="5511999990000", email="maria@example.com")


@pytest.fixture()
def conversation(make_conversation, contact):
    return make_conversation(contact, last_message_at=datetime.now(UTC) - timedelta(minutes=1))
