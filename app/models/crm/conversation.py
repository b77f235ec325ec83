from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.models.crm.enums import (
    AssignmentMethod,
    ChannelType,
    ConversationPriority,
    ConversationStatus,
    MessageType,
    NotePriority,
)


class Conversation(Base):
    """Thread between one Contact and the agents on one channel.

    ``unread_count`` mirrors the number of active, contact-originated messages
    without ``read_at``; it is maintained by the unread tracker only.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        CheckConstraint("unread_count >= 0", name="ck_conversations_unread_non_negative"),
        Index("ix_conversations_last_message_at", "last_message_at"),
        Index("ix_conversations_contact_channel", "contact_id", "channel"),
        Index("ix_conversations_assigned_team_id", "assigned_team_id"),
        Index("ix_conversations_assigned_user_id", "assigned_user_id"),
        Index("ix_conversations_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[int] = mapped_column(Integer, ForeignKey("contacts.id"), nullable=False)
    channel: Mapped[ChannelType] = mapped_column(Enum(ChannelType), nullable=False)
    channel_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("channels.id"))
    status: Mapped[ConversationStatus] = mapped_column(
        Enum(ConversationStatus), default=ConversationStatus.open, nullable=False
    )
    priority: Mapped[ConversationPriority] = mapped_column(
        Enum(ConversationPriority), default=ConversationPriority.normal, nullable=False
    )
    unread_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    assigned_team_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("teams.id"))
    assigned_user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("system_users.id"))
    assignment_method: Mapped[AssignmentMethod | None] = mapped_column(Enum(AssignmentMethod))
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    tags: Mapped[list | None] = mapped_column(JSON, default=list)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    contact = relationship("Contact", back_populates="conversations")
    channel_config = relationship("Channel")
    assigned_team = relationship("Team")
    assigned_user = relationship("SystemUser")
    messages = relationship("Message", back_populates="conversation")


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_sent", "conversation_id", "sent_at", "id"),
        Index("ix_messages_external_id", "external_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(Integer, ForeignKey("conversations.id"), nullable=False)
    content: Mapped[str | None] = mapped_column(Text)
    is_from_contact: Mapped[bool] = mapped_column(Boolean, nullable=False)
    message_type: Mapped[MessageType] = mapped_column(Enum(MessageType), default=MessageType.text, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(120))
    author_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("system_users.id"))

    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Global soft delete: the message stops counting and displaying for everyone.
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Per-user hide: never implies is_deleted.
    is_deleted_by_user: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    hidden_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("system_users.id"))
    hidden_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    deleted_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("system_users.id"))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    is_internal_note: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    note_priority: Mapped[NotePriority | None] = mapped_column(Enum(NotePriority))
    note_tags: Mapped[list | None] = mapped_column(JSON)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    conversation = relationship("Conversation", back_populates="messages")
    author = relationship("SystemUser", foreign_keys=[author_id])
