from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class Contact(Base):
    """Customer identity seen on one or more messaging channels.

    Phone numbers are not unique: the same person may exist once per channel.
    Duplicate detection is advisory only.
    """

    __tablename__ = "contacts"
    __table_args__ = (
        Index("ix_contacts_phone", "phone"),
        Index("ix_contacts_user_identity", "user_identity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(40))
    email: Mapped[str | None] = mapped_column(String(255))
    user_identity: Mapped[str | None] = mapped_column(String(120))
    profile_image_url: Mapped[str | None] = mapped_column(String(500))
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # Origin channel metadata
    origin_channel: Mapped[str | None] = mapped_column(String(40))
    origin_channel_name: Mapped[str | None] = mapped_column(String(120))
    origin_channel_id: Mapped[str | None] = mapped_column(String(120))
    tags: Mapped[list | None] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    conversations = relationship("Conversation", back_populates="contact")
    deals = relationship("Deal", back_populates="contact")
