from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.crm.enums import (
    AssignmentMethod,
    ChannelType,
    ConversationPriority,
    ConversationStatus,
    MessageType,
    TeamType,
)

Period = Literal["today", "yesterday", "week", "month", "all"]

_PERIODS = {"today", "yesterday", "week", "month", "all"}


def _blank_or_all(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        text = value.strip().lower()
        return not text or text == "all"
    return False


def _lenient_int(value: Any) -> int | None:
    if _blank_or_all(value) or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    text = str(value).strip()
    if text.isdecimal() and text.isascii():
        return int(text)
    return None


class ConversationFilters(BaseModel):
    """Structural list filters.

    Malformed values are dropped instead of rejected so a partially stale
    client state still gets a list back.
    """

    model_config = ConfigDict(extra="ignore")

    period: Period | None = None
    team: int | None = None
    status: str | None = None
    agent: int | None = None
    channel: str | None = None

    @field_validator("period", mode="before")
    @classmethod
    def _period(cls, value: Any):
        if _blank_or_all(value):
            return None
        text = str(value).strip().lower()
        return text if text in _PERIODS else None

    @field_validator("team", "agent", mode="before")
    @classmethod
    def _numeric_id(cls, value: Any):
        return _lenient_int(value)

    @field_validator("status", "channel", mode="before")
    @classmethod
    def _text(cls, value: Any):
        if _blank_or_all(value):
            return None
        return str(value).strip()

    @classmethod
    def from_raw(cls, raw: ConversationFilters | dict | None) -> ConversationFilters:
        if isinstance(raw, ConversationFilters):
            return raw
        if not isinstance(raw, dict):
            return cls()
        return cls.model_validate(raw)

    def is_empty(self) -> bool:
        return not any(
            value is not None for value in (self.period, self.team, self.status, self.agent, self.channel)
        )


class ContactSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    phone: str | None = None
    profile_image_url: str | None = None


class AssignedUserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    display_name: str | None = None
    avatar: str | None = None


class MessagePreview(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    conversation_id: int
    message_id: int
    content: str | None = None
    message_type: MessageType
    is_from_contact: bool
    sent_at: datetime | None = None
    is_internal_note: bool = False


class ConversationSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    contact_id: int
    channel: ChannelType
    channel_id: int | None = None
    status: ConversationStatus
    priority: ConversationPriority
    unread_count: int = 0
    last_message_at: datetime | None = None
    assigned_team_id: int | None = None
    assigned_user_id: int | None = None
    assignment_method: AssignmentMethod | None = None
    assigned_at: datetime | None = None
    team_type: TeamType | None = None
    tags: list[str] = Field(default_factory=list)
    metadata_: dict | None = Field(default=None, serialization_alias="metadata")
    created_at: datetime
    updated_at: datetime

    contact: ContactSummary
    assigned_user: AssignedUserSummary | None = None
    preview: MessagePreview | None = None


class ConversationListResponse(BaseModel):
    conversations: list[ConversationSummary]
    has_more: bool = False
    next_offset: int | None = None
    offset: int = 0
    limit: int


class AssignConversationRequest(BaseModel):
    team_id: int | None = None
    user_id: int | None = None
    method: str = AssignmentMethod.manual.value


class AssignConversationResponse(BaseModel):
    conversation_id: int
    assigned_team_id: int | None = None
    assigned_user_id: int | None = None
    assignment_method: AssignmentMethod | None = None
    assigned_at: datetime | None = None


class ConversationStatusUpdate(BaseModel):
    status: str | None = None
    priority: str | None = None


class UnreadCountResponse(BaseModel):
    conversation_id: int | None = None
    unread_count: int
