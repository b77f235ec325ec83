from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class DuplicateContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    contact_id: int
    name: str
    phone: str | None = None
    origin_channel: str | None = None
    origin_channel_name: str | None = None
    conversation_count: int = 0
    last_activity: datetime | None = None


class DuplicateCheckResponse(BaseModel):
    phone: str
    is_duplicate: bool
    total_duplicates: int
    channels: list[str]
    duplicates: list[DuplicateContactRead]


class DuplicateGroupRead(BaseModel):
    normalized_phone: str
    contacts: list[DuplicateContactRead]
