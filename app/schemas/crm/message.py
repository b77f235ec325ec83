"""Message payloads and the typed view over the provider metadata blob."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from app.models.crm.enums import ChannelType, MessageType, NotePriority


class ImageMetadata(BaseModel):
    kind: Literal["image"] = "image"
    url: str | None = None
    caption: str | None = None
    mime_type: str | None = None


class AudioMetadata(BaseModel):
    kind: Literal["audio"] = "audio"
    url: str | None = None
    duration_seconds: float | None = None
    mime_type: str | None = None


class VideoMetadata(BaseModel):
    kind: Literal["video"] = "video"
    url: str | None = None
    caption: str | None = None
    duration_seconds: float | None = None
    mime_type: str | None = None


class DocumentMetadata(BaseModel):
    kind: Literal["document"] = "document"
    url: str | None = None
    filename: str | None = None
    caption: str | None = None
    mime_type: str | None = None


class GenericMetadata(BaseModel):
    kind: Literal["generic"] = "generic"
    provider_message_id: str | None = None


class OpaqueMetadata(BaseModel):
    kind: Literal["opaque"] = "opaque"
    raw: dict[str, Any] = Field(default_factory=dict)


MessageMetadata = Annotated[
    ImageMetadata | AudioMetadata | VideoMetadata | DocumentMetadata | GenericMetadata | OpaqueMetadata,
    Field(discriminator="kind"),
]

_metadata_adapter: TypeAdapter = TypeAdapter(MessageMetadata)

# Provider payloads nest media under the type key ({"image": {"imageUrl": ...}})
# or keep it flat ({"imageUrl": ...}); both shapes are accepted.
_URL_KEYS = {
    MessageType.image: ("imageUrl", "image_url", "url"),
    MessageType.audio: ("audioUrl", "audio_url", "url"),
    MessageType.video: ("videoUrl", "video_url", "url"),
    MessageType.document: ("documentUrl", "document_url", "url"),
}


def _first(source: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = source.get(key)
        if value not in (None, ""):
            return value
    return None


def _media_fields(message_type: MessageType, raw: dict) -> dict:
    nested = raw.get(message_type.value)
    source = {**raw, **nested} if isinstance(nested, dict) else raw
    return {
        "kind": message_type.value,
        "url": _first(source, _URL_KEYS[message_type]),
        "caption": _first(source, ("caption", "title")),
        "filename": _first(source, ("fileName", "filename", "file_name")),
        "mime_type": _first(source, ("mimeType", "mime_type", "mimetype")),
        "duration_seconds": _first(source, ("seconds", "duration", "duration_seconds")),
    }


def parse_message_metadata(message_type: MessageType | str | None, raw: Any) -> MessageMetadata:
    """Return the typed metadata variant for a message.

    Unrecognized shapes fall back to ``OpaqueMetadata`` rather than failing.
    """
    if not isinstance(raw, dict):
        return OpaqueMetadata()
    try:
        kind = MessageType(message_type) if message_type is not None else MessageType.text
    except ValueError:
        return OpaqueMetadata(raw=raw)
    try:
        if kind in _URL_KEYS:
            fields = _media_fields(kind, raw)
            model = {
                MessageType.image: ImageMetadata,
                MessageType.audio: AudioMetadata,
                MessageType.video: VideoMetadata,
                MessageType.document: DocumentMetadata,
            }[kind]
            return model.model_validate({k: v for k, v in fields.items() if k in model.model_fields})
        provider_id = _first(raw, ("zaapId", "messageId", "id", "provider_message_id"))
        return GenericMetadata(provider_message_id=str(provider_id) if provider_id is not None else None)
    except ValidationError:
        return OpaqueMetadata(raw=raw)


def dump_message_metadata(metadata: MessageMetadata) -> dict:
    return _metadata_adapter.dump_python(metadata, mode="json")


class MessageCreate(BaseModel):
    conversation_id: int
    content: str | None = None
    is_from_contact: bool
    message_type: MessageType = MessageType.text
    sent_at: datetime | None = None
    external_id: str | None = Field(default=None, max_length=120)
    author_id: int | None = None
    is_internal_note: bool = False
    note_priority: NotePriority | None = None
    note_tags: list[str] | None = None
    is_private: bool = False
    metadata_: dict | None = Field(default=None, alias="metadata")

    model_config = ConfigDict(populate_by_name=True)


class MessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    conversation_id: int
    content: str | None = None
    is_from_contact: bool
    message_type: MessageType
    sent_at: datetime
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    is_deleted: bool = False
    is_deleted_by_user: bool = False
    deleted_at: datetime | None = None
    is_internal_note: bool = False


class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1)
    message_type: MessageType = MessageType.text


class SendMessageResponse(BaseModel):
    message: MessageRead
    provider_delivered: bool
    provider_message_id: str | None = None
    provider_error: str | None = None


class DeleteSentMessageRequest(BaseModel):
    phone: str | None = None
    provider_message_id: str | None = None


class MessageDeletionResponse(BaseModel):
    message_id: int
    conversation_id: int
    deleted_for_everyone: bool
    provider_error: str | None = None


class InboundMessageEvent(BaseModel):
    """Normalized inbound event produced by the provider webhook adapters."""

    platform: ChannelType
    sender_id: str = Field(min_length=1)
    sender_name: str | None = None
    phone: str | None = None
    email: str | None = None
    profile_image_url: str | None = None
    body: str | None = None
    message_type: MessageType = MessageType.text
    attachments: dict[str, Any] | None = None
    timestamp: datetime | None = None
    provider_message_id: str | None = None
    channel_id: int | None = None
