from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import (
    get_actor_id,
    get_db,
    get_list_cache,
    get_notifier,
    get_provider_resolver,
)
from app.models.crm.conversation import Conversation, Message
from app.schemas.crm.message import (
    DeleteSentMessageRequest,
    InboundMessageEvent,
    MessageDeletionResponse,
    MessageRead,
    SendMessageRequest,
    SendMessageResponse,
)
from app.services.crm.inbox import inbound as inbound_service
from app.services.crm.inbox import messages as message_service
from app.services.crm.inbox.errors import (
    InboxAuthError,
    InboxError,
    InboxNotFoundError,
    as_http_exception,
)

router = APIRouter(prefix="/crm/inbox", tags=["crm-inbox-messages"])


def _require_actor(actor_id: int | None) -> int:
    if actor_id is None:
        raise as_http_exception(InboxAuthError())
    return actor_id


def _deletion_response(message: Message, deleted_for_everyone: bool, provider_error: str | None = None):
    return MessageDeletionResponse(
        message_id=message.id,
        conversation_id=message.conversation_id,
        deleted_for_everyone=deleted_for_everyone,
        provider_error=provider_error,
    )


@router.post("/conversations/{conversation_id}/messages", response_model=SendMessageResponse)
def send_message(
    conversation_id: int,
    payload: SendMessageRequest,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
    resolve_provider=Depends(get_provider_resolver),
    cache=Depends(get_list_cache),
    notifier=Depends(get_notifier),
):
    actor = _require_actor(actor_id)
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise as_http_exception(InboxNotFoundError("conversation_not_found", "Conversation not found"))
    try:
        result = message_service.send_message(
            db,
            conversation_id,
            payload.content,
            actor,
            provider=resolve_provider(conversation.channel),
            message_type=payload.message_type,
            cache=cache,
            notifier=notifier,
        )
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    return SendMessageResponse(
        message=MessageRead.model_validate(result.message),
        provider_delivered=result.provider_delivered,
        provider_message_id=result.provider_message_id,
        provider_error=result.provider_error,
    )


@router.post("/messages/{message_id}/soft-delete", response_model=MessageDeletionResponse)
def soft_delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
    cache=Depends(get_list_cache),
    notifier=Depends(get_notifier),
):
    actor = _require_actor(actor_id)
    try:
        message = message_service.soft_delete_received_message(
            db, message_id, actor, cache=cache, notifier=notifier
        )
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    return _deletion_response(message, deleted_for_everyone=False)


@router.post("/messages/{message_id}/hide", response_model=MessageDeletionResponse)
def hide_message(
    message_id: int,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
    notifier=Depends(get_notifier),
):
    actor = _require_actor(actor_id)
    try:
        message = message_service.hide_message_for_user(db, message_id, actor, notifier=notifier)
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    return _deletion_response(message, deleted_for_everyone=False)


@router.post("/messages/{message_id}/delete-sent", response_model=MessageDeletionResponse)
def delete_sent_message(
    message_id: int,
    payload: DeleteSentMessageRequest | None = None,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
    resolve_provider=Depends(get_provider_resolver),
    cache=Depends(get_list_cache),
    notifier=Depends(get_notifier),
):
    actor = _require_actor(actor_id)
    payload = payload or DeleteSentMessageRequest()
    message = db.get(Message, message_id)
    if message is None:
        raise as_http_exception(InboxNotFoundError("message_not_found", "Message not found"))
    try:
        result = message_service.delete_sent_message(
            db,
            message_id,
            actor,
            provider=resolve_provider(message.conversation.channel),
            phone=payload.phone,
            provider_message_id=payload.provider_message_id,
            cache=cache,
            notifier=notifier,
        )
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    return _deletion_response(result.message, result.deleted_for_everyone, result.provider_error)


@router.post("/inbound")
def receive_inbound(
    payload: InboundMessageEvent,
    db: Session = Depends(get_db),
    cache=Depends(get_list_cache),
    notifier=Depends(get_notifier),
):
    """Accept a provider event already normalized by a channel adapter."""
    try:
        result = inbound_service.receive_inbound_message(db, payload, cache=cache, notifier=notifier)
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    return {
        "contact_id": result.contact.id,
        "conversation_id": result.conversation.id,
        "message_id": result.message.id,
        "contact_created": result.contact_created,
        "conversation_created": result.conversation_created,
        "duplicate_event": result.duplicate_event,
        "possible_duplicate_contacts": [item.contact_id for item in result.duplicates.duplicates],
    }
