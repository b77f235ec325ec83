from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.deps import (
    get_actor_id,
    get_db,
    get_list_cache,
    get_notifier,
    get_permission_evaluator,
    get_query_service,
)
from app.schemas.crm.conversation import (
    AssignConversationRequest,
    AssignConversationResponse,
    ConversationListResponse,
    ConversationStatusUpdate,
    ConversationSummary,
    UnreadCountResponse,
)
from app.services.crm.inbox import conversation_actions, unread
from app.services.crm.inbox.errors import InboxAuthError, InboxError, as_http_exception
from app.services.crm.inbox.listing import InboxListResult

router = APIRouter(prefix="/crm/inbox", tags=["crm-inbox"])


def _filters(period, team, status, agent, channel) -> dict:
    return {"period": period, "team": team, "status": status, "agent": agent, "channel": channel}


def _list_response(result: InboxListResult) -> ConversationListResponse:
    return ConversationListResponse(
        conversations=result.conversations,
        has_more=result.has_more,
        next_offset=result.next_offset,
        offset=result.offset,
        limit=result.limit,
    )


@router.get("/conversations", response_model=ConversationListResponse, response_model_by_alias=True)
def list_conversations(
    db: Session = Depends(get_db),
    service=Depends(get_query_service),
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    period: str | None = None,
    team: str | None = None,
    status: str | None = None,
    agent: str | None = None,
    channel: str | None = None,
):
    try:
        result = service.list_conversations(
            db, limit=limit, offset=offset, filters=_filters(period, team, status, agent, channel)
        )
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    return _list_response(result)


@router.get("/conversations/search", response_model=ConversationListResponse, response_model_by_alias=True)
def search_conversations(
    q: str = Query(min_length=1),
    db: Session = Depends(get_db),
    service=Depends(get_query_service),
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    period: str | None = None,
    team: str | None = None,
    status: str | None = None,
    agent: str | None = None,
    channel: str | None = None,
):
    try:
        result = service.search_conversations(
            db, q, limit=limit, offset=offset, filters=_filters(period, team, status, agent, channel)
        )
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    return _list_response(result)


@router.post("/conversations/{conversation_id}/assignment", response_model=AssignConversationResponse)
def assign_conversation(
    conversation_id: int,
    payload: AssignConversationRequest,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
    evaluator=Depends(get_permission_evaluator),
    cache=Depends(get_list_cache),
    notifier=Depends(get_notifier),
):
    try:
        result = conversation_actions.assign_conversation(
            db,
            conversation_id=conversation_id,
            team_id=payload.team_id,
            user_id=payload.user_id,
            actor_id=actor_id,
            evaluator=evaluator,
            method=payload.method,
            cache=cache,
            notifier=notifier,
        )
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    conversation = result.conversation
    return AssignConversationResponse(
        conversation_id=conversation.id,
        assigned_team_id=conversation.assigned_team_id,
        assigned_user_id=conversation.assigned_user_id,
        assignment_method=conversation.assignment_method,
        assigned_at=conversation.assigned_at,
    )


@router.patch("/conversations/{conversation_id}")
def update_conversation(
    conversation_id: int,
    payload: ConversationStatusUpdate,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
    evaluator=Depends(get_permission_evaluator),
    cache=Depends(get_list_cache),
    notifier=Depends(get_notifier),
):
    try:
        conversation = conversation_actions.update_conversation_status(
            db,
            conversation_id=conversation_id,
            actor_id=actor_id,
            evaluator=evaluator,
            status=payload.status,
            priority=payload.priority,
            cache=cache,
            notifier=notifier,
        )
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    return {
        "id": conversation.id,
        "status": conversation.status.value,
        "priority": conversation.priority.value,
    }


def _require_actor(actor_id: int | None) -> int:
    if actor_id is None:
        raise as_http_exception(InboxAuthError())
    return actor_id


@router.post("/conversations/{conversation_id}/read", response_model=UnreadCountResponse)
def mark_read(
    conversation_id: int,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
    cache=Depends(get_list_cache),
    notifier=Depends(get_notifier),
):
    _require_actor(actor_id)
    try:
        conversation = unread.mark_conversation_read(db, conversation_id, cache=cache, notifier=notifier)
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    return UnreadCountResponse(conversation_id=conversation.id, unread_count=conversation.unread_count)


@router.post("/conversations/{conversation_id}/unread", response_model=UnreadCountResponse)
def mark_unread(
    conversation_id: int,
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
    cache=Depends(get_list_cache),
    notifier=Depends(get_notifier),
):
    _require_actor(actor_id)
    try:
        conversation = unread.mark_conversation_unread(db, conversation_id, cache=cache, notifier=notifier)
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    return UnreadCountResponse(conversation_id=conversation.id, unread_count=conversation.unread_count)


@router.get("/unread-count", response_model=UnreadCountResponse)
def total_unread(db: Session = Depends(get_db)):
    return UnreadCountResponse(unread_count=unread.get_total_unread_count(db))


@router.post("/unread/recalculate")
def recalculate_unread(
    db: Session = Depends(get_db),
    actor_id: int | None = Depends(get_actor_id),
    evaluator=Depends(get_permission_evaluator),
    cache=Depends(get_list_cache),
):
    actor = _require_actor(actor_id)
    if not evaluator.is_admin(actor):
        raise HTTPException(status_code=403, detail={"code": "forbidden", "detail": "Admin only"})
    return {"updated": unread.recalculate_unread_counts(db, cache=cache)}


@router.get("/conversations/{conversation_id}", response_model=ConversationSummary, response_model_by_alias=True)
def get_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    service=Depends(get_query_service),
):
    try:
        return service.get_conversation_summary(db, conversation_id)
    except InboxError as exc:
        raise as_http_exception(exc) from exc
