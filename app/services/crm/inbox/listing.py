"""Conversation list assembly for CRM inbox.

``ConversationQueryService`` is the single entry point for conversation pages
and conversation search. Both return summaries ordered by most recent
activity (``last_message_at`` descending, then id descending).

Pagination is offset based against that mutating order. A conversation that
receives a message while a client pages through the list moves to the top,
so consecutive pages may skip or repeat rows under concurrent writes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import Select, and_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from app.config import Settings, settings as default_settings
from app.logging import get_logger
from app.models.crm.contact import Contact
from app.models.crm.conversation import Conversation
from app.models.crm.team import SystemUser, Team
from app.schemas.crm.conversation import (
    AssignedUserSummary,
    ContactSummary,
    ConversationFilters,
    ConversationSummary,
    MessagePreview,
)
from app.services.common import as_utc
from app.services.crm.inbox import cache as inbox_cache
from app.services.crm.inbox.cache import TTLCache
from app.services.crm.inbox.errors import InboxNotFoundError, InboxValidationError
from app.services.crm.inbox.filters import (
    compile_conversation_filters,
    compile_search_predicate,
    local_now,
    normalize_search,
)
from app.services.crm.inbox.observability import (
    LIST_ASSEMBLY_TIME,
    LIST_CACHE_LOOKUPS,
    PREVIEW_FAILURES,
)
from app.services.crm.inbox.previews import PreviewResolver
from app.telemetry import get_tracer

logger = get_logger(__name__)
_tracer = get_tracer(__name__)

SLOW_ASSEMBLY_MS = 500


@dataclass(frozen=True)
class InboxListResult:
    conversations: list[ConversationSummary]
    offset: int
    limit: int
    has_more: bool
    next_offset: int | None


def _validate_offset(offset: Any) -> int:
    if offset is None:
        return 0
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise InboxValidationError("invalid_offset", "offset must be a non-negative integer")
    return offset


def _validate_limit(limit: Any) -> int | None:
    if limit is None:
        return None
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InboxValidationError("invalid_limit", "limit must be a positive integer")
    return limit


class ConversationQueryService:
    """Builds conversation summary pages with a constant number of queries.

    One query loads the page (conversation, contact essentials, assigned user
    and team type) and one batched query loads every preview on the page.
    """

    def __init__(
        self,
        cache: TTLCache | None = None,
        previews: PreviewResolver | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.settings = settings or default_settings
        self.cache = cache
        self.previews = previews or PreviewResolver(max_chars=self.settings.inbox_preview_max_chars)
        self.clock = clock

    def _page_limit(self, limit: int | None, filtered: bool) -> int:
        requested = limit if limit is not None else self.settings.inbox_page_size_default
        cap = self.settings.inbox_page_size_max if filtered else self.settings.inbox_unfiltered_page_size_max
        if requested > cap:
            logger.info("inbox_list_limit_reduced requested=%s cap=%s filtered=%s", requested, cap, filtered)
            return cap
        return requested

    def _search_limit(self, limit: int | None) -> int:
        requested = limit if limit is not None else self.settings.inbox_search_limit_default
        return min(requested, self.settings.inbox_search_limit_max)

    def _base_query(self) -> Select:
        return (
            select(
                Conversation,
                Contact.name.label("contact_name"),
                Contact.phone.label("contact_phone"),
                Contact.profile_image_url.label("contact_profile_image_url"),
                SystemUser.display_name.label("assigned_user_name"),
                SystemUser.avatar.label("assigned_user_avatar"),
                Team.team_type.label("team_type"),
            )
            .join(Contact, Contact.id == Conversation.contact_id)
            .outerjoin(SystemUser, SystemUser.id == Conversation.assigned_user_id)
            .outerjoin(Team, Team.id == Conversation.assigned_team_id)
        )

    def _summaries(self, db: Session, rows: list[Any]) -> tuple[list[ConversationSummary], bool]:
        """Return the summaries and whether previews were dropped."""
        ids = [row.Conversation.id for row in rows]
        degraded = False
        try:
            previews: dict[int, MessagePreview] = self.previews.resolve(db, ids)
        except Exception:
            PREVIEW_FAILURES.inc()
            logger.warning("inbox_preview_batch_failed conversations=%s", len(ids), exc_info=True)
            previews = {}
            degraded = True

        summaries = []
        for row in rows:
            conversation: Conversation = row.Conversation
            assigned_user = None
            if conversation.assigned_user_id is not None:
                assigned_user = AssignedUserSummary(
                    id=conversation.assigned_user_id,
                    display_name=row.assigned_user_name,
                    avatar=row.assigned_user_avatar,
                )
            summaries.append(
                ConversationSummary(
                    id=conversation.id,
                    contact_id=conversation.contact_id,
                    channel=conversation.channel,
                    channel_id=conversation.channel_id,
                    status=conversation.status,
                    priority=conversation.priority,
                    unread_count=conversation.unread_count or 0,
                    last_message_at=as_utc(conversation.last_message_at),
                    assigned_team_id=conversation.assigned_team_id,
                    assigned_user_id=conversation.assigned_user_id,
                    assignment_method=conversation.assignment_method,
                    assigned_at=as_utc(conversation.assigned_at),
                    team_type=row.team_type,
                    tags=list(conversation.tags or []),
                    metadata_=conversation.metadata_,
                    created_at=as_utc(conversation.created_at),
                    updated_at=as_utc(conversation.updated_at),
                    contact=ContactSummary(
                        id=conversation.contact_id,
                        name=row.contact_name,
                        phone=row.contact_phone,
                        profile_image_url=row.contact_profile_image_url,
                    ),
                    assigned_user=assigned_user,
                    preview=previews.get(conversation.id),
                )
            )
        return summaries, degraded

    def _assemble(
        self,
        db: Session,
        predicate: ColumnElement[bool],
        *,
        limit: int,
        offset: int,
        operation: str,
    ) -> tuple[InboxListResult, bool]:
        started = time.perf_counter()
        stmt = (
            self._base_query()
            .where(predicate)
            .order_by(Conversation.last_message_at.desc().nullslast(), Conversation.id.desc())
            .limit(limit + 1)
            .offset(offset)
        )
        with _tracer.start_as_current_span(f"inbox.{operation}") as span:
            span.set_attribute("inbox.limit", limit)
            span.set_attribute("inbox.offset", offset)
            rows = list(db.execute(stmt).all())
            has_more = len(rows) > limit
            rows = rows[:limit]
            summaries, degraded = self._summaries(db, rows)
            span.set_attribute("inbox.items", len(summaries))

        elapsed = time.perf_counter() - started
        LIST_ASSEMBLY_TIME.labels(operation=operation).observe(elapsed)
        elapsed_ms = int(elapsed * 1000)
        if elapsed_ms >= SLOW_ASSEMBLY_MS:
            logger.info("inbox_%s_slow elapsed_ms=%s items=%s", operation, elapsed_ms, len(summaries))
        else:
            logger.debug("inbox_%s_loaded elapsed_ms=%s items=%s", operation, elapsed_ms, len(summaries))

        result = InboxListResult(
            conversations=summaries,
            offset=offset,
            limit=limit,
            has_more=has_more,
            next_offset=offset + limit if has_more else None,
        )
        return result, degraded

    def list_conversations(
        self,
        db: Session,
        limit: int | None = None,
        offset: int = 0,
        filters: ConversationFilters | dict[str, Any] | None = None,
    ) -> InboxListResult:
        safe_offset = _validate_offset(offset)
        requested = _validate_limit(limit)
        parsed = ConversationFilters.from_raw(filters)
        filtered = not parsed.is_empty()
        safe_limit = self._page_limit(requested, filtered)

        cache_key = None
        if not filtered and self.cache is not None:
            cache_key = inbox_cache.build_inbox_list_key({"offset": safe_offset, "limit": safe_limit})
            cached = self.cache.get(cache_key)
            if cached is not None:
                LIST_CACHE_LOOKUPS.labels(result="hit").inc()
                return cached
            LIST_CACHE_LOOKUPS.labels(result="miss").inc()
        else:
            LIST_CACHE_LOOKUPS.labels(result="bypass").inc()

        predicate = compile_conversation_filters(parsed, now=self.clock())
        result, degraded = self._assemble(db, predicate, limit=safe_limit, offset=safe_offset, operation="list")
        if cache_key is not None and not degraded:
            self.cache.set(cache_key, result)
        return result

    def search_conversations(
        self,
        db: Session,
        term: str | None,
        limit: int | None = None,
        offset: int = 0,
        filters: ConversationFilters | dict[str, Any] | None = None,
    ) -> InboxListResult:
        """Free-text search over contact name, phone and email.

        Searches are never cached and default to a larger page than the list.
        """
        safe_offset = _validate_offset(offset)
        safe_limit = self._search_limit(_validate_limit(limit))
        if normalize_search(term) is None:
            raise InboxValidationError("missing_search_term", "A search term is required")
        predicate = compile_search_predicate(term)
        parsed = ConversationFilters.from_raw(filters)
        if not parsed.is_empty():
            predicate = and_(predicate, compile_conversation_filters(parsed, now=self.clock()))
        result, _ = self._assemble(db, predicate, limit=safe_limit, offset=safe_offset, operation="search")
        return result

    def get_conversation_summary(self, db: Session, conversation_id: int) -> ConversationSummary:
        row = db.execute(self._base_query().where(Conversation.id == conversation_id)).first()
        if row is None:
            raise InboxNotFoundError("conversation_not_found", "Conversation not found")
        summaries, _ = self._summaries(db, [row])
        return summaries[0]

    def invalidate(self) -> None:
        inbox_cache.invalidate_inbox_list(self.cache)
