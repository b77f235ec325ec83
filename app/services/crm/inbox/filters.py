"""Conversation filter compiler.

Turns a request-level filter object into one conjunctive SQLAlchemy predicate
against ``Conversation``. Unknown or malformed values are dropped rather than
rejected; compiling nothing yields a match-everything predicate.

Period semantics, evaluated against server wall-clock at call time:

- ``today``: local calendar day start until now
- ``yesterday``: the previous local calendar day, ``[start, today_start)``
- ``week`` / ``month``: rolling 7 / 30 day windows ending now
- ``all`` or absent: no time bound
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import and_, or_, true
from sqlalchemy.sql.elements import ColumnElement

from app.logging import get_logger
from app.models.crm.contact import Contact
from app.models.crm.conversation import Conversation
from app.models.crm.enums import ChannelType, ConversationStatus
from app.schemas.crm.conversation import ConversationFilters

logger = get_logger(__name__)

ROLLING_WINDOWS = {"week": 7, "month": 30}


def local_now() -> datetime:
    return datetime.now().astimezone()


def period_bounds(period: str | None, now: datetime | None = None) -> tuple[datetime | None, datetime | None]:
    """Return ``(start, end)`` in UTC for a period; ``end`` is exclusive."""
    if not period or period == "all":
        return None, None
    current = now or local_now()
    if current.tzinfo is None:
        current = current.astimezone()
    day_start = current.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        start, end = day_start, None
    elif period == "yesterday":
        start, end = day_start - timedelta(days=1), day_start
    elif period in ROLLING_WINDOWS:
        start, end = current - timedelta(days=ROLLING_WINDOWS[period]), None
    else:
        return None, None
    return start.astimezone(UTC), end.astimezone(UTC) if end else None


def _status_enum(value: str | None) -> ConversationStatus | None:
    if not value:
        return None
    try:
        return ConversationStatus(value.strip().lower())
    except ValueError:
        return None


def _channel_enum(value: str | None) -> ChannelType | None:
    if not value:
        return None
    try:
        return ChannelType(value.strip().lower().replace("-", "_"))
    except ValueError:
        return None


def compile_conversation_filters(
    filters: ConversationFilters | dict[str, Any] | None,
    now: datetime | None = None,
) -> ColumnElement[bool]:
    parsed = ConversationFilters.from_raw(filters)
    clauses: list[ColumnElement[bool]] = []

    start, end = period_bounds(parsed.period, now)
    if start is not None:
        clauses.append(Conversation.last_message_at >= start)
    if end is not None:
        clauses.append(Conversation.last_message_at < end)

    if parsed.team is not None:
        clauses.append(Conversation.assigned_team_id == parsed.team)

    status = _status_enum(parsed.status)
    if status is not None:
        clauses.append(Conversation.status == status)
    elif parsed.status:
        logger.debug("inbox_filter_ignored field=status value=%s", parsed.status)

    if parsed.agent is not None:
        clauses.append(Conversation.assigned_user_id == parsed.agent)

    channel = _channel_enum(parsed.channel)
    if channel is not None:
        clauses.append(Conversation.channel == channel)
    elif parsed.channel:
        logger.debug("inbox_filter_ignored field=channel value=%s", parsed.channel)

    if not clauses:
        return true()
    return and_(*clauses)


def normalize_search(value: str | None) -> str | None:
    if not value:
        return None
    text = " ".join(value.strip().split())
    if not text:
        return None
    return text.lower()


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def compile_search_predicate(term: str | None) -> ColumnElement[bool]:
    """Case-insensitive substring match on contact name, phone or email."""
    normalized = normalize_search(term)
    if not normalized:
        return true()
    pattern = f"%{_escape_like(normalized)}%"
    return or_(
        Contact.name.ilike(pattern, escape="\\"),
        Contact.phone.ilike(pattern, escape="\\"),
        Contact.email.ilike(pattern, escape="\\"),
    )
