from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.crm.contact import Contact
from app.models.crm.conversation import Conversation
from app.models.crm.enums import ChannelType
from app.models.crm.sales import Deal
from app.services.common import as_utc
from app.services.crm.inbox.errors import InboxConflictError, InboxNotFoundError

logger = get_logger(__name__)

DUPLICATE_LOOKUP_LIMIT = 50


def normalize_phone(phone: str | None) -> str:
    """Digits only, with the Brazilian country code dropped from full mobile numbers."""
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    if digits.startswith("55") and len(digits) == 13:
        digits = digits[2:]
    return digits


def phone_variations(phone: str | None) -> list[str]:
    """Spellings of the same Brazilian number: with/without ``55`` and the mobile 9th digit."""
    digits = re.sub(r"\D", "", phone or "")
    variations: list[str] = []
    if len(digits) == 11:
        variations.append(f"55{digits}")
        if digits[2] == "9":
            without_nine = digits[:2] + digits[3:]
            variations.extend([without_nine, f"55{without_nine}"])
    elif len(digits) == 10:
        with_nine = digits[:2] + "9" + digits[2:]
        variations.extend([with_nine, f"55{with_nine}"])
    return variations


@dataclass(frozen=True)
class DuplicateContactInfo:
    contact_id: int
    name: str
    phone: str | None
    origin_channel: str | None
    origin_channel_name: str | None
    conversation_count: int
    last_activity: datetime | None


@dataclass(frozen=True)
class ContactDuplicationResult:
    duplicates: list[DuplicateContactInfo] = field(default_factory=list)
    channels: list[str] = field(default_factory=list)

    @property
    def is_duplicate(self) -> bool:
        return bool(self.duplicates)

    @property
    def total_duplicates(self) -> int:
        return len(self.duplicates)


def _duplicate_stats_query():
    return (
        select(
            Contact.id,
            Contact.name,
            Contact.phone,
            Contact.origin_channel,
            Contact.origin_channel_name,
            Contact.created_at,
            func.count(Conversation.id).label("conversation_count"),
            func.max(Conversation.last_message_at).label("last_message_at"),
        )
        .outerjoin(Conversation, Conversation.contact_id == Contact.id)
        .group_by(
            Contact.id,
            Contact.name,
            Contact.phone,
            Contact.origin_channel,
            Contact.origin_channel_name,
            Contact.created_at,
        )
    )


def _info(row) -> DuplicateContactInfo:
    return DuplicateContactInfo(
        contact_id=row.id,
        name=row.name,
        phone=row.phone,
        origin_channel=row.origin_channel,
        origin_channel_name=row.origin_channel_name,
        conversation_count=row.conversation_count or 0,
        last_activity=as_utc(row.last_message_at or row.created_at),
    )


def check_phone_duplicates(
    db: Session,
    phone: str | None,
    exclude_contact_id: int | None = None,
) -> ContactDuplicationResult:
    """Advisory lookup of contacts sharing a phone number.

    Never raises for store errors and never blocks contact creation; on
    failure the result is simply empty.
    """
    if not phone or not phone.strip():
        return ContactDuplicationResult()
    normalized = normalize_phone(phone)
    candidates = {phone, normalized, *phone_variations(normalized)} - {""}
    stmt = _duplicate_stats_query().where(Contact.phone.in_(sorted(candidates)))
    if exclude_contact_id is not None:
        stmt = stmt.where(Contact.id != exclude_contact_id)
    try:
        rows = db.execute(stmt.limit(DUPLICATE_LOOKUP_LIMIT)).all()
    except SQLAlchemyError as exc:
        logger.warning("contact_duplicate_check_failed error=%s", exc)
        return ContactDuplicationResult()

    duplicates = [_info(row) for row in rows]
    channels: list[str] = []
    for row in rows:
        for value in (row.origin_channel, row.origin_channel_name):
            if value and value not in channels:
                channels.append(value)
    if duplicates:
        logger.info("contact_duplicates_found phone=%s count=%s", normalized, len(duplicates))
    return ContactDuplicationResult(duplicates=duplicates, channels=channels)


def find_duplicate_groups(db: Session) -> dict[str, list[DuplicateContactInfo]]:
    """Group every contact by normalized phone, keeping groups of two or more."""
    rows = db.execute(
        _duplicate_stats_query().where(Contact.phone.is_not(None), Contact.phone != "").order_by(Contact.id)
    ).all()
    groups: dict[str, list[DuplicateContactInfo]] = {}
    for row in rows:
        key = normalize_phone(row.phone)
        if key:
            groups.setdefault(key, []).append(_info(row))
    return {key: members for key, members in groups.items() if len(members) > 1}


class Contacts:
    @staticmethod
    def get(db: Session, contact_id: int) -> Contact:
        contact = db.get(Contact, contact_id)
        if not contact:
            raise InboxNotFoundError("contact_not_found", "Contact not found")
        return contact

    @staticmethod
    def find_by_identity(db: Session, platform: ChannelType, sender_id: str) -> Contact | None:
        return db.scalars(
            select(Contact)
            .where(Contact.user_identity == sender_id, Contact.origin_channel == platform.value)
            .order_by(Contact.id)
            .limit(1)
        ).first()

    @staticmethod
    def find_by_phone(db: Session, platform: ChannelType, phone: str) -> Contact | None:
        normalized = normalize_phone(phone)
        candidates = sorted({phone, normalized, *phone_variations(normalized)} - {""})
        return db.scalars(
            select(Contact)
            .where(Contact.phone.in_(candidates))
            .where(or_(Contact.origin_channel == platform.value, Contact.origin_channel.is_(None)))
            .order_by(Contact.id)
            .limit(1)
        ).first()

    @staticmethod
    def find_or_create(
        db: Session,
        *,
        platform: ChannelType,
        sender_id: str,
        name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        profile_image_url: str | None = None,
        origin_channel_name: str | None = None,
        origin_channel_id: str | None = None,
    ) -> tuple[Contact, bool]:
        """Return ``(contact, created)`` for an inbound identity.

        Lookup is by provider identity on the same channel, then by phone
        variants for phone-addressed channels.
        """
        contact = Contacts.find_by_identity(db, platform, sender_id)
        if contact is None and phone and platform in (ChannelType.whatsapp, ChannelType.manychat):
            contact = Contacts.find_by_phone(db, platform, phone)
        if contact is not None:
            changed = False
            if profile_image_url and contact.profile_image_url != profile_image_url:
                contact.profile_image_url = profile_image_url
                changed = True
            if not contact.user_identity:
                contact.user_identity = sender_id
                changed = True
            if changed:
                db.flush()
            return contact, False

        contact = Contact(
            name=(name or "").strip() or phone or sender_id,
            phone=phone,
            email=email,
            user_identity=sender_id,
            profile_image_url=profile_image_url,
            origin_channel=platform.value,
            origin_channel_name=origin_channel_name,
            origin_channel_id=origin_channel_id,
            tags=[],
        )
        db.add(contact)
        db.flush()
        logger.info("contact_created contact_id=%s channel=%s", contact.id, platform.value)
        return contact, True

    @staticmethod
    def delete(db: Session, contact_id: int) -> None:
        """Hard delete, refused while any conversation or deal references the contact."""
        contact = Contacts.get(db, contact_id)
        conversations = db.scalar(select(func.count(Conversation.id)).where(Conversation.contact_id == contact.id))
        deals = db.scalar(select(func.count(Deal.id)).where(Deal.contact_id == contact.id))
        if conversations or deals:
            raise InboxConflictError(
                "contact_in_use",
                f"Contact has {conversations or 0} conversation(s) and {deals or 0} deal(s)",
            )
        db.delete(contact)
        db.commit()


contacts = Contacts()
