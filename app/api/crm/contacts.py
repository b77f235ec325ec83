from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_list_cache
from app.schemas.crm.contact import (
    DuplicateCheckResponse,
    DuplicateContactRead,
    DuplicateGroupRead,
)
from app.services.crm import contacts as contact_service
from app.services.crm.inbox import cache as inbox_cache
from app.services.crm.inbox.errors import InboxError, as_http_exception

router = APIRouter(prefix="/crm/contacts", tags=["crm-contacts"])


@router.get("/duplicates/check", response_model=DuplicateCheckResponse)
def check_duplicates(
    phone: str = Query(min_length=1),
    exclude_contact_id: int | None = None,
    db: Session = Depends(get_db),
):
    result = contact_service.check_phone_duplicates(db, phone, exclude_contact_id=exclude_contact_id)
    return DuplicateCheckResponse(
        phone=contact_service.normalize_phone(phone),
        is_duplicate=result.is_duplicate,
        total_duplicates=result.total_duplicates,
        channels=result.channels,
        duplicates=[DuplicateContactRead.model_validate(item) for item in result.duplicates],
    )


@router.get("/duplicates", response_model=list[DuplicateGroupRead])
def list_duplicate_groups(db: Session = Depends(get_db)):
    groups = contact_service.find_duplicate_groups(db)
    return [
        DuplicateGroupRead(
            normalized_phone=key,
            contacts=[DuplicateContactRead.model_validate(item) for item in members],
        )
        for key, members in groups.items()
    ]


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_contact(contact_id: int, db: Session = Depends(get_db), cache=Depends(get_list_cache)):
    try:
        contact_service.contacts.delete(db, contact_id)
    except InboxError as exc:
        raise as_http_exception(exc) from exc
    inbox_cache.invalidate_inbox_list(cache)
