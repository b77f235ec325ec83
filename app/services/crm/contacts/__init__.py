"""CRM Contacts submodule.

Contact resolution for inbound identities, advisory duplicate detection and
the delete guard.
"""

from app.services.crm.contacts.service import (
    ContactDuplicationResult,
    Contacts,
    DuplicateContactInfo,
    check_phone_duplicates,
    contacts,
    find_duplicate_groups,
    normalize_phone,
    phone_variations,
)

__all__ = [
    "ContactDuplicationResult",
    "Contacts",
    "DuplicateContactInfo",
    "check_phone_duplicates",
    "contacts",
    "find_duplicate_groups",
    "normalize_phone",
    "phone_variations",
]
