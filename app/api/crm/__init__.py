from fastapi import APIRouter

from app.api.crm.contacts import router as contacts_router
from app.api.crm.inbox import router as inbox_router
from app.api.crm.messages import router as messages_router

router = APIRouter(tags=["crm"])
router.include_router(contacts_router)
router.include_router(inbox_router)
router.include_router(messages_router)

__all__ = ["router"]
