from app.models.crm import (  # noqa: F401
    Channel,
    Contact,
    Conversation,
    Deal,
    Message,
    SystemUser,
    Team,
)
