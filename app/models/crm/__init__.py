from app.models.crm.contact import Contact
from app.models.crm.conversation import Conversation, Message
from app.models.crm.enums import (
    AssignmentMethod,
    ChannelType,
    ConversationPriority,
    ConversationStatus,
    MessageType,
    NotePriority,
    TeamType,
)
from app.models.crm.sales import Deal
from app.models.crm.team import Channel, SystemUser, Team

__all__ = [
    "AssignmentMethod",
    "Channel",
    "ChannelType",
    "Contact",
    "Conversation",
    "ConversationPriority",
    "ConversationStatus",
    "Deal",
    "Message",
    "MessageType",
    "NotePriority",
    "SystemUser",
    "Team",
    "TeamType",
]
