import enum


class ChannelType(enum.Enum):
    whatsapp = "whatsapp"
    facebook_messenger = "facebook_messenger"
    instagram_direct = "instagram_direct"
    manychat = "manychat"
    email = "email"


class ConversationStatus(enum.Enum):
    open = "open"
    pending = "pending"
    closed = "closed"
    resolved = "resolved"


class ConversationPriority(enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


class AssignmentMethod(enum.Enum):
    manual = "manual"
    automatic = "automatic"


class MessageType(enum.Enum):
    text = "text"
    image = "image"
    audio = "audio"
    video = "video"
    document = "document"
    reminder = "reminder"


class NotePriority(enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


class TeamType(enum.Enum):
    """Coarse routing category (macrosetor) used for automatic team assignment."""

    comercial = "comercial"
    suporte = "suporte"
    cobranca = "cobranca"
    secretaria = "secretaria"
    geral = "geral"


MEDIA_MESSAGE_TYPES = frozenset(
    {MessageType.image, MessageType.audio, MessageType.video, MessageType.document}
)
