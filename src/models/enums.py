from enum import Enum


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


class ConversationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConversationContext(str, Enum):
    APPLICATION = "application"  # talent <-> company
    ADMIN = "admin"  # started by an administrator


class MessageKind(str, Enum):
    TEXT = "text"
    SYSTEM = "system"
    BULK = "bulk"


class MimeClass(str, Enum):
    IMAGE = "image"
    FILE = "file"


class ParticipantRole(str, Enum):
    TALENT = "talent"
    COMPANY = "company"
    ADMIN = "admin"
