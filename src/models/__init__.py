from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

from .enums import (
    ConversationContext,
    ConversationPriority,
    ConversationStatus,
    MessageKind,
    MimeClass,
    ParticipantRole,
)
from .profile import Profile
from .conversation import Conversation
from .message import Attachment, Message
