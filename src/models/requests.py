"""
Request structs for the messaging operations.

Each struct validates itself on construction, so a request that exists is a
request that passed validation. from_payload() builds one from a json body
using the same field spec lists the routes use.
"""

from dataclasses import dataclass
from typing import Optional

from config import DEFAULT_PAGE_SIZE, MAX_MESSAGE_LENGTH, MAX_PAGE_SIZE
from models.enums import (
    ConversationContext,
    ConversationPriority,
    ConversationStatus,
    MessageKind,
    MimeClass,
    ParticipantRole,
)
from models.message import Attachment
from utils.errors import EmptyPayload, ValidationError
from utils.util import validate_payload

DATE_RANGES = ["today", "week", "month", "quarter", "year"]

ATTACHMENT_FIELDS = [
    {"field": "remote_ref", "type": str, "required": True},
    {"field": "display_name", "type": str, "required": True},
    {"field": "size", "type": int, "required": True},
    {
        "field": "mime_class",
        "type": str,
        "required": True,
        "choices": [m.value for m in MimeClass],
    },
]

SEND_MESSAGE_FIELDS = [
    {"field": "recipient_id", "type": str, "required": True},
    {"field": "content", "type": str, "required": False},
    {"field": "attachment", "type": dict, "required": False},
]

DIRECT_MESSAGE_FIELDS = SEND_MESSAGE_FIELDS + [
    {
        "field": "context",
        "type": str,
        "required": False,
        "choices": [c.value for c in ConversationContext],
    },
    {"field": "subject", "type": str, "required": False},
]

EDIT_MESSAGE_FIELDS = [
    {"field": "content", "type": str, "required": True},
]

BULK_MESSAGE_FIELDS = [
    {"field": "target_ids", "type": list[str], "required": True},
    {"field": "content", "type": str, "required": True},
    {"field": "subject", "type": str, "required": False},
]


def _clean_content(content: Optional[str]) -> Optional[str]:
    if content is None:
        return None
    content = content.strip()
    if not content:
        return None
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"message content exceeds {MAX_MESSAGE_LENGTH} characters"
        )
    return content


def attachment_from_payload(data: Optional[dict]) -> Optional[Attachment]:
    if data is None:
        return None
    validate_payload(data, ATTACHMENT_FIELDS)
    if data["size"] <= 0:
        raise EmptyPayload("attachment size must be greater than zero")
    return Attachment(
        remote_ref=data["remote_ref"],
        display_name=data["display_name"],
        size=data["size"],
        mime_class=data["mime_class"],
    )


@dataclass
class SendMessageRequest:
    conversation_id: str
    sender_id: str
    recipient_id: str
    content: Optional[str] = None
    attachment: Optional[Attachment] = None
    kind: MessageKind = MessageKind.TEXT

    def __post_init__(self):
        if not self.conversation_id:
            raise ValidationError("conversation_id is required")
        if not self.sender_id or not self.recipient_id:
            raise ValidationError("sender_id and recipient_id are required")
        if self.sender_id == self.recipient_id:
            raise ValidationError("sender and recipient must be different users")
        self.content = _clean_content(self.content)
        if self.content is None and self.attachment is None:
            raise EmptyPayload("a message needs content or an attachment")
        self.kind = MessageKind(self.kind)

    @classmethod
    def from_payload(cls, data: dict, conversation_id: str, sender_id: str):
        validate_payload(data, SEND_MESSAGE_FIELDS, ["content", "attachment"])
        return cls(
            conversation_id=conversation_id,
            sender_id=sender_id,
            recipient_id=data["recipient_id"],
            content=data.get("content"),
            attachment=attachment_from_payload(data.get("attachment")),
        )


@dataclass
class DirectMessageRequest:
    """Send to a counterpart, creating the conversation on first message."""

    sender_id: str
    recipient_id: str
    content: Optional[str] = None
    attachment: Optional[Attachment] = None
    context: ConversationContext = ConversationContext.APPLICATION
    subject: Optional[str] = None

    def __post_init__(self):
        if not self.sender_id or not self.recipient_id:
            raise ValidationError("sender_id and recipient_id are required")
        if self.sender_id == self.recipient_id:
            raise ValidationError("sender and recipient must be different users")
        self.content = _clean_content(self.content)
        if self.content is None and self.attachment is None:
            raise EmptyPayload("a message needs content or an attachment")
        self.context = ConversationContext(self.context)

    @classmethod
    def from_payload(cls, data: dict, sender_id: str):
        validate_payload(data, DIRECT_MESSAGE_FIELDS, ["content", "attachment"])
        return cls(
            sender_id=sender_id,
            recipient_id=data["recipient_id"],
            content=data.get("content"),
            attachment=attachment_from_payload(data.get("attachment")),
            context=data.get("context") or ConversationContext.APPLICATION,
            subject=data.get("subject"),
        )


@dataclass
class EditMessageRequest:
    message_id: int
    editor_id: str
    content: str

    def __post_init__(self):
        self.content = _clean_content(self.content)
        if self.content is None:
            raise EmptyPayload("edited content must not be empty")

    @classmethod
    def from_payload(cls, data: dict, message_id: int, editor_id: str):
        validate_payload(data, EDIT_MESSAGE_FIELDS)
        return cls(message_id=message_id, editor_id=editor_id, content=data["content"])


@dataclass
class BulkMessageRequest:
    target_ids: list[str]
    content: str
    subject: Optional[str] = None

    def __post_init__(self):
        # collapse duplicates, keep the caller's order
        self.target_ids = list(dict.fromkeys(t for t in self.target_ids if t))
        if not self.target_ids:
            raise ValidationError("at least one target user is required")
        self.content = _clean_content(self.content)
        if self.content is None:
            raise EmptyPayload("bulk message content must not be empty")

    @classmethod
    def from_payload(cls, data: dict):
        validate_payload(data, BULK_MESSAGE_FIELDS)
        return cls(
            target_ids=data["target_ids"],
            content=data["content"],
            subject=data.get("subject"),
        )


@dataclass
class ConversationFilters:
    role: Optional[ParticipantRole] = None
    status: Optional[ConversationStatus] = None
    priority: Optional[ConversationPriority] = None
    unread_only: bool = False
    query: Optional[str] = None
    date_range: Optional[str] = None
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self):
        try:
            self.role = ParticipantRole(self.role) if self.role else None
            self.status = ConversationStatus(self.status) if self.status else None
            self.priority = (
                ConversationPriority(self.priority) if self.priority else None
            )
        except ValueError as e:
            raise ValidationError(str(e))
        if self.date_range is not None and self.date_range not in DATE_RANGES:
            raise ValidationError(
                f"date_range must be one of: {', '.join(DATE_RANGES)}"
            )
        if self.page < 1:
            raise ValidationError("page must be at least 1")
        if self.page_size < 1 or self.page_size > MAX_PAGE_SIZE:
            raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        self.query = self.query.strip() if self.query and self.query.strip() else None

    @classmethod
    def from_args(cls, args) -> "ConversationFilters":
        """Builds filters from query string args, treating 'all' as no filter"""

        def choice(name):
            value = args.get(name)
            if value is None or value == "" or value == "all":
                return None
            return value

        def number(name, default):
            value = args.get(name)
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError:
                raise ValidationError(f"'{name}' must be an integer")

        return cls(
            role=choice("role"),
            status=choice("status"),
            priority=choice("priority"),
            unread_only=str(args.get("unread", "")).lower() in ("1", "true", "yes"),
            query=args.get("q"),
            date_range=choice("date_range"),
            page=number("page", 1),
            page_size=number("page_size", DEFAULT_PAGE_SIZE),
        )
