from . import db
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from utils.util import to_iso


@dataclass(frozen=True)
class Attachment:
    """Attachment embedded in a message row. remote_ref is a stable storage reference."""

    remote_ref: str
    display_name: str
    size: int
    mime_class: str

    def to_dict(self) -> dict:
        return {
            "remote_ref": self.remote_ref,
            "display_name": self.display_name,
            "size": self.size,
            "mime_class": self.mime_class,
        }


class Message(db.Model):
    __tablename__ = "messages"

    # store-assigned and monotonic, breaks created_at ties
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    conversation_id = db.Column(
        db.String(36),
        db.ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sender_id = db.Column(db.String(36), nullable=False)
    recipient_id = db.Column(db.String(36), nullable=False, index=True)

    kind = db.Column(db.String(10), nullable=False, default="text")
    content = db.Column(db.Text, nullable=True)

    attachment_ref = db.Column(db.String(500), nullable=True)
    attachment_name = db.Column(db.String(255), nullable=True)
    attachment_size = db.Column(db.Integer, nullable=True)
    attachment_mime_class = db.Column(db.String(10), nullable=True)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    edited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    conversation = db.relationship("Conversation", back_populates="messages")

    __table_args__ = (
        db.Index("ix_messages_recipient_unread", "recipient_id", "is_read"),
        db.CheckConstraint(
            "(NOT is_read AND read_at IS NULL) OR (is_read AND read_at IS NOT NULL)",
            name="ck_messages_read_at_matches_flag",
        ),
    )

    @property
    def attachment(self) -> Optional[Attachment]:
        if self.attachment_ref is None:
            return None
        return Attachment(
            remote_ref=self.attachment_ref,
            display_name=self.attachment_name,
            size=self.attachment_size,
            mime_class=self.attachment_mime_class,
        )

    @attachment.setter
    def attachment(self, value: Optional[Attachment]) -> None:
        self.attachment_ref = value.remote_ref if value else None
        self.attachment_name = value.display_name if value else None
        self.attachment_size = value.size if value else None
        self.attachment_mime_class = value.mime_class if value else None

    @property
    def preview_text(self) -> str:
        if self.content:
            return self.content
        if self.attachment_name:
            return self.attachment_name
        return ""

    def to_dict(self) -> dict:
        attachment = self.attachment
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "kind": self.kind,
            "content": self.content,
            "attachment": attachment.to_dict() if attachment else None,
            "is_read": self.is_read,
            "created_at": to_iso(self.created_at),
            "edited_at": to_iso(self.edited_at),
            "delivered_at": to_iso(self.delivered_at),
            "read_at": to_iso(self.read_at),
        }
