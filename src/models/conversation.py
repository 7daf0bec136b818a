from . import db
from datetime import datetime, timezone
import uuid

from models.enums import ConversationPriority, ConversationStatus
from utils.util import to_iso


class Conversation(db.Model):
    __tablename__ = "conversations"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # participant a does not own the conversation, participant b does
    participant_a_id = db.Column(db.String(36), nullable=False, index=True)
    participant_b_id = db.Column(db.String(36), nullable=False, index=True)
    context = db.Column(db.String(20), nullable=False)

    subject = db.Column(db.String(255), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default=ConversationStatus.ACTIVE.value
    )
    priority = db.Column(
        db.String(10), nullable=False, default=ConversationPriority.MEDIUM.value
    )
    tags = db.Column(db.JSON, nullable=False, default=list)
    admin_notes = db.Column(db.Text, nullable=True)

    last_message_text = db.Column(db.Text, nullable=True)
    last_message_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    messages = db.relationship(
        "Message",
        back_populates="conversation",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="[Message.created_at, Message.id]",
    )

    __table_args__ = (
        db.UniqueConstraint(
            "participant_a_id",
            "participant_b_id",
            "context",
            name="uq_conversation_participants_context",
        ),
    )

    @property
    def participants(self) -> list[str]:
        return [self.participant_a_id, self.participant_b_id]

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_a_id, self.participant_b_id)

    def counterpart_of(self, user_id: str) -> str:
        if user_id == self.participant_a_id:
            return self.participant_b_id
        return self.participant_a_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "participants": self.participants,
            "context": self.context,
            "subject": self.subject,
            "status": self.status,
            "priority": self.priority,
            "tags": list(self.tags or []),
            "admin_notes": self.admin_notes,
            "last_message_text": self.last_message_text,
            "last_message_at": to_iso(self.last_message_at),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }
