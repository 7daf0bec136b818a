"""
Admin oversight layer.

Listing with filters, moderation metadata, single and bulk outbound
messaging and conversation deletion, built on the resolver, message
service and attachment pipeline. Every operation checks that the actor's
profile has the admin role.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
import logging
import math

from dateutil.relativedelta import relativedelta

from models import db
from models.conversation import Conversation
from models.enums import ConversationContext, ConversationPriority, ConversationStatus, MessageKind
from models.message import Attachment, Message
from models.profile import Profile
from models.requests import (
    BulkMessageRequest,
    ConversationFilters,
    DirectMessageRequest,
    SendMessageRequest,
)
from services.attachments import AttachmentPipeline
from services.conversations import ConversationResolver
from services.messages import MessageService
from services.notifications import (
    CONVERSATION_STATUS_CHANGED,
    NotificationDispatcher,
    NotificationEvent,
    notify,
)
from utils import db_util
from utils.errors import (
    ConfirmationRequired,
    Forbidden,
    MessagingError,
    NotFound,
    ValidationError,
)
from utils.util import render_message_template, utc_now

logger = logging.getLogger("marketplace_messaging")

DEFAULT_ADMIN_SUBJECT = "Message from the administrator"
MAX_TAGS = 20
MAX_TAG_LENGTH = 40


@dataclass
class ConversationPage:
    items: list[dict]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0

    def to_dict(self) -> dict:
        return {
            "items": self.items,
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


@dataclass
class BulkFailure:
    target_id: str
    reason: str


@dataclass
class BulkSendResult:
    """Outcome of a bulk send. Partial failure is an expected result, not an error."""

    success_count: int = 0
    failure_count: int = 0
    failures: list[BulkFailure] = field(default_factory=list)
    conversation_ids: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    @property
    def all_failed(self) -> bool:
        return self.total > 0 and self.success_count == 0

    def to_dict(self) -> dict:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "failures": [
                {"target_id": f.target_id, "reason": f.reason} for f in self.failures
            ],
            "conversation_ids": dict(self.conversation_ids),
        }


def template_variables(profile: Profile) -> dict:
    return {
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "full_name": profile.full_name or "",
        "company_name": profile.company_name or "",
    }


def range_start(date_range: str, now: datetime) -> datetime:
    """
    Start of a named date range relative to now

    Args:
        date_range: today, week, month, quarter or year
        now: current time

    Returns:
        the earliest creation time included in the range
    """
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if date_range == "today":
        return midnight
    if date_range == "week":
        return now - relativedelta(days=7)
    if date_range == "month":
        return midnight.replace(day=1)
    if date_range == "quarter":
        return midnight.replace(day=1) - relativedelta(months=3)
    if date_range == "year":
        return midnight.replace(month=1, day=1)
    raise ValidationError(f"unknown date range: {date_range}")


class AdminService:
    def __init__(
        self,
        resolver: ConversationResolver,
        messages: MessageService,
        attachments: AttachmentPipeline,
        notifier: NotificationDispatcher,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.resolver = resolver
        self.messages = messages
        self.attachments = attachments
        self.notifier = notifier
        self.clock = clock

    def require_admin(self, actor_id: str) -> Profile:
        profile = db_util.get_profile(actor_id) if actor_id else None
        if profile is None or not profile.is_admin:
            raise Forbidden(f"user {actor_id} is not an administrator")
        return profile

    def _require_profile(self, user_id: str) -> Profile:
        profile = db_util.get_profile(user_id)
        if profile is None:
            raise NotFound(f"user not found: {user_id}")
        return profile

    # listing

    def list_conversations(self, actor_id: str, filters: ConversationFilters) -> ConversationPage:
        """
        Lists conversations for the admin table, most recent activity first

        Args:
            actor_id: acting admin, unread counts are reported for them
            filters: role, status, priority, unread, text query, date range and page

        Returns:
            a ConversationPage
        """
        self.require_admin(actor_id)

        created_after = (
            range_start(filters.date_range, self.clock()) if filters.date_range else None
        )
        rows, total = db_util.query_conversations(
            actor_id,
            role=filters.role.value if filters.role else None,
            status=filters.status.value if filters.status else None,
            priority=filters.priority.value if filters.priority else None,
            unread_only=filters.unread_only,
            search=filters.query,
            created_after=created_after,
            limit=filters.page_size,
            offset=(filters.page - 1) * filters.page_size,
        )

        items = []
        for conversation, profile, unread_count in rows:
            item = conversation.to_dict()
            item["participant"] = profile.to_dict() if profile else None
            item["unread_count"] = unread_count
            items.append(item)

        return ConversationPage(
            items=items, total=total, page=filters.page, page_size=filters.page_size
        )

    def conversation_stats(self, actor_id: str) -> dict:
        self.require_admin(actor_id)
        by_status = db_util.count_conversations_by_status()
        stats = {status.value: by_status.get(status.value, 0) for status in ConversationStatus}
        stats["total"] = sum(by_status.values())
        stats["unread"] = self.messages.total_unread(actor_id)
        return stats

    def get_conversation_detail(self, actor_id: str, conversation_id: str) -> tuple[Conversation, dict[str, Profile], list[Message]]:
        """
        Returns:
            tuple of (conversation, participant profiles by user id, ordered messages)
        """
        self.require_admin(actor_id)
        conversation = self.resolver.get_conversation(conversation_id)
        profiles = db_util.get_profiles(conversation.participants)
        messages = self.messages.list_messages(conversation_id, actor_id)
        return conversation, profiles, messages

    # messaging

    def start_conversation(self, actor_id: str, user_id: str, subject: Optional[str] = None) -> Conversation:
        self.require_admin(actor_id)
        self._require_profile(user_id)
        if user_id == actor_id:
            raise ValidationError("cannot start a conversation with yourself")
        conversation_id = self.resolver.ensure_conversation(
            actor_id, user_id, ConversationContext.ADMIN, subject or DEFAULT_ADMIN_SUBJECT
        )
        return self.resolver.get_conversation(conversation_id)

    def send_message(
        self,
        actor_id: str,
        conversation_id: str,
        content: Optional[str],
        attachment: Optional[Attachment] = None,
    ) -> Message:
        self.require_admin(actor_id)
        conversation = self.resolver.get_for_participant(conversation_id, actor_id)
        return self.messages.send(
            SendMessageRequest(
                conversation_id=conversation.id,
                sender_id=actor_id,
                recipient_id=conversation.counterpart_of(actor_id),
                content=content,
                attachment=attachment,
            )
        )

    def bulk_send(self, actor_id: str, request: BulkMessageRequest) -> BulkSendResult:
        """
        Sends one message body to many users. Each target is resolved, sent
        and touched on its own; a failing target is recorded and the rest
        carry on.

        Args:
            actor_id: acting admin
            request: targets and message body ({{first_name}} style variables allowed)

        Returns:
            BulkSendResult with success and failure counts summing to the target count
        """
        self.require_admin(actor_id)
        result = BulkSendResult()
        subject = request.subject or DEFAULT_ADMIN_SUBJECT

        logger.info(f"bulk send by {actor_id} to {len(request.target_ids)} targets")

        for target_id in request.target_ids:
            try:
                profile = self._require_profile(target_id)
                # validate the rendered message before any conversation is written
                outgoing = DirectMessageRequest(
                    sender_id=actor_id,
                    recipient_id=target_id,
                    content=render_message_template(request.content, template_variables(profile)),
                    context=ConversationContext.ADMIN,
                    subject=subject,
                )
                conversation_id = self.resolver.ensure_conversation(
                    actor_id, target_id, outgoing.context, outgoing.subject
                )
                self.messages.send(
                    SendMessageRequest(
                        conversation_id=conversation_id,
                        sender_id=actor_id,
                        recipient_id=target_id,
                        content=outgoing.content,
                        kind=MessageKind.BULK,
                    )
                )
                result.success_count += 1
                result.conversation_ids[target_id] = conversation_id
            except MessagingError as e:
                db.session.rollback()
                logger.error(f"bulk send to {target_id} failed: {e}")
                result.failure_count += 1
                result.failures.append(BulkFailure(target_id=target_id, reason=str(e)))

        logger.info(
            f"bulk send finished: {result.success_count} sent, {result.failure_count} failed"
        )
        return result

    # moderation metadata

    def _update(self, actor_id: str, conversation_id: str, **fields) -> Conversation:
        self.require_admin(actor_id)
        fields["updated_at"] = self.clock()
        conversation = db_util.update_conversation(conversation_id, **fields)
        if conversation is None:
            raise NotFound(f"conversation not found: {conversation_id}")
        return conversation

    def set_status(self, actor_id: str, conversation_id: str, status: str) -> Conversation:
        try:
            status = ConversationStatus(status)
        except ValueError:
            raise ValidationError(
                f"status must be one of: {', '.join(s.value for s in ConversationStatus)}"
            )
        conversation = self._update(actor_id, conversation_id, status=status.value)
        logger.info(f"conversation {conversation_id} status set to {status.value} by {actor_id}")
        notify(
            self.notifier,
            NotificationEvent(
                event_type=CONVERSATION_STATUS_CHANGED,
                user_id=conversation.participant_a_id,
                title="Conversation updated",
                body=f"Your conversation is now {status.value}",
                data={"conversation_id": conversation.id, "status": status.value},
            ),
        )
        return conversation

    def set_priority(self, actor_id: str, conversation_id: str, priority: str) -> Conversation:
        try:
            priority = ConversationPriority(priority)
        except ValueError:
            raise ValidationError(
                f"priority must be one of: {', '.join(p.value for p in ConversationPriority)}"
            )
        conversation = self._update(actor_id, conversation_id, priority=priority.value)
        logger.info(f"conversation {conversation_id} priority set to {priority.value} by {actor_id}")
        return conversation

    def set_tags(self, actor_id: str, conversation_id: str, tags: list[str]) -> Conversation:
        cleaned = list(dict.fromkeys(t.strip() for t in tags if t and t.strip()))
        if len(cleaned) > MAX_TAGS:
            raise ValidationError(f"a conversation can have at most {MAX_TAGS} tags")
        if any(len(t) > MAX_TAG_LENGTH for t in cleaned):
            raise ValidationError(f"tags must be at most {MAX_TAG_LENGTH} characters")
        return self._update(actor_id, conversation_id, tags=cleaned)

    def set_notes(self, actor_id: str, conversation_id: str, notes: Optional[str]) -> Conversation:
        notes = notes.strip() if notes and notes.strip() else None
        return self._update(actor_id, conversation_id, admin_notes=notes)

    # deletion

    def delete_conversation(self, actor_id: str, conversation_id: str, confirm: bool = False) -> int:
        """
        Deletes a conversation and all of its messages. Irreversible, so the
        caller must pass confirm=True.

        Returns:
            number of attachment objects removed from storage
        """
        self.require_admin(actor_id)
        if confirm is not True:
            raise ConfirmationRequired("deleting a conversation requires confirmation")

        self.resolver.get_conversation(conversation_id)
        refs = db_util.delete_conversation(conversation_id)
        logger.info(f"conversation {conversation_id} deleted by {actor_id}")

        return sum(1 for ref in refs if self.attachments.delete(ref))
