"""
Message lifecycle plus delivery and read tracking.

From the recipient's side a message moves sent -> delivered -> read.
Delivery stamps are advisory: a message may go straight to read. The read
flag only ever moves from false to true, and unread counts are always
live count queries, never stored counters.
"""

from datetime import datetime
from typing import Callable, Optional
import logging

from models.enums import ConversationContext
from models.message import Attachment, Message
from models.requests import DirectMessageRequest, EditMessageRequest, SendMessageRequest
from services.attachments import AttachmentPipeline
from services.conversations import ConversationResolver
from services.notifications import (
    NEW_MESSAGE,
    NotificationDispatcher,
    NotificationEvent,
    notify,
)
from services.typing import TypingPresence
from utils import db_util
from utils.errors import Forbidden, NotFound
from utils.util import utc_now

logger = logging.getLogger("marketplace_messaging")


class MessageService:
    def __init__(
        self,
        resolver: ConversationResolver,
        attachments: AttachmentPipeline,
        notifier: NotificationDispatcher,
        typing: Optional[TypingPresence] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.resolver = resolver
        self.attachments = attachments
        self.notifier = notifier
        self.typing = typing
        self.clock = clock

    def _check_attachment_owner(self, attachment: Optional[Attachment], sender_id: str) -> None:
        # a message may only carry an object its sender uploaded
        if attachment is not None and not self.attachments.is_owned_by(
            attachment.remote_ref, sender_id
        ):
            raise Forbidden(f"attachment {attachment.remote_ref} was not uploaded by {sender_id}")

    def send(self, request: SendMessageRequest) -> Message:
        """
        Stores a message, refreshes the conversation summary and notifies the
        recipient. Not idempotent, never retried here.

        Args:
            request: validated send request

        Returns:
            the stored message
        """
        conversation = self.resolver.get_conversation(request.conversation_id)
        if not conversation.has_participant(request.sender_id):
            raise Forbidden(
                f"user {request.sender_id} is not part of conversation {conversation.id}"
            )
        if conversation.counterpart_of(request.sender_id) != request.recipient_id:
            raise Forbidden(
                f"user {request.recipient_id} is not the counterpart in conversation {conversation.id}"
            )
        self._check_attachment_owner(request.attachment, request.sender_id)

        message = Message(
            conversation_id=conversation.id,
            sender_id=request.sender_id,
            recipient_id=request.recipient_id,
            kind=request.kind.value,
            content=request.content,
            is_read=False,
            created_at=self.clock(),
        )
        message.attachment = request.attachment
        db_util.save_message(message)
        logger.info(f"message {message.id} stored in conversation {conversation.id}")

        self.resolver.touch_conversation(
            conversation.id, message.preview_text, message.created_at
        )
        if self.typing is not None:
            self.typing.signal_stopped_typing(conversation.id, request.sender_id)

        notify(
            self.notifier,
            NotificationEvent(
                event_type=NEW_MESSAGE,
                user_id=request.recipient_id,
                title="New message",
                body=message.preview_text,
                data={
                    "conversation_id": conversation.id,
                    "message_id": message.id,
                    "sender_id": request.sender_id,
                },
            ),
        )
        return message

    def send_direct(self, request: DirectMessageRequest) -> Message:
        """
        Sends to a counterpart, creating the conversation on the first message.
        Only an admin can open an admin conversation; other users may reply
        in one that already exists.
        """
        self._check_attachment_owner(request.attachment, request.sender_id)
        if request.context is ConversationContext.ADMIN:
            sender = db_util.get_profile(request.sender_id)
            if sender is None or not sender.is_admin:
                existing = db_util.find_conversation_id(
                    request.sender_id, request.recipient_id, request.context.value
                )
                if existing is None:
                    raise Forbidden(
                        f"user {request.sender_id} cannot open an admin conversation"
                    )

        conversation_id = self.resolver.ensure_conversation(
            request.sender_id, request.recipient_id, request.context, request.subject
        )
        return self.send(
            SendMessageRequest(
                conversation_id=conversation_id,
                sender_id=request.sender_id,
                recipient_id=request.recipient_id,
                content=request.content,
                attachment=request.attachment,
            )
        )

    def get_message(self, message_id: int) -> Message:
        message = db_util.get_message(message_id)
        if message is None:
            raise NotFound(f"message not found: {message_id}")
        return message

    def list_messages(self, conversation_id: str, viewer_id: Optional[str] = None) -> list[Message]:
        """
        Lists messages in creation order. When the viewer is a participant, every
        undelivered message addressed to them is stamped delivered.
        """
        conversation = self.resolver.get_conversation(conversation_id)
        if viewer_id is not None and conversation.has_participant(viewer_id):
            self.mark_fetched_delivered(conversation_id, viewer_id)
        return db_util.list_messages(conversation_id)

    def mark_fetched_delivered(self, conversation_id: str, viewer_id: str) -> int:
        """
        Stamps delivered_at on every undelivered message addressed to the
        viewer in a conversation

        Returns:
            number of messages stamped
        """
        delivered = db_util.mark_conversation_delivered(
            conversation_id, viewer_id, self.clock()
        )
        if delivered:
            logger.debug(f"{delivered} messages delivered to {viewer_id} in {conversation_id}")
        return delivered

    def mark_delivered(self, message_id: int, viewer_id: str) -> bool:
        """
        Stamps a message delivered. Idempotent.

        Returns:
            True if the stamp was set by this call
        """
        message = self.get_message(message_id)
        if message.recipient_id != viewer_id:
            raise Forbidden(f"only the recipient can mark message {message_id} delivered")
        return db_util.mark_delivered(message_id, self.clock())

    def mark_read(self, conversation_id: str, viewer_id: str) -> int:
        """
        Marks every unread message addressed to the viewer in a conversation
        as read. Messages stored after this runs stay unread.

        Returns:
            number of messages marked read
        """
        self.resolver.get_for_participant(conversation_id, viewer_id)
        count = db_util.mark_read(conversation_id, viewer_id, self.clock())
        logger.info(f"{count} messages marked read for {viewer_id} in {conversation_id}")
        return count

    def unread_count(self, conversation_id: str, viewer_id: str) -> int:
        return db_util.count_unread(conversation_id, viewer_id)

    def total_unread(self, viewer_id: str) -> int:
        return db_util.count_unread_total(viewer_id)

    def edit(self, request: EditMessageRequest) -> Message:
        """
        Overwrites a message's content. Only the sender may edit; the previous
        content is not kept.

        Returns:
            the edited message
        """
        message = self.get_message(request.message_id)
        if message.sender_id != request.editor_id:
            raise Forbidden(f"only the sender can edit message {request.message_id}")

        edited_at = self.clock()
        db_util.update_message_content(message.id, request.content, edited_at)
        message = self.get_message(request.message_id)

        latest = db_util.latest_message(message.conversation_id)
        if latest is not None and latest.id == message.id:
            self.resolver.touch_conversation(
                message.conversation_id, message.preview_text, message.created_at
            )
        return message

    def delete(self, message_id: int, actor_id: str) -> None:
        """Hard deletes a message. Only the sender may delete."""
        message = self.get_message(message_id)
        if message.sender_id != actor_id:
            raise Forbidden(f"only the sender can delete message {message_id}")

        conversation_id = message.conversation_id
        attachment_ref = message.attachment_ref
        if not db_util.delete_message(message_id):
            raise NotFound(f"message not found: {message_id}")
        logger.info(f"message {message_id} deleted by {actor_id}")

        if attachment_ref:
            self.attachments.delete(attachment_ref)

        latest = db_util.latest_message(conversation_id)
        if latest is not None:
            self.resolver.touch_conversation(
                conversation_id, latest.preview_text, latest.created_at
            )
        else:
            self.resolver.touch_conversation(conversation_id, None, None)

    def authorize_attachment(self, remote_ref: str, viewer_id: str) -> None:
        """
        Allows a viewer to get a signed url for a stored reference only if
        they uploaded it or it is attached to a message in one of their
        conversations. Deleting the message or conversation revokes access.
        """
        if self.attachments.is_owned_by(remote_ref, viewer_id):
            return
        if db_util.attachment_visible_to(remote_ref, viewer_id):
            return
        raise Forbidden(f"user {viewer_id} has no access to {remote_ref}")
