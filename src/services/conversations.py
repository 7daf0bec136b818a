from datetime import datetime
from typing import Callable, Optional
import logging

from config import PREVIEW_LENGTH
from models.conversation import Conversation
from models.enums import ConversationContext, ConversationPriority, ConversationStatus
from utils import db_util
from utils.errors import Forbidden, NotFound, TransientStoreError
from utils.util import utc_now

logger = logging.getLogger("marketplace_messaging")


def order_participants(
    initiator_id: str, counterpart_id: str, context: ConversationContext
) -> tuple[str, str]:
    """
    Orders a new conversation's participants as (a, b), b being the party that
    owns the conversation. Admin-started conversations are owned by the admin.
    """
    if context is ConversationContext.ADMIN:
        return counterpart_id, initiator_id
    return initiator_id, counterpart_id


class ConversationResolver:
    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock

    def ensure_conversation(
        self,
        initiator_id: str,
        counterpart_id: str,
        context: ConversationContext = ConversationContext.APPLICATION,
        subject: Optional[str] = None,
    ) -> str:
        """
        Gets the conversation id for a participant pair or creates a new one

        Args:
            initiator_id: user starting the exchange
            counterpart_id: the other user
            context: application or admin initiated
            subject: subject for a newly created conversation

        Returns:
            string containing the conversation id
        """
        context = ConversationContext(context)
        conversation_id = db_util.find_conversation_id(
            initiator_id, counterpart_id, context.value
        )
        if conversation_id:
            return conversation_id

        participant_a_id, participant_b_id = order_participants(
            initiator_id, counterpart_id, context
        )
        now = self.clock()
        new_conversation = Conversation(
            participant_a_id=participant_a_id,
            participant_b_id=participant_b_id,
            context=context.value,
            subject=subject,
            status=ConversationStatus.ACTIVE.value,
            priority=ConversationPriority.MEDIUM.value,
            tags=[],
            created_at=now,
            updated_at=now,
        )
        conversation_id = db_util.insert_conversation(new_conversation)
        if conversation_id:
            logger.info(
                f"created {context.value} conversation {conversation_id} for {participant_a_id},{participant_b_id}"
            )
            return conversation_id

        # lost a creation race, the other writer's row is the conversation
        conversation_id = db_util.find_conversation_id(
            initiator_id, counterpart_id, context.value
        )
        if conversation_id is None:
            raise TransientStoreError("ensure_conversation", f"{initiator_id},{counterpart_id}")
        return conversation_id

    def touch_conversation(
        self, conversation_id: str, preview_text: Optional[str], timestamp: Optional[datetime]
    ) -> bool:
        """
        Updates the denormalized last message fields. Failures are logged and
        swallowed, the message itself is already stored. A None preview
        clears the summary.

        Returns:
            True if the summary was updated
        """
        preview = preview_text[:PREVIEW_LENGTH] if preview_text else None
        try:
            updated = db_util.update_conversation(
                conversation_id,
                last_message_text=preview,
                last_message_at=timestamp,
                updated_at=self.clock(),
            )
        except TransientStoreError as e:
            logger.warning(f"conversation summary not updated for {conversation_id}: {e}")
            return False

        if updated is None:
            logger.warning(f"conversation summary not updated, {conversation_id} not found")
            return False
        return True

    def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = db_util.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound(f"conversation not found: {conversation_id}")
        return conversation

    def get_for_participant(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = self.get_conversation(conversation_id)
        if not conversation.has_participant(user_id):
            raise Forbidden(f"user {user_id} is not part of conversation {conversation_id}")
        return conversation

    def list_for_participant(self, user_id: str) -> list[dict]:
        """
        Lists a user's conversations, most recent activity first, with the
        live unread count for that user
        """
        conversations = db_util.list_conversations_for_participant(user_id)
        unread = db_util.count_unread_by_conversation(
            user_id, [c.id for c in conversations]
        )
        profiles = db_util.get_profiles(
            list({c.counterpart_of(user_id) for c in conversations})
        )

        results = []
        for conversation in conversations:
            counterpart = profiles.get(conversation.counterpart_of(user_id))
            item = conversation.to_dict()
            item["unread_count"] = unread.get(conversation.id, 0)
            item["counterpart"] = counterpart.to_dict() if counterpart else None
            results.append(item)
        return results
