from datetime import datetime
from functools import wraps
from typing import Optional
import logging

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.conversation import Conversation
from models.message import Message
from models.profile import Profile
from utils.errors import TransientStoreError

logger = logging.getLogger("marketplace_messaging")


def escape_like(value: str) -> str:
    """Escapes LIKE wildcards so user text matches literally (escape char is a backslash)"""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def store_operation(operation: str):
    """
    Wraps a store call so backing store failures roll the session back and
    surface as TransientStoreError, tagged with the operation name and the
    first positional argument as the target id.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except SQLAlchemyError as e:
                db.session.rollback()
                target = str(args[0]) if args else None
                logger.error(f"store error in {operation} ({target}): {e}")
                raise TransientStoreError(operation, target, e) from e

        return wrapper

    return decorator


# conversations


@store_operation("find_conversation")
def find_conversation_id(
    participant_id: str, counterpart_id: str, context: str
) -> Optional[str]:
    """
    Finds the conversation between two participants in a context, in either order

    Args:
        participant_id: id of one participant
        counterpart_id: id of the other participant
        context: conversation context (application, admin)

    Returns:
        the conversation id, or None if there is none
    """
    query = text(
        """
        SELECT
                id
        FROM conversations
        WHERE context = :context
        AND (
            (participant_a_id = :participant_id AND participant_b_id = :counterpart_id)
            OR (participant_a_id = :counterpart_id AND participant_b_id = :participant_id)
        )
        ORDER BY created_at ASC
    """
    )

    result = db.session.execute(
        query,
        {
            "context": context,
            "participant_id": participant_id,
            "counterpart_id": counterpart_id,
        },
    ).fetchall()

    if len(result) > 1:
        # both orderings exist, only possible if rows were written outside this service
        logger.warning(
            f"multiple conversations found for {participant_id},{counterpart_id} in {context}"
        )

    if result:
        return result[0].id
    return None


@store_operation("insert_conversation")
def insert_conversation(conversation: Conversation) -> Optional[str]:
    """
    Inserts a new conversation

    Args:
        conversation: Conversation object to be saved

    Returns:
        the new conversation id, or None if an equivalent conversation was
        inserted concurrently (unique constraint violation)
    """
    db.session.add(conversation)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return None
    return conversation.id


@store_operation("get_conversation")
def get_conversation(conversation_id: str) -> Optional[Conversation]:
    return db.session.get(Conversation, conversation_id)


@store_operation("update_conversation")
def update_conversation(conversation_id: str, **fields) -> Optional[Conversation]:
    """
    Overwrites the given fields on a conversation

    Args:
        conversation_id: id of the conversation
        fields: column values to set

    Returns:
        the updated conversation, or None if it does not exist
    """
    conversation = db.session.get(Conversation, conversation_id)
    if conversation is None:
        return None
    for name, value in fields.items():
        setattr(conversation, name, value)
    db.session.commit()
    return conversation


@store_operation("delete_conversation")
def delete_conversation(conversation_id: str) -> list[str]:
    """
    Deletes a conversation and every message it owns in one transaction

    Args:
        conversation_id: id of the conversation

    Returns:
        the attachment references of the deleted messages
    """
    refs = (
        db.session.execute(
            select(Message.attachment_ref).where(
                Message.conversation_id == conversation_id,
                Message.attachment_ref.is_not(None),
            )
        )
        .scalars()
        .all()
    )
    db.session.execute(
        delete(Message).where(Message.conversation_id == conversation_id)
    )
    db.session.execute(delete(Conversation).where(Conversation.id == conversation_id))
    db.session.commit()
    return list(refs)


@store_operation("list_participant_conversations")
def list_conversations_for_participant(user_id: str) -> list[Conversation]:
    query = (
        select(Conversation)
        .where(
            or_(
                Conversation.participant_a_id == user_id,
                Conversation.participant_b_id == user_id,
            )
        )
        .order_by(
            Conversation.last_message_at.desc().nulls_last(),
            Conversation.created_at.desc(),
        )
    )
    return list(db.session.execute(query).scalars().all())


# messages


@store_operation("insert_message")
def save_message(message: Message) -> Message:
    """
    Saves message to the database

    Args:
        message: Message object to be saved

    Returns:
        the saved message, with its store-assigned id
    """
    db.session.add(message)
    db.session.commit()
    return message


@store_operation("get_message")
def get_message(message_id: int) -> Optional[Message]:
    return db.session.get(Message, message_id)


@store_operation("list_messages")
def list_messages(conversation_id: str) -> list[Message]:
    """
    Lists the messages of a conversation in creation order, ties broken by id

    Args:
        conversation_id: id of the conversation

    Returns:
        list of messages
    """
    query = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
    )
    return list(db.session.execute(query).scalars().all())


@store_operation("latest_message")
def latest_message(conversation_id: str) -> Optional[Message]:
    query = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
    )
    return db.session.execute(query).scalars().first()


@store_operation("attachment_visible_to")
def attachment_visible_to(remote_ref: str, user_id: str) -> bool:
    """
    Checks whether an attachment reference belongs to a message in one of
    the user's conversations

    Args:
        remote_ref: stored attachment reference
        user_id: id of the viewer

    Returns:
        True if the user is a participant in a conversation holding the attachment
    """
    query = (
        select(Message.id)
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(
            Message.attachment_ref == remote_ref,
            or_(
                Conversation.participant_a_id == user_id,
                Conversation.participant_b_id == user_id,
            ),
        )
        .limit(1)
    )
    return db.session.execute(query).first() is not None


@store_operation("update_message")
def update_message_content(message_id: int, content: str, edited_at: datetime) -> None:
    db.session.execute(
        update(Message)
        .where(Message.id == message_id)
        .values(content=content, edited_at=edited_at)
    )
    db.session.commit()


@store_operation("delete_message")
def delete_message(message_id: int) -> bool:
    result = db.session.execute(delete(Message).where(Message.id == message_id))
    db.session.commit()
    return result.rowcount > 0


@store_operation("mark_delivered")
def mark_delivered(message_id: int, delivered_at: datetime) -> bool:
    """
    Stamps delivered_at if it is not set yet

    Returns:
        True if the row changed, False if it was already delivered
    """
    result = db.session.execute(
        update(Message)
        .where(Message.id == message_id, Message.delivered_at.is_(None))
        .values(delivered_at=delivered_at)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount > 0


@store_operation("mark_conversation_delivered")
def mark_conversation_delivered(
    conversation_id: str, recipient_id: str, delivered_at: datetime
) -> int:
    result = db.session.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.recipient_id == recipient_id,
            Message.delivered_at.is_(None),
        )
        .values(delivered_at=delivered_at)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount


@store_operation("mark_read")
def mark_read(conversation_id: str, recipient_id: str, read_at: datetime) -> int:
    """
    Marks every unread message for the recipient in a conversation as read.
    A single UPDATE statement, so a message inserted after it runs stays unread.

    Args:
        conversation_id: id of the conversation
        recipient_id: the viewer whose messages are being read
        read_at: read timestamp

    Returns:
        number of messages marked read
    """
    result = db.session.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.recipient_id == recipient_id,
            Message.is_read.is_(False),
        )
        .values(
            is_read=True,
            read_at=read_at,
            delivered_at=func.coalesce(Message.delivered_at, read_at),
        )
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount


@store_operation("count_unread")
def count_unread(conversation_id: str, recipient_id: str) -> int:
    query = text(
        """
        SELECT
                COUNT(*)
        FROM messages
        WHERE conversation_id = :conversation_id
        AND recipient_id = :recipient_id
        AND is_read = :is_read
    """
    )
    return db.session.execute(
        query,
        {
            "conversation_id": conversation_id,
            "recipient_id": recipient_id,
            "is_read": False,
        },
    ).scalar_one()


@store_operation("count_unread_total")
def count_unread_total(recipient_id: str) -> int:
    query = select(func.count(Message.id)).where(
        Message.recipient_id == recipient_id, Message.is_read.is_(False)
    )
    return db.session.execute(query).scalar_one()


@store_operation("count_unread_by_conversation")
def count_unread_by_conversation(
    recipient_id: str, conversation_ids: list[str]
) -> dict[str, int]:
    if not conversation_ids:
        return {}
    query = (
        select(Message.conversation_id, func.count(Message.id))
        .where(
            Message.recipient_id == recipient_id,
            Message.is_read.is_(False),
            Message.conversation_id.in_(conversation_ids),
        )
        .group_by(Message.conversation_id)
    )
    return {row[0]: row[1] for row in db.session.execute(query).all()}


# profiles


@store_operation("get_profile")
def get_profile(user_id: str) -> Optional[Profile]:
    return db.session.get(Profile, user_id)


@store_operation("get_profiles")
def get_profiles(user_ids: list[str]) -> dict[str, Profile]:
    if not user_ids:
        return {}
    query = select(Profile).where(Profile.user_id.in_(user_ids))
    return {p.user_id: p for p in db.session.execute(query).scalars().all()}


def create_sample_data():
    # check if sample data already exists
    existing = db.session.execute(text("SELECT user_id FROM profiles LIMIT 1")).fetchone()
    if existing:
        return

    db.session.add_all(
        [
            Profile(
                user_id="00000000-0000-0000-0000-000000000001",
                full_name="Platform Admin",
                email="admin@marketplace.test",
                role="admin",
            ),
            Profile(
                user_id="00000000-0000-0000-0000-000000000002",
                full_name="Maria Garcia",
                email="maria@example.com",
                role="talent",
            ),
            Profile(
                user_id="00000000-0000-0000-0000-000000000003",
                full_name="Carlos Lopez",
                email="carlos@techcorp.com",
                role="company",
                company_name="Tech Corp",
            ),
        ]
    )
    db.session.commit()


# admin listing


@store_operation("query_conversations")
def query_conversations(
    viewer_id: str,
    role: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    unread_only: bool = False,
    search: Optional[str] = None,
    created_after: Optional[datetime] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[tuple[Conversation, Optional[Profile], int]], int]:
    """
    Filters conversations for the admin listing. Role and text search match
    participant a, the non-owning party.

    Args:
        viewer_id: user whose unread counts are reported
        role: participant a's role
        status: conversation status
        priority: conversation priority
        unread_only: only conversations with unread messages for the viewer
        search: case-insensitive text matched against name, email, company,
            subject and last message preview
        created_after: only conversations created at or after this time
        limit: page size
        offset: rows to skip

    Returns:
        tuple of (rows of (conversation, participant a profile, unread count), total matches)
    """
    unread = (
        select(
            Message.conversation_id.label("conversation_id"),
            func.count(Message.id).label("unread_count"),
        )
        .where(Message.recipient_id == viewer_id, Message.is_read.is_(False))
        .group_by(Message.conversation_id)
        .subquery()
    )
    unread_count = func.coalesce(unread.c.unread_count, 0)

    query = (
        select(Conversation, Profile, unread_count.label("unread_count"))
        .outerjoin(Profile, Profile.user_id == Conversation.participant_a_id)
        .outerjoin(unread, unread.c.conversation_id == Conversation.id)
    )

    if role:
        query = query.where(Profile.role == role)
    if status:
        query = query.where(Conversation.status == status)
    if priority:
        query = query.where(Conversation.priority == priority)
    if unread_only:
        query = query.where(unread_count > 0)
    if created_after is not None:
        query = query.where(Conversation.created_at >= created_after)
    if search:
        pattern = f"%{escape_like(search.lower())}%"
        query = query.where(
            or_(
                func.lower(Profile.full_name).like(pattern, escape="\\"),
                func.lower(Profile.email).like(pattern, escape="\\"),
                func.lower(Profile.company_name).like(pattern, escape="\\"),
                func.lower(Conversation.subject).like(pattern, escape="\\"),
                func.lower(Conversation.last_message_text).like(pattern, escape="\\"),
            )
        )

    total = db.session.execute(
        select(func.count()).select_from(query.subquery())
    ).scalar_one()

    rows = db.session.execute(
        query.order_by(
            Conversation.last_message_at.desc().nulls_last(),
            Conversation.created_at.desc(),
            Conversation.id,
        )
        .limit(limit)
        .offset(offset)
    ).all()

    return [(row[0], row[1], row[2]) for row in rows], total


@store_operation("count_conversations_by_status")
def count_conversations_by_status() -> dict[str, int]:
    query = select(Conversation.status, func.count(Conversation.id)).group_by(
        Conversation.status
    )
    return {row[0]: row[1] for row in db.session.execute(query).all()}
