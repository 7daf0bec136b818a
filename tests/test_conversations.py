import pytest
from sqlalchemy import func, select

from conftest import ADMIN, COMPANY, TALENT
from models import db
from models.conversation import Conversation
from models.enums import ConversationContext
from models.requests import DirectMessageRequest
from services.conversations import order_participants
from utils import db_util
from utils.errors import Forbidden, NotFound, TransientStoreError


def conversation_count():
    return db.session.execute(select(func.count(Conversation.id))).scalar_one()


def test_ensure_conversation_creates_once(services):
    """Same pair in the same context always resolves to one conversation"""
    first = services.resolver.ensure_conversation(TALENT, COMPANY)
    second = services.resolver.ensure_conversation(TALENT, COMPANY)
    reversed_pair = services.resolver.ensure_conversation(COMPANY, TALENT)

    assert first == second == reversed_pair
    assert conversation_count() == 1


def test_new_conversation_defaults(services, clock):
    conversation_id = services.resolver.ensure_conversation(
        TALENT, COMPANY, subject="Backend role"
    )
    conversation = services.resolver.get_conversation(conversation_id)

    assert conversation.participants == [TALENT, COMPANY]
    assert conversation.context == "application"
    assert conversation.status == "active"
    assert conversation.priority == "medium"
    assert conversation.tags == []
    assert conversation.subject == "Backend role"
    assert conversation.last_message_text is None


def test_contexts_are_separate_conversations(services):
    application = services.resolver.ensure_conversation(ADMIN, TALENT)
    admin = services.resolver.ensure_conversation(ADMIN, TALENT, ConversationContext.ADMIN)

    assert application != admin
    assert conversation_count() == 2


def test_admin_conversation_is_owned_by_admin(services):
    conversation_id = services.resolver.ensure_conversation(
        ADMIN, COMPANY, ConversationContext.ADMIN
    )
    conversation = services.resolver.get_conversation(conversation_id)

    assert conversation.participant_a_id == COMPANY
    assert conversation.participant_b_id == ADMIN


def test_order_participants():
    assert order_participants("a", "b", ConversationContext.APPLICATION) == ("a", "b")
    assert order_participants("a", "b", ConversationContext.ADMIN) == ("b", "a")


def test_lost_creation_race_returns_existing_row(services, monkeypatch):
    existing = services.resolver.ensure_conversation(TALENT, COMPANY)

    original_find = db_util.find_conversation_id
    calls = []

    def stale_find(*args):
        # first lookup misses the row another writer just committed
        calls.append(args)
        if len(calls) == 1:
            return None
        return original_find(*args)

    monkeypatch.setattr(db_util, "find_conversation_id", stale_find)

    resolved = services.resolver.ensure_conversation(TALENT, COMPANY)

    assert resolved == existing
    assert len(calls) == 2
    assert conversation_count() == 1


def test_touch_conversation_updates_summary(services, clock):
    conversation_id = services.resolver.ensure_conversation(TALENT, COMPANY)
    clock.advance(minutes=5)

    assert services.resolver.touch_conversation(conversation_id, "x" * 500, clock())

    conversation = services.resolver.get_conversation(conversation_id)
    assert conversation.last_message_text == "x" * 200
    assert conversation.last_message_at is not None


def test_touch_conversation_swallows_store_errors(services, monkeypatch):
    conversation_id = services.resolver.ensure_conversation(TALENT, COMPANY)

    def failing_update(*args, **kwargs):
        raise TransientStoreError("update_conversation", args[0])

    monkeypatch.setattr(db_util, "update_conversation", failing_update)

    assert services.resolver.touch_conversation(conversation_id, "hi", None) is False


def test_touch_missing_conversation(services, clock):
    assert services.resolver.touch_conversation("missing", "hi", clock()) is False


def test_get_conversation_not_found(services):
    with pytest.raises(NotFound):
        services.resolver.get_conversation("does-not-exist")


def test_get_for_participant_rejects_outsiders(services):
    conversation_id = services.resolver.ensure_conversation(TALENT, COMPANY)

    assert services.resolver.get_for_participant(conversation_id, COMPANY).id == conversation_id
    with pytest.raises(Forbidden):
        services.resolver.get_for_participant(conversation_id, ADMIN)


def test_list_for_participant_includes_counterpart_and_unread(services):
    conversation_id = services.resolver.ensure_conversation(TALENT, COMPANY)
    services.messages.send_direct(
        DirectMessageRequest(sender_id=TALENT, recipient_id=COMPANY, content="Hi there")
    )

    listing = services.resolver.list_for_participant(COMPANY)

    assert len(listing) == 1
    assert listing[0]["id"] == conversation_id
    assert listing[0]["unread_count"] == 1
    assert listing[0]["counterpart"]["full_name"] == "Maria Garcia"
    assert services.resolver.list_for_participant(TALENT)[0]["unread_count"] == 0
