import pytest

from dmengine.domain.chat.gate import PREVIEW_LENGTH, MessageGate
from dmengine.domain.chat.models import Conversation, ConversationStatus, Message
from dmengine.domain.chat.state import ConversationStateMachine
from dmengine.domain.common.errors import PermissionDenied, RateLimited


@pytest.fixture
def gate():
    return MessageGate(ConversationStateMachine(), pending_limit=1)


def _pending():
    return Conversation.new("alice", "bob", status=ConversationStatus.PENDING, requester_id="alice")


def test_requester_gets_one_message_while_pending(gate):
    conv = _pending()
    assert gate.can_send(conv, "alice").allowed
    conv = gate.admit(conv, Message.new(conv.id, "alice", "hi"))
    assert conv.message_counts == {"alice": 1, "bob": 0}
    assert conv.unread_counts["bob"] == 1
    decision = gate.can_send(conv, "alice")
    assert not decision.allowed
    with pytest.raises(RateLimited):
        decision.raise_if_denied()


def test_recipient_reply_accepts_and_lifts_limit(gate):
    conv = gate.admit(_pending(), Message.new("dm:alice:bob", "alice", "hi"))
    conv = gate.admit(conv, Message.new(conv.id, "bob", "hello"))
    assert conv.status is ConversationStatus.ACCEPTED
    assert conv.last_sender_id == "bob"
    assert gate.can_send(conv, "alice").allowed


def test_declined_blocks_everyone(gate):
    conv = _pending()
    conv.status = ConversationStatus.DECLINED
    for sender in ("alice", "bob"):
        decision = gate.can_send(conv, sender)
        assert decision.reason == PermissionDenied.DECLINED_PREVIOUSLY
        with pytest.raises(PermissionDenied):
            decision.raise_if_denied()


def test_non_participant_denied(gate):
    assert gate.can_send(_pending(), "mallory").reason == PermissionDenied.NOT_PARTICIPANT


def test_admit_does_not_mutate_input(gate):
    conv = _pending()
    gate.admit(conv, Message.new(conv.id, "alice", "hi"))
    assert conv.message_counts == {"alice": 0, "bob": 0}
    assert conv.last_message is None


def test_preview_is_truncated(gate):
    conv = Conversation.new("alice", "bob", status=ConversationStatus.ACCEPTED, requester_id=None)
    text = "word " * 100
    updated = gate.admit(conv, Message.new(conv.id, "alice", text))
    assert updated.last_message == text[:PREVIEW_LENGTH]


def test_higher_limit():
    relaxed = MessageGate(ConversationStateMachine(), pending_limit=3)
    conv = _pending()
    for _ in range(3):
        conv = relaxed.admit(conv, Message.new(conv.id, "alice", "ping"))
    assert not relaxed.can_send(conv, "alice").allowed


def test_negative_limit_rejected():
    with pytest.raises(ValueError):
        MessageGate(ConversationStateMachine(), pending_limit=-1)
