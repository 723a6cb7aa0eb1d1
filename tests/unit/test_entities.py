"""
Unit tests for entity records and password hashing.
"""

from codechat.chat_server.common.entities import (
    RELAY_PASSWORD_HASH,
    Conversation,
    Message,
    User,
    hash_password,
    verify_password,
)
from codechat.chat_server.common.uuids import NULL_UUID, Uuid

ROOT = Uuid(Uuid(None, 1), 1)


class TestPasswords:
    """Tests for hash_password/verify_password."""

    def test_verify_roundtrip(self):
        stored = hash_password("hunter2")
        assert verify_password("hunter2", stored)
        assert not verify_password("hunter3", stored)

    def test_salted(self):
        assert hash_password("same") != hash_password("same")

    def test_garbage_hash_never_verifies(self):
        assert not verify_password("x", "")
        assert not verify_password("x", "zz$00")

    def test_relay_marker_never_verifies(self):
        assert not verify_password("", RELAY_PASSWORD_HASH)
        assert not verify_password(RELAY_PASSWORD_HASH, RELAY_PASSWORD_HASH)
        assert not verify_password("Temporal Password for Relay", RELAY_PASSWORD_HASH)


class TestEntityDicts:
    """Tests for the client-facing dict forms."""

    def test_user_hides_password(self):
        user = User(id=Uuid(ROOT, 1), name="alice", created_at=5, password_hash="s$d")
        assert user.to_dict() == {"id": "1.1.1", "name": "alice", "created_at": 5}
        assert "s$d" not in repr(user)

    def test_conversation_summary(self):
        conv = Conversation(id=Uuid(ROOT, 2), owner=Uuid(ROOT, 1), created_at=6, title="general")
        assert conv.summary.to_dict() == conv.to_dict()
        assert conv.to_dict()["owner"] == "1.1.1"

    def test_message_null_links(self):
        message = Message(
            id=Uuid(ROOT, 3),
            next=NULL_UUID,
            previous=NULL_UUID,
            created_at=7,
            author=Uuid(ROOT, 1),
            conversation=Uuid(ROOT, 2),
            content="hi",
        )
        data = message.to_dict()
        assert data["next"] is None
        assert data["previous"] is None
        assert message.is_tail
