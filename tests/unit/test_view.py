"""
Unit tests for View queries.

Tests cover:
- User and conversation lookups
- Time and title queries
- Chain walks for message ranges
- Authentication
"""

import pytest

from codechat.chat_server.common.uuids import Uuid
from codechat.chat_server.controller import Controller
from codechat.chat_server.model import Model
from codechat.chat_server.view import View

SERVER = Uuid(Uuid(None, 1), 1)


class TestView:
    """Tests for View."""

    @pytest.fixture
    def model(self):
        return Model()

    @pytest.fixture
    def controller(self, model):
        return Controller(SERVER, model, seed=42)

    @pytest.fixture
    def view(self, model):
        return View(model)

    @pytest.fixture
    async def chat(self, controller):
        """Two users, two conversations, five messages in the first."""
        alice = await controller.new_user("Alice", "pw-a", created_at=100)
        bob = await controller.new_user("bob", "pw-b", created_at=200)
        general = await controller.new_conversation("General", alice.id, created_at=300)
        random_talk = await controller.new_conversation("random talk", bob.id, created_at=400)
        messages = [
            await controller.new_message(alice.id, general.id, f"m{i}", created_at=1000 + i)
            for i in range(5)
        ]
        return {
            "alice": alice,
            "bob": bob,
            "general": general,
            "random": random_talk,
            "messages": messages,
        }

    @pytest.mark.asyncio
    async def test_get_users(self, view, chat):
        users = view.get_users([chat["bob"].id, Uuid(SERVER, 1)])
        assert users == [chat["bob"]]

    @pytest.mark.asyncio
    async def test_get_users_excluding(self, view, chat):
        users = view.get_users_excluding([chat["alice"].id])
        assert users == [chat["bob"]]

    @pytest.mark.asyncio
    async def test_all_conversations_for_member(self, view, chat):
        all_ids = {s.id for s in view.get_all_conversations()}
        assert all_ids == {chat["general"].id, chat["random"].id}

        alice_only = view.get_all_conversations(chat["alice"].id)
        assert [s.id for s in alice_only] == [chat["general"].id]
        assert alice_only[0].title == "General"

    @pytest.mark.asyncio
    async def test_conversations_by_time(self, view, chat):
        assert view.get_conversations_by_time(350, 500) == [chat["random"]]
        assert view.get_conversations_by_time(0, 1) == []

    @pytest.mark.asyncio
    async def test_conversations_by_title(self, view, chat):
        assert view.get_conversations_by_title("GEN") == [chat["general"]]
        assert len(view.get_conversations_by_title("")) == 2

    @pytest.mark.asyncio
    async def test_messages_by_id_in_time_order(self, view, chat):
        m = chat["messages"]
        found = view.get_messages([m[3].id, m[0].id])
        assert [x.content for x in found] == ["m0", "m3"]

    @pytest.mark.asyncio
    async def test_messages_by_time(self, view, chat):
        found = view.get_messages_by_time(chat["general"].id, 1001, 1003)
        assert [x.content for x in found] == ["m1", "m2", "m3"]
        assert view.get_messages_by_time(chat["random"].id, 0, 10_000) == []

    @pytest.mark.asyncio
    async def test_range_forward(self, view, chat):
        m = chat["messages"]
        found = view.get_messages_by_range(m[1].id, 2)
        assert [x.content for x in found] == ["m1", "m2", "m3"]

    @pytest.mark.asyncio
    async def test_range_backward(self, view, chat):
        m = chat["messages"]
        found = view.get_messages_by_range(m[3].id, -2)
        assert [x.content for x in found] == ["m1", "m2", "m3"]

    @pytest.mark.asyncio
    async def test_range_stops_at_chain_ends(self, view, chat):
        m = chat["messages"]
        assert [x.content for x in view.get_messages_by_range(m[3].id, 10)] == ["m3", "m4"]
        assert [x.content for x in view.get_messages_by_range(m[1].id, -10)] == ["m0", "m1"]

    @pytest.mark.asyncio
    async def test_range_zero_and_unknown(self, view, chat):
        m = chat["messages"]
        assert view.get_messages_by_range(m[2].id, 0) == [view.find_message(m[2].id)]
        assert view.get_messages_by_range(Uuid(SERVER, 7), 3) == []

    @pytest.mark.asyncio
    async def test_user_generation_advances(self, view, controller, chat):
        before = view.get_user_generation()
        await controller.new_user("carol", "pw")
        assert before < view.get_user_generation()

    @pytest.mark.asyncio
    async def test_is_user_taken(self, view, chat):
        assert view.is_user_taken("ALICE")
        assert not view.is_user_taken("carol")

    @pytest.mark.asyncio
    async def test_authenticate(self, view, chat):
        assert view.authenticate("alice", "pw-a") == chat["alice"]
        assert view.authenticate("alice", "wrong") is None
        assert view.authenticate("nobody", "pw-a") is None
