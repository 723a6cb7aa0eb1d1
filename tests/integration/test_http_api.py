"""
Integration tests for the client HTTP API.

Requests go through aiohttp's test client, into the Timeline, through the
dispatcher and back, with an in-memory relay receiving pushes.
"""

import asyncio

import pytest
from aiohttp.test_utils import TestClient, TestServer

from codechat.chat_server.api import RequestDispatcher, create_http_app
from codechat.chat_server.common.uuids import Uuid
from codechat.chat_server.controller import Controller
from codechat.chat_server.model import Model
from codechat.chat_server.relay import InMemoryRelay
from codechat.chat_server.scheduler import Timeline
from codechat.chat_server.sync import RelaySynchronizer
from codechat.chat_server.view import View

SERVER = Uuid(Uuid(None, 1), 1)
SECRET = b"secret"


class TestHttpApi:
    """Tests for POST /v1/request and GET /v1/health."""

    @pytest.fixture
    def relay(self):
        relay = InMemoryRelay()
        relay.add_team(SERVER, SECRET)
        return relay

    @pytest.fixture
    async def client(self, relay):
        """Start a Timeline and an HTTP app around a fresh model."""
        model = Model()
        controller = Controller(SERVER, model, seed=7)
        timeline = Timeline()
        synchronizer = RelaySynchronizer(SERVER, SECRET, relay, model, controller, timeline)
        dispatcher = RequestDispatcher(controller, View(model), synchronizer)
        runner = asyncio.create_task(timeline.start())

        client = TestClient(TestServer(create_http_app(dispatcher, timeline)))
        await client.start_server()
        yield client
        await client.close()

        await timeline.stop()
        await asyncio.wait_for(runner, timeout=1.0)

    async def request(self, client, body):
        response = await client.post("/v1/request", json=body)
        assert response.status == 200
        return await response.json()

    async def new_user(self, client, name, password="pw"):
        data = await self.request(client, {"type": "new_user", "name": name, "password": password})
        assert data["created"] is True
        return data["user"]

    @pytest.mark.asyncio
    async def test_new_user(self, client):
        data = await self.request(client, {"type": "new_user", "name": "alice", "password": "pw"})

        assert data["type"] == "new_user_response"
        assert data["created"] is True
        assert data["user"]["name"] == "alice"
        assert data["user"]["id"].startswith("1.1.")
        assert "password_hash" not in data["user"]

    @pytest.mark.asyncio
    async def test_duplicate_user_not_created(self, client):
        await self.new_user(client, "alice")
        data = await self.request(client, {"type": "new_user", "name": "ALICE", "password": "pw"})

        assert data["created"] is False
        assert "taken" in data["error"]

    @pytest.mark.asyncio
    async def test_conversation_with_unknown_owner(self, client):
        data = await self.request(client, {
            "type": "new_conversation", "title": "general", "owner": "1.1.404",
        })
        assert data == {
            "type": "new_conversation_response",
            "created": False,
            "error": "Unknown owner: [UUID:1.1.404]",
        }

    @pytest.mark.asyncio
    async def test_message_flow(self, client, relay):
        """Create two messages, read them back, and see the relay push."""
        alice = await self.new_user(client, "alice")
        conv = await self.request(client, {
            "type": "new_conversation", "title": "general", "owner": alice["id"],
        })
        conv_id = conv["conversation"]["id"]

        first = await self.request(client, {
            "type": "new_message", "author": alice["id"], "conversation": conv_id, "body": "hi",
        })
        second = await self.request(client, {
            "type": "new_message", "author": alice["id"], "conversation": conv_id, "body": "there",
        })
        assert first["created"] and second["created"]
        assert second["message"]["previous"] == first["message"]["id"]

        data = await self.request(client, {
            "type": "get_messages_by_id", "ids": [first["message"]["id"]],
        })
        assert data["messages"][0]["next"] == second["message"]["id"]

        data = await self.request(client, {
            "type": "get_messages_by_range", "root": second["message"]["id"], "range": -1,
        })
        assert [m["content"] for m in data["messages"]] == ["hi", "there"]

        for _ in range(50):
            if relay.get_bundle_count() == 2:
                break
            await asyncio.sleep(0.01)
        assert [b.message.text for b in relay.get_all_bundles()] == ["hi", "there"]

    @pytest.mark.asyncio
    async def test_conversation_queries(self, client):
        alice = await self.new_user(client, "alice")
        bob = await self.new_user(client, "bob")
        await self.request(client, {"type": "new_conversation", "title": "Rust", "owner": alice["id"]})
        await self.request(client, {"type": "new_conversation", "title": "Python", "owner": bob["id"]})

        data = await self.request(client, {"type": "get_conversations_by_title", "filter": "py"})
        assert [c["title"] for c in data["conversations"]] == ["Python"]

        data = await self.request(client, {"type": "get_all_conversations", "user": alice["id"]})
        assert [c["title"] for c in data["conversations"]] == ["Rust"]

        data = await self.request(client, {"type": "get_all_conversations"})
        assert len(data["conversations"]) == 2

    @pytest.mark.asyncio
    async def test_add_user_to_conversation(self, client):
        alice = await self.new_user(client, "alice")
        bob = await self.new_user(client, "bob")
        conv = await self.request(client, {
            "type": "new_conversation", "title": "general", "owner": alice["id"],
        })
        body = {
            "type": "add_user_to_conversation",
            "issuer": alice["id"],
            "user": bob["id"],
            "conversation": conv["conversation"]["id"],
        }

        data = await self.request(client, body)
        assert data == {"type": "add_user_to_conversation_response", "success": True}

        data = await self.request(client, {"type": "get_all_conversations", "user": bob["id"]})
        assert len(data["conversations"]) == 1

    @pytest.mark.asyncio
    async def test_users_and_generation(self, client):
        before = await self.request(client, {"type": "get_user_generation"})
        alice = await self.new_user(client, "alice")
        await self.new_user(client, "bob")
        after = await self.request(client, {"type": "get_user_generation"})
        assert before["generation"] != after["generation"]

        data = await self.request(client, {"type": "get_users_excluding", "ids": [alice["id"]]})
        assert [u["name"] for u in data["users"]] == ["bob"]

        data = await self.request(client, {"type": "check_existent_username", "name": "Bob"})
        assert data["exists"] is True

    @pytest.mark.asyncio
    async def test_login(self, client):
        alice = await self.new_user(client, "alice", password="s3cret")

        data = await self.request(client, {"type": "login", "name": "alice", "password": "s3cret"})
        assert data["user"]["id"] == alice["id"]

        data = await self.request(client, {"type": "login", "name": "alice", "password": "nope"})
        assert data["user"] is None

    @pytest.mark.asyncio
    async def test_unknown_type(self, client):
        assert await self.request(client, {"type": "reboot"}) == {"type": "no_message"}

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        response = await client.post(
            "/v1/request", data="{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status == 400

    @pytest.mark.asyncio
    async def test_missing_field(self, client):
        response = await client.post("/v1/request", json={"type": "new_user", "name": "x"})
        assert response.status == 400
        data = await response.json()
        assert data["error_code"] == "BAD_REQUEST"

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/v1/health")
        assert response.status == 200
        data = await response.json()
        assert data["healthy"] is True
        assert "executed_count" in data["timeline"]
