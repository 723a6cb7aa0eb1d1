"""
Integration tests for relay synchronization.

Tests cover:
- Merging duplicated and redelivered batches
- Cursor movement on success and failure
- Poll re-arming on the Timeline
- Push and pull between two servers sharing one relay
- Resuming over an existing SQLite file after a restart
"""

import os
import tempfile

import pytest

from codechat.chat_server.common.entities import RELAY_PASSWORD_HASH
from codechat.chat_server.common.uuids import NULL_UUID, Uuid
from codechat.chat_server.controller import Controller
from codechat.chat_server.model import Model
from codechat.chat_server.persistence import SqlitePersistence
from codechat.chat_server.relay import Bundle, InMemoryRelay, RelayConnectionError, pack
from codechat.chat_server.scheduler import Timeline
from codechat.chat_server.sync import RelaySynchronizer
from codechat.chat_server.view import View

REMOTE = Uuid(Uuid(None, 1), 2)
LOCAL = Uuid(Uuid(None, 1), 1)

U1 = pack(Uuid(REMOTE, 10), "remote-user", 1000)
C1 = pack(Uuid(REMOTE, 20), "remote-conversation", 1001)
M1 = pack(Uuid(REMOTE, 30), "hello from afar", 1002)


def bundle(n: int, user=U1, conversation=C1, message=M1) -> Bundle:
    return Bundle(
        id=Uuid(None, n),
        team=REMOTE,
        time=5000 + n,
        user=user,
        conversation=conversation,
        message=message,
    )


class StubRelay:
    """Relay returning a fixed batch on every read."""

    def __init__(self, batch=None, fail_reads=False):
        self.batch = list(batch or [])
        self.fail_reads = fail_reads
        self.reads = []

    async def read(self, team_id, secret, after, limit):
        self.reads.append((team_id, after, limit))
        if self.fail_reads:
            raise RelayConnectionError("relay down")
        return list(self.batch)

    async def write(self, team_id, secret, user, conversation, message):
        raise RelayConnectionError("relay down")

    def pack(self, entity_id, text, time):
        return pack(entity_id, text, time)

    async def close(self):
        pass


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def make_sync(
    relay, server_id=LOCAL, secret=b"secret", clock=None, poll_interval_ms=5000, persistence=None
):
    model = Model()
    controller = Controller(server_id, model, persistence, seed=server_id.id)
    timeline = Timeline(clock=clock) if clock else Timeline()
    sync = RelaySynchronizer(
        server_id=server_id,
        secret=secret,
        relay=relay,
        model=model,
        controller=controller,
        timeline=timeline,
        poll_interval_ms=poll_interval_ms,
        batch_size=32,
    )
    return sync


class TestMerge:
    """Tests for poll_once and merge_bundle."""

    @pytest.mark.asyncio
    async def test_duplicate_bundles_in_one_batch(self):
        """[B1, B2, B2] yields one user, one conversation, one message."""
        relay = StubRelay([bundle(1), bundle(2), bundle(2)])
        sync = make_sync(relay)
        model = sync.model

        result = await sync.poll_once()

        assert result.success
        assert result.fetched == 3
        assert [m.created for m in result.merged] == [["user", "conversation", "message"], [], []]
        assert len(model.users) == 1
        assert len(model.conversations) == 1
        assert len(model.messages) == 1
        assert model.get_conversation(C1.id).owner == U1.id
        assert sync.last_seen == Uuid(None, 2)
        assert relay.reads[0] == (LOCAL, NULL_UUID, 32)

    @pytest.mark.asyncio
    async def test_redelivered_batch_changes_nothing(self):
        relay = StubRelay([bundle(1), bundle(2), bundle(2)])
        sync = make_sync(relay)
        await sync.poll_once()
        users_before = sync.model.users.all()

        result = await sync.poll_once()

        assert result.success
        assert all(m.duplicate for m in result.merged)
        assert sync.model.users.all() == users_before
        assert len(sync.model.messages) == 1
        assert sync.last_seen == Uuid(None, 2)
        assert relay.reads[1][1] == Uuid(None, 2)

    @pytest.mark.asyncio
    async def test_merged_entities_keep_remote_ids_and_times(self):
        sync = make_sync(StubRelay([bundle(1)]))
        await sync.poll_once()

        user = sync.model.get_user(U1.id)
        message = sync.model.get_message(M1.id)
        assert user.name == "remote-user"
        assert user.created_at == 1000
        assert message.content == "hello from afar"
        assert message.author == U1.id
        assert message.conversation == C1.id
        assert message.created_at == 1002

    @pytest.mark.asyncio
    async def test_merged_user_cannot_log_in(self):
        sync = make_sync(StubRelay([bundle(1)]))
        await sync.poll_once()

        user = sync.model.get_user(U1.id)
        assert user.password_hash == RELAY_PASSWORD_HASH
        view = View(sync.model)
        assert view.authenticate("remote-user", "Temporal Password for Relay") is None
        assert view.authenticate("remote-user", "") is None

    @pytest.mark.asyncio
    async def test_merged_messages_are_chained(self):
        M2 = pack(Uuid(REMOTE, 31), "second", 1003)
        sync = make_sync(StubRelay([bundle(1), bundle(2, message=M2)]))
        await sync.poll_once()

        assert sync.model.get_message(M1.id).next == M2.id
        assert sync.model.get_message(M2.id).previous == M1.id

    @pytest.mark.asyncio
    async def test_existing_conversation_keeps_owner(self):
        """A later author does not take over an existing conversation."""
        U2 = pack(Uuid(REMOTE, 11), "second-user", 1100)
        M2 = pack(Uuid(REMOTE, 31), "second", 1101)
        sync = make_sync(StubRelay([bundle(1), bundle(2, user=U2, message=M2)]))
        await sync.poll_once()

        assert sync.model.get_conversation(C1.id).owner == U1.id
        assert sync.model.get_message(M2.id).author == U2.id

    @pytest.mark.asyncio
    async def test_replicated_user_name_may_collide(self):
        """A remote user with a locally taken name is still merged."""
        sync = make_sync(StubRelay([bundle(1)]))
        await sync.controller.new_user("REMOTE-USER", "pw")

        result = await sync.poll_once()

        assert result.success
        assert sync.model.get_user(U1.id) is not None

    @pytest.mark.asyncio
    async def test_failed_merge_stops_cycle_and_keeps_cursor(self):
        """The cursor stays on the last bundle merged before the failure."""
        clash = pack(U1.id, "message reusing a user id", 1003)
        sync = make_sync(StubRelay([bundle(1), bundle(2, message=clash), bundle(3)]))

        result = await sync.poll_once()

        assert not result.success
        assert len(result.merged) == 1
        assert sync.last_seen == Uuid(None, 1)
        assert sync.stats["failed_polls"] == 1

    @pytest.mark.asyncio
    async def test_relay_failure_leaves_cursor(self):
        sync = make_sync(StubRelay(fail_reads=True))

        result = await sync.poll_once()

        assert not result.success
        assert "relay down" in result.error
        assert sync.last_seen == NULL_UUID


class TestRestart:
    """Tests for resuming replication over an existing SQLite file."""

    @pytest.fixture
    def db_path(self):
        """Create temporary database path."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield os.path.join(tmpdir, "chat.db")

    async def boot(self, relay, db_path):
        """Build a synchronizer whose model is restored from db_path."""
        sink = SqlitePersistence(db_path, wal_mode=False)
        await sink.initialize()
        sync = make_sync(relay, persistence=sink)
        state = await sink.load()
        sync.model.restore(state.users, state.conversations, state.memberships, state.messages)
        return sync

    @pytest.mark.asyncio
    async def test_redelivered_bundles_after_restart_are_duplicates(self, db_path):
        M2 = pack(Uuid(REMOTE, 31), "second", 1003)
        M3 = pack(Uuid(REMOTE, 32), "third", 1004)
        relay = StubRelay([bundle(1), bundle(2, message=M2), bundle(3, message=M3)])

        first = await self.boot(relay, db_path)
        assert (await first.poll_once()).success
        alice = await first.controller.new_user("alice", "pw")

        second = await self.boot(relay, db_path)
        assert second.last_seen == NULL_UUID
        result = await second.poll_once()

        assert result.success
        assert result.fetched == 3
        assert all(m.duplicate for m in result.merged)
        assert second.last_seen == Uuid(None, 3)
        assert len(second.model.users) == 2
        assert View(second.model).authenticate("alice", "pw") == alice
        assert [m.content for m in second.model.conversation_messages(C1.id)] == [
            "hello from afar", "second", "third",
        ]

    @pytest.mark.asyncio
    async def test_new_message_after_restart_extends_chain(self, db_path):
        M2 = pack(Uuid(REMOTE, 31), "second", 1003)
        relay = StubRelay([bundle(1), bundle(2, message=M2)])
        await (await self.boot(relay, db_path)).poll_once()

        restarted = await self.boot(relay, db_path)
        assert restarted.model.last_message(C1.id).id == M2.id
        assert restarted.model.is_member(C1.id, U1.id)

        reply = await restarted.controller.new_message(U1.id, C1.id, "after restart")

        assert reply.previous == M2.id
        assert restarted.model.get_message(M2.id).next == reply.id
        rows = {row["id"]: row for row in restarted.controller.persistence.fetch_rows("messages")}
        assert rows[M2.id.to_json()]["next_id"] == reply.id.to_json()


class TestPolling:
    """Tests for the recurring poll task."""

    @pytest.mark.asyncio
    async def test_poll_rearms_after_interval(self):
        clock = FakeClock()
        relay = StubRelay([bundle(1)])
        sync = make_sync(relay, clock=clock, poll_interval_ms=5000)

        sync.start()
        await sync.timeline.run_pending()
        assert len(relay.reads) == 1
        assert sync.timeline.pending == 1

        clock.now += 4.0
        await sync.timeline.run_pending()
        assert len(relay.reads) == 1

        clock.now += 1.0
        await sync.timeline.run_pending()
        assert len(relay.reads) == 2

    @pytest.mark.asyncio
    async def test_poll_rearms_after_failure(self):
        clock = FakeClock()
        relay = StubRelay(fail_reads=True)
        sync = make_sync(relay, clock=clock)

        sync.start()
        await sync.timeline.run_pending()
        assert sync.timeline.pending == 1

        clock.now += 5.0
        await sync.timeline.run_pending()
        assert len(relay.reads) == 2

    @pytest.mark.asyncio
    async def test_start_twice_schedules_once(self):
        sync = make_sync(StubRelay(), clock=FakeClock())
        sync.start()
        sync.start()
        assert sync.timeline.pending == 1


class TestPushPull:
    """Two servers exchanging messages through one InMemoryRelay."""

    @pytest.fixture
    def relay(self):
        relay = InMemoryRelay()
        relay.add_team(LOCAL, b"local-secret")
        relay.add_team(REMOTE, b"remote-secret")
        return relay

    @pytest.fixture
    def local(self, relay):
        return make_sync(relay, LOCAL, b"local-secret")

    @pytest.fixture
    def remote(self, relay):
        return make_sync(relay, REMOTE, b"remote-secret")

    @pytest.mark.asyncio
    async def test_message_travels_between_servers(self, relay, local, remote):
        alice = await local.controller.new_user("alice", "pw")
        conv = await local.controller.new_conversation("general", alice.id)
        msg = await local.controller.new_message(alice.id, conv.id, "hi")

        pushed = await local.push(alice.id, conv.id, msg.id)
        assert pushed is not None
        assert pushed.team == LOCAL

        result = await remote.poll_once()
        assert result.success
        assert remote.model.get_user(alice.id).name == "alice"
        assert remote.model.get_conversation(conv.id).owner == alice.id
        assert remote.model.get_message(msg.id).content == "hi"
        assert remote.last_seen == pushed.id

    @pytest.mark.asyncio
    async def test_reply_chains_after_original(self, relay, local, remote):
        alice = await local.controller.new_user("alice", "pw")
        conv = await local.controller.new_conversation("general", alice.id)
        hi = await local.controller.new_message(alice.id, conv.id, "hi")
        await local.push(alice.id, conv.id, hi.id)
        await remote.poll_once()

        bob = await remote.controller.new_user("bob", "pw")
        reply = await remote.controller.new_message(bob.id, conv.id, "there")
        await remote.push(bob.id, conv.id, reply.id)

        result = await local.poll_once()

        assert result.success
        assert result.merged[0].duplicate
        assert local.model.get_message(hi.id).next == reply.id
        assert local.model.get_message(reply.id).previous == hi.id
        assert [m.content for m in local.model.conversation_messages(conv.id)] == ["hi", "there"]

    @pytest.mark.asyncio
    async def test_schedule_push_runs_on_timeline(self, relay, local):
        alice = await local.controller.new_user("alice", "pw")
        conv = await local.controller.new_conversation("general", alice.id)
        msg = await local.controller.new_message(alice.id, conv.id, "hi")

        local.schedule_push(alice.id, conv.id, msg.id)
        assert relay.get_bundle_count() == 0

        await local.timeline.run_pending()
        assert relay.get_bundle_count() == 1
        assert local.stats["pushed_count"] == 1

    @pytest.mark.asyncio
    async def test_push_failure_is_reported(self):
        sync = make_sync(StubRelay())
        alice = await sync.controller.new_user("alice", "pw")
        conv = await sync.controller.new_conversation("general", alice.id)
        msg = await sync.controller.new_message(alice.id, conv.id, "hi")

        assert await sync.push(alice.id, conv.id, msg.id) is None
        assert sync.stats["failed_pushes"] == 1

    @pytest.mark.asyncio
    async def test_push_unknown_message(self, local):
        assert await local.push(LOCAL, LOCAL, Uuid(LOCAL, 1)) is None
        assert local.stats["failed_pushes"] == 1
