"""
SQLite persistence sink.

Writes every admitted user, conversation, message and membership to a
single SQLite database file. Each write runs in its own explicit
transaction so a failure leaves no partial rows behind. load() reads the
whole file back at startup, rebuilding message chains from the
previous_id/next_id links.

Table schema:
    users:
        - id TEXT PRIMARY KEY (dotted uuid)
        - name TEXT
        - created_at INTEGER (Unix ms)
        - password_hash TEXT

    conversations:
        - id TEXT PRIMARY KEY
        - title TEXT
        - owner_id TEXT
        - created_at INTEGER

    messages:
        - id TEXT PRIMARY KEY
        - conversation_id TEXT
        - author_id TEXT
        - content TEXT
        - created_at INTEGER
        - next_id TEXT (NULL for the tail)
        - previous_id TEXT (NULL for the head)

    user_conversation:
        - conversation_id TEXT
        - user_id TEXT
        - PRIMARY KEY (conversation_id, user_id)
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..common.entities import Conversation, Message, User
from ..common.uuids import NULL_UUID, Uuid
from .base import PersistenceError, StoredState

logger = logging.getLogger(__name__)


def _uuid_column(value: Uuid) -> str | None:
    return None if value.is_null else value.to_json()


def _uuid_from_column(value: str | None) -> Uuid:
    return NULL_UUID if value is None else Uuid.parse(value)


def _user_from_row(row: sqlite3.Row) -> User:
    return User(
        id=Uuid.parse(row["id"]),
        name=row["name"],
        created_at=row["created_at"],
        password_hash=row["password_hash"],
    )


def _conversation_from_row(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=Uuid.parse(row["id"]),
        owner=Uuid.parse(row["owner_id"]),
        created_at=row["created_at"],
        title=row["title"],
    )


def _message_from_row(row: sqlite3.Row) -> Message:
    return Message(
        id=Uuid.parse(row["id"]),
        next=_uuid_from_column(row["next_id"]),
        previous=_uuid_from_column(row["previous_id"]),
        created_at=row["created_at"],
        author=Uuid.parse(row["author_id"]),
        conversation=Uuid.parse(row["conversation_id"]),
        content=row["content"],
    )


def _chain_order(rows: list[sqlite3.Row]) -> list[sqlite3.Row]:
    """Order message rows head to tail, one conversation after another.

    Each chain starts at a row without previous_id and follows next_id.
    Rows no chain reaches are left out.
    """
    by_id = {row["id"]: row for row in rows}
    seen: set[str] = set()
    ordered: list[sqlite3.Row] = []
    for head in rows:
        if head["previous_id"] is not None:
            continue
        row = head
        while row is not None and row["id"] not in seen:
            seen.add(row["id"])
            ordered.append(row)
            row = by_id.get(row["next_id"])
    return ordered


class SqlitePersistence:
    """Write-through SQLite sink.

    Example:
        >>> sink = SqlitePersistence("/var/lib/codechat/chat.db")
        >>> await sink.initialize()
        >>> await sink.write_user(user)
    """

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # explicit transactions
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                password_hash TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                owner_id TEXT NOT NULL,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                author_id TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                next_id TEXT,
                previous_id TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation
                ON messages(conversation_id, created_at);

            CREATE TABLE IF NOT EXISTS user_conversation (
                conversation_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                PRIMARY KEY (conversation_id, user_id)
            );
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if needed."""
        async with self._lock:
            try:
                with self._get_connection() as conn:
                    self._create_schema(conn)
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to initialize {self.db_path}: {e}") from e
        logger.info("Initialized chat database", extra={"path": str(self.db_path)})

    async def _transaction(self, statements: list[tuple[str, tuple[Any, ...]]]) -> None:
        async with self._lock:
            try:
                with self._get_connection() as conn:
                    conn.execute("BEGIN IMMEDIATE")
                    try:
                        for sql, params in statements:
                            conn.execute(sql, params)
                        conn.execute("COMMIT")
                    except Exception:
                        conn.execute("ROLLBACK")
                        raise
            except sqlite3.Error as e:
                raise PersistenceError(str(e)) from e

    async def write_user(self, user: User) -> None:
        await self._transaction([(
            "INSERT INTO users (id, name, created_at, password_hash) VALUES (?, ?, ?, ?)",
            (user.id.to_json(), user.name, user.created_at, user.password_hash),
        )])

    async def write_conversation(self, conversation: Conversation) -> None:
        await self._transaction([
            (
                "INSERT INTO conversations (id, title, owner_id, created_at) VALUES (?, ?, ?, ?)",
                (
                    conversation.id.to_json(),
                    conversation.title,
                    conversation.owner.to_json(),
                    conversation.created_at,
                ),
            ),
            (
                "INSERT OR IGNORE INTO user_conversation (conversation_id, user_id) VALUES (?, ?)",
                (conversation.id.to_json(), conversation.owner.to_json()),
            ),
        ])

    async def write_message(self, message: Message, previous: Message | None) -> None:
        statements: list[tuple[str, tuple[Any, ...]]] = [(
            """
            INSERT INTO messages (id, conversation_id, author_id, content,
                                  created_at, next_id, previous_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id.to_json(),
                message.conversation.to_json(),
                message.author.to_json(),
                message.content,
                message.created_at,
                _uuid_column(message.next),
                _uuid_column(message.previous),
            ),
        )]
        if previous is not None:
            statements.append((
                "UPDATE messages SET next_id = ? WHERE id = ?",
                (_uuid_column(previous.next), previous.id.to_json()),
            ))
        await self._transaction(statements)

    async def write_membership(self, conversation_id: Uuid, user_id: Uuid) -> None:
        await self._transaction([(
            "INSERT OR IGNORE INTO user_conversation (conversation_id, user_id) VALUES (?, ?)",
            (conversation_id.to_json(), user_id.to_json()),
        )])

    async def load(self) -> StoredState:
        """Read every persisted entity back.

        Returns:
            StoredState with users, conversations and memberships in
            insertion order and messages in chain order

        Raises:
            PersistenceError: If the database cannot be read or holds ids
                that do not parse
        """
        async with self._lock:
            try:
                with self._get_connection() as conn:
                    user_rows = conn.execute("SELECT * FROM users ORDER BY rowid").fetchall()
                    conversation_rows = conn.execute(
                        "SELECT * FROM conversations ORDER BY rowid"
                    ).fetchall()
                    membership_rows = conn.execute(
                        "SELECT conversation_id, user_id FROM user_conversation ORDER BY rowid"
                    ).fetchall()
                    message_rows = conn.execute(
                        "SELECT * FROM messages ORDER BY conversation_id, rowid"
                    ).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to load {self.db_path}: {e}") from e

        chained = _chain_order(message_rows)
        if len(chained) != len(message_rows):
            logger.warning(
                "Skipping messages outside any conversation chain",
                extra={"path": str(self.db_path), "skipped": len(message_rows) - len(chained)},
            )

        try:
            state = StoredState(
                users=[_user_from_row(row) for row in user_rows],
                conversations=[_conversation_from_row(row) for row in conversation_rows],
                memberships=[
                    (Uuid.parse(row["conversation_id"]), Uuid.parse(row["user_id"]))
                    for row in membership_rows
                ],
                messages=[_message_from_row(row) for row in chained],
            )
        except ValueError as e:
            raise PersistenceError(f"Corrupt row in {self.db_path}: {e}") from e

        logger.info(
            "Loaded chat database",
            extra={
                "path": str(self.db_path),
                "users": len(state.users),
                "conversations": len(state.conversations),
                "messages": len(state.messages),
            },
        )
        return state

    async def close(self) -> None:
        pass

    def fetch_rows(self, table: str) -> list[dict[str, Any]]:
        """All rows of a table as dicts (inspection and tests)."""
        if table not in ("users", "conversations", "messages", "user_conversation"):
            raise ValueError(f"Unknown table: {table}")
        with self._get_connection() as conn:
            return [dict(row) for row in conn.execute(f"SELECT * FROM {table}")]
