"""
SQLite-backed chat history store.

Backed by ``aiosqlite``; every write goes through one lock because SQLite
allows a single writer.

This is the persistence collaborator the orchestrator and conductor save
through.  Messages carry a stable ``message_id``; saving the same id again
rewrites that row in place, so a conductor phase that revises its
provisional assistant message supersedes it rather than adding a
duplicate, and the message keeps its original position in the chat.

``init()`` brings the schema up to ``SCHEMA_VERSION``, recorded in the
``schema_version`` table.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from chatbridge.llm.types import Message, ToolCall

# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 1

MIGRATIONS: dict[int, list[str]] = {
    1: [
        """CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS chats (
            chat_id TEXT PRIMARY KEY,
            title TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            metadata TEXT NOT NULL DEFAULT '{}'
        )""",
        """CREATE TABLE IF NOT EXISTS messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            chat_id TEXT NOT NULL,
            message_id TEXT NOT NULL UNIQUE,
            role TEXT NOT NULL,
            content TEXT NOT NULL,
            tool_calls TEXT,
            tool_call_id TEXT,
            tool_name TEXT,
            debug TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (chat_id) REFERENCES chats(chat_id) ON DELETE CASCADE
        )""",
        """CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id)""",
    ],
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ChatStore:
    """
    Async SQLite store for chats and their messages.

    Usage::

        store = ChatStore("~/.chatbridge/history.db")
        await store.init()
        chat_id = await store.create_chat("Weather")
        await store.save(chat_id, message)
        messages = await store.load(chat_id)
        await store.close()
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Open the database and ensure the schema is up to date."""
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    # ------------------------------------------------------------------
    # Migration runner
    # ------------------------------------------------------------------

    async def get_schema_version(self) -> int:
        """Return the current schema version, or 0 if not initialised."""
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if await cursor.fetchone() is None:
            return 0
        cursor = await self._db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        return int(row[0]) if row is not None else 0

    async def _run_migrations(self) -> None:
        assert self._db is not None
        current = await self.get_schema_version()
        if current >= SCHEMA_VERSION:
            return

        for version in range(current + 1, SCHEMA_VERSION + 1):
            stmts = MIGRATIONS.get(version)
            if stmts is None:
                raise RuntimeError(f"Missing migration for schema version {version}")
            for stmt in stmts:
                await self._db.execute(stmt)
            await self._db.execute("DELETE FROM schema_version")
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )

        await self._db.commit()

    # ------------------------------------------------------------------
    # Chat CRUD
    # ------------------------------------------------------------------

    async def create_chat(self, title: str = "", metadata: dict | None = None) -> str:
        """Create a new chat and return its id."""
        assert self._db is not None
        chat_id = str(uuid.uuid4())
        now = _now()
        async with self._write_lock:
            await self._db.execute(
                """INSERT INTO chats (chat_id, title, created_at, updated_at, metadata)
                   VALUES (?, ?, ?, ?, ?)""",
                (chat_id, title, now, now, json.dumps(metadata or {})),
            )
            await self._db.commit()
        return chat_id

    async def get_chat(self, chat_id: str) -> dict | None:
        """Return chat metadata with its message count, or ``None``."""
        assert self._db is not None
        cursor = await self._db.execute(
            """SELECT c.chat_id, c.title, c.created_at, c.updated_at, c.metadata,
                      COUNT(m.id)
               FROM chats c LEFT JOIN messages m ON m.chat_id = c.chat_id
               WHERE c.chat_id = ?
               GROUP BY c.chat_id""",
            (chat_id,),
        )
        row = await cursor.fetchone()
        return _chat_row(row) if row is not None else None

    async def list_chats(self) -> list[dict]:
        """Return all chats, most recently updated first."""
        assert self._db is not None
        cursor = await self._db.execute(
            """SELECT c.chat_id, c.title, c.created_at, c.updated_at, c.metadata,
                      COUNT(m.id)
               FROM chats c LEFT JOIN messages m ON m.chat_id = c.chat_id
               GROUP BY c.chat_id
               ORDER BY c.updated_at DESC"""
        )
        return [_chat_row(row) for row in await cursor.fetchall()]

    async def rename_chat(self, chat_id: str, title: str) -> None:
        assert self._db is not None
        async with self._write_lock:
            await self._db.execute(
                "UPDATE chats SET title = ?, updated_at = ? WHERE chat_id = ?",
                (title, _now(), chat_id),
            )
            await self._db.commit()

    async def delete_chat(self, chat_id: str) -> bool:
        """Delete a chat and its messages.  Returns ``False`` if it did not exist."""
        assert self._db is not None
        async with self._write_lock:
            await self._db.execute("DELETE FROM messages WHERE chat_id = ?", (chat_id,))
            cursor = await self._db.execute(
                "DELETE FROM chats WHERE chat_id = ?", (chat_id,)
            )
            await self._db.commit()
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def save(
        self,
        chat_id: str,
        message: Message,
        debug: dict[str, Any] | None = None,
    ) -> None:
        """
        Persist *message* under *chat_id*.

        A message whose ``message_id`` was saved before is updated in place
        (content, tool calls, debug blob); otherwise it is appended.  The
        chat row is created on first use.
        """
        assert self._db is not None
        now = _now()
        tool_calls = (
            json.dumps([tc.to_dict() for tc in message.tool_calls])
            if message.tool_calls
            else None
        )
        debug_json = json.dumps(debug) if debug is not None else None

        async with self._write_lock:
            await self._db.execute(
                """INSERT INTO chats (chat_id, title, created_at, updated_at, metadata)
                   VALUES (?, '', ?, ?, '{}')
                   ON CONFLICT(chat_id) DO UPDATE SET updated_at = excluded.updated_at""",
                (chat_id, now, now),
            )
            await self._db.execute(
                """INSERT INTO messages
                   (chat_id, message_id, role, content, tool_calls, tool_call_id,
                    tool_name, debug, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(message_id) DO UPDATE SET
                       content = excluded.content,
                       tool_calls = excluded.tool_calls,
                       debug = COALESCE(excluded.debug, messages.debug),
                       updated_at = excluded.updated_at""",
                (
                    chat_id,
                    message.message_id,
                    message.role,
                    message.content_to_json(),
                    tool_calls,
                    message.tool_call_id,
                    message.tool_name,
                    debug_json,
                    now,
                    now,
                ),
            )
            await self._db.commit()

    async def load(self, chat_id: str) -> list[Message]:
        """Return the chat's messages in the order they were first saved."""
        assert self._db is not None
        cursor = await self._db.execute(
            """SELECT message_id, role, content, tool_calls, tool_call_id, tool_name
               FROM messages WHERE chat_id = ? ORDER BY id ASC""",
            (chat_id,),
        )
        messages: list[Message] = []
        for row in await cursor.fetchall():
            tool_calls = (
                [ToolCall.from_dict(tc) for tc in json.loads(row[3])] if row[3] else None
            )
            messages.append(
                Message(
                    role=row[1],
                    content=Message.content_from_json(row[2]),
                    tool_calls=tool_calls,
                    tool_call_id=row[4],
                    tool_name=row[5],
                    message_id=row[0],
                )
            )
        return messages

    async def get_debug(self, chat_id: str) -> list[dict]:
        """Return the debug blobs saved with the chat's messages, in order."""
        assert self._db is not None
        cursor = await self._db.execute(
            """SELECT message_id, debug FROM messages
               WHERE chat_id = ? AND debug IS NOT NULL ORDER BY id ASC""",
            (chat_id,),
        )
        return [
            {"message_id": row[0], "debug": json.loads(row[1])}
            for row in await cursor.fetchall()
        ]


def _chat_row(row: Any) -> dict:
    return {
        "chat_id": row[0],
        "title": row[1],
        "created_at": row[2],
        "updated_at": row[3],
        "metadata": json.loads(row[4]),
        "message_count": row[5],
    }
