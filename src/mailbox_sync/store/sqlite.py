"""SQLite-backed document store.

Messages are stored as JSON documents keyed by ``(mailbox, id)`` with a few
projection columns kept alongside for filtering and ordering. All filtering
happens in SQL; callers never post-filter in memory.

The sqlite3 module is synchronous. Each public coroutine runs its query with
``asyncio.to_thread`` on a short-lived connection.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from mailbox_sync.exceptions import StoreError
from mailbox_sync.models import (
    Account,
    Category,
    EnrichmentMetadata,
    FocusItem,
    Message,
    MessageFilters,
    Owner,
)

logger = structlog.get_logger()


_SCHEMA_VERSION = 1


def _utc_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


class SqliteMessageStore:
    """Document store for messages, accounts and owners."""

    def __init__(self, db_path: Path) -> None:
        """Create a store.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = db_path

    def initialize(self) -> None:
        """Create or upgrade the store schema."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("message_store_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise StoreError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    # Owners

    async def get_owner(self, external_id: str) -> Owner | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT doc FROM owners WHERE external_id = ?",
            (str(external_id),),
        )
        return None if row is None else Owner.model_validate_json(row[0])

    async def save_owner(self, owner: Owner) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO owners (id, external_id, doc) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET external_id=excluded.external_id, doc=excluded.doc
            """,
            (owner.id, owner.external_id, owner.model_dump_json()),
        )

    # Accounts

    async def get_account(self, owner_id: str, mailbox: str) -> Account | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT doc FROM accounts WHERE owner_id = ? AND mailbox = ?",
            (owner_id, mailbox),
        )
        return None if row is None else Account.model_validate_json(row[0])

    async def save_account(self, account: Account) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO accounts (owner_id, mailbox, doc) VALUES (?, ?, ?)
            ON CONFLICT(owner_id, mailbox) DO UPDATE SET doc=excluded.doc
            """,
            (account.owner_id, account.mailbox, account.model_dump_json()),
        )

    async def save_focus_items(self, owner_id: str, mailbox: str, items: list[FocusItem]) -> None:
        account = await self.get_account(owner_id, mailbox)
        if account is None:
            account = Account(owner_id=owner_id, mailbox=mailbox)
        await self.save_account(account.model_copy(update={"focus_items": list(items)}))

    async def save_categories(
        self, owner_id: str, mailbox: str, categories: list[Category]
    ) -> None:
        account = await self.get_account(owner_id, mailbox)
        if account is None:
            account = Account(owner_id=owner_id, mailbox=mailbox)
        await self.save_account(account.model_copy(update={"categories": list(categories)}))

    # Messages

    async def find_message(self, mailbox: str, message_id: str) -> Message | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT doc FROM messages WHERE mailbox = ? AND id = ?",
            (mailbox, message_id),
        )
        return None if row is None else Message.model_validate_json(row[0])

    async def upsert_message(self, message: Message) -> Message:
        await asyncio.to_thread(self._upsert_message_sync, message)
        return message

    async def find_messages(
        self,
        owner_id: str,
        mailbox: str,
        folder: str,
        filters: MessageFilters | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> list[Message]:
        where, params = self._filter_clause(owner_id, mailbox, folder, filters)
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT doc FROM messages WHERE {where} ORDER BY timestamp_iso DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [Message.model_validate_json(r[0]) for r in rows]

    async def count_messages(
        self,
        owner_id: str,
        mailbox: str,
        folder: str,
        filters: MessageFilters | None = None,
    ) -> int:
        where, params = self._filter_clause(owner_id, mailbox, folder, filters)
        row = await asyncio.to_thread(
            self._fetchone, f"SELECT COUNT(*) FROM messages WHERE {where}", params
        )
        return int(row[0] or 0) if row else 0

    async def clear_enrichment(self, mailbox: str, message_ids: list[str]) -> int:
        """Drop enrichment and reset ``is_processed`` for many messages in one transaction."""

        if not message_ids:
            return 0
        return await asyncio.to_thread(self._clear_enrichment_sync, mailbox, list(message_ids))

    async def update_flags(
        self,
        mailbox: str,
        message_id: str,
        *,
        read: bool | None = None,
        important: bool | None = None,
    ) -> Message | None:
        message = await self.find_message(mailbox, message_id)
        if message is None:
            return None
        update: dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if read is not None:
            update["read"] = read
        if important is not None:
            update["important"] = important
        return await self.upsert_message(message.model_copy(update=update))

    async def update_category(self, mailbox: str, message_id: str, category: str) -> Message | None:
        """Overwrite the enrichment category, keeping the rest of the metadata."""

        message = await self.find_message(mailbox, message_id)
        if message is None:
            return None
        if message.enrichment is None:
            enrichment = EnrichmentMetadata(category=category)
        else:
            enrichment = message.enrichment.model_copy(update={"category": category})
        return await self.upsert_message(
            message.model_copy(
                update={"enrichment": enrichment, "updated_at": datetime.now(timezone.utc)}
            )
        )

    async def delete_message(self, mailbox: str, message_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute,
            "DELETE FROM messages WHERE mailbox = ? AND id = ?",
            (mailbox, message_id),
        )
        return deleted > 0

    async def find_by_focus_folder(
        self,
        owner_id: str,
        mailbox: str,
        focus_folder: str,
        offset: int = 0,
        limit: int = 20,
    ) -> list[Message]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT doc FROM messages
            WHERE owner_id = ? AND mailbox = ? AND focus_folder = ?
            ORDER BY timestamp_iso DESC LIMIT ? OFFSET ?
            """,
            (owner_id, mailbox, focus_folder, limit, offset),
        )
        return [Message.model_validate_json(r[0]) for r in rows]

    async def count_by_focus_folder(self, owner_id: str, mailbox: str, focus_folder: str) -> int:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT COUNT(*) FROM messages WHERE owner_id = ? AND mailbox = ? AND focus_folder = ?",
            (owner_id, mailbox, focus_folder),
        )
        return int(row[0] or 0) if row else 0

    # Internals

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            yield conn
        finally:
            conn.close()

    def _execute(self, sql: str, params: tuple[Any, ...]) -> int:
        try:
            with self._connect() as conn:
                cur = conn.execute(sql, params)
                conn.commit()
                return cur.rowcount
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    def _fetchone(self, sql: str, params: tuple[Any, ...]) -> tuple[Any, ...] | None:
        try:
            with self._connect() as conn:
                return conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    def _fetchall(self, sql: str, params: tuple[Any, ...]) -> list[tuple[Any, ...]]:
        try:
            with self._connect() as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    def _upsert_message_sync(self, message: Message) -> None:
        meta = message.enrichment
        self._execute(
            """
            INSERT INTO messages (
                mailbox, id, owner_id, folder, focus_folder,
                category, priority, sentiment, is_processed, timestamp_iso, doc
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(mailbox, id) DO UPDATE SET
                owner_id=excluded.owner_id,
                folder=excluded.folder,
                focus_folder=excluded.focus_folder,
                category=excluded.category,
                priority=excluded.priority,
                sentiment=excluded.sentiment,
                is_processed=excluded.is_processed,
                timestamp_iso=excluded.timestamp_iso,
                doc=excluded.doc
            """,
            (
                message.mailbox,
                message.id,
                message.owner_id,
                message.folder,
                message.focus_folder,
                meta.category if meta else None,
                meta.priority.value if meta and meta.priority else None,
                meta.sentiment.value if meta and meta.sentiment else None,
                1 if message.is_processed else 0,
                _utc_iso(message.timestamp),
                message.model_dump_json(),
            ),
        )

    def _clear_enrichment_sync(self, mailbox: str, message_ids: list[str]) -> int:
        placeholders = ",".join("?" for _ in message_ids)
        now = datetime.now(timezone.utc)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT id, doc FROM messages WHERE mailbox = ? AND id IN ({placeholders})",
                    (mailbox, *message_ids),
                ).fetchall()
                updates = []
                for message_id, doc in rows:
                    data = json.loads(doc)
                    data["enrichment"] = None
                    data["is_processed"] = False
                    data["updated_at"] = now.isoformat()
                    updates.append((json.dumps(data), mailbox, message_id))
                conn.executemany(
                    """
                    UPDATE messages
                    SET doc = ?, category = NULL, priority = NULL, sentiment = NULL, is_processed = 0
                    WHERE mailbox = ? AND id = ?
                    """,
                    updates,
                )
                conn.commit()
                return len(updates)
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc

    def _filter_clause(
        self,
        owner_id: str,
        mailbox: str,
        folder: str,
        filters: MessageFilters | None,
    ) -> tuple[str, tuple[Any, ...]]:
        clauses = ["owner_id = ?", "mailbox = ?", "folder = ?"]
        params: list[Any] = [owner_id, mailbox, folder]
        if filters is not None:
            if filters.category is not None:
                clauses.append("category = ?")
                params.append(filters.category)
            if filters.priority is not None:
                clauses.append("priority = ?")
                params.append(filters.priority.value)
            if filters.sentiment is not None:
                clauses.append("sentiment = ?")
                params.append(filters.sentiment.value)
        return " AND ".join(clauses), tuple(params)

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS owners (
                id TEXT PRIMARY KEY,
                external_id TEXT NOT NULL UNIQUE,
                doc TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS accounts (
                owner_id TEXT NOT NULL,
                mailbox TEXT NOT NULL,
                doc TEXT NOT NULL,
                PRIMARY KEY (owner_id, mailbox)
            );

            CREATE TABLE IF NOT EXISTS messages (
                mailbox TEXT NOT NULL,
                id TEXT NOT NULL,
                owner_id TEXT NOT NULL,
                folder TEXT NOT NULL,
                focus_folder TEXT,
                category TEXT,
                priority TEXT,
                sentiment TEXT,
                is_processed INTEGER NOT NULL,
                timestamp_iso TEXT NOT NULL,
                doc TEXT NOT NULL,
                PRIMARY KEY (mailbox, id)
            );

            CREATE INDEX IF NOT EXISTS idx_messages_folder
                ON messages(owner_id, mailbox, folder, timestamp_iso);

            CREATE INDEX IF NOT EXISTS idx_messages_focus_folder
                ON messages(owner_id, mailbox, focus_folder);

            CREATE INDEX IF NOT EXISTS idx_messages_category
                ON messages(owner_id, category);
            """
        )
