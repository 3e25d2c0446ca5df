"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database. Every
uniqueness guarantee the pipeline relies on is a table constraint, not an
application-level check.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from core.models import ChatConfig, ProcessedMessageRecord, ProcessingStats, SessionCheckpoint, Task, TaskStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - processed_messages: one row per fingerprint (dedup boundary)
        - tasks: classification results keyed by fingerprint
        - chat_configs: discovered chats and their monitored flag
        - bot_sessions: singleton row with login and last-read timestamps
        """

        with self._connect() as conn:
            # processed_messages is written on receipt and upgraded once the
            # message has been sent to the classifier.
            # Fields:
            # - message_id: fingerprint (UNIQUE)
            # - had_task_indicators / was_analyzed: only ever go 0 -> 1
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS processed_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id TEXT UNIQUE NOT NULL,
                    chat_id TEXT NOT NULL,
                    processed_at TIMESTAMP NOT NULL,
                    had_task_indicators INTEGER NOT NULL DEFAULT 0,
                    was_analyzed INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            # tasks holds only messages the classifier called a task.
            # Fields:
            # - message_id: fingerprint shared with processed_messages (UNIQUE)
            # - task_types: JSON array of event/payment/reminder/request
            # - status: pending until a collaborator completes it
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id TEXT UNIQUE NOT NULL,
                    chat_id TEXT NOT NULL,
                    chat_name TEXT,
                    sender_name TEXT,
                    original_text TEXT NOT NULL,
                    is_task INTEGER NOT NULL DEFAULT 0,
                    task_types TEXT NOT NULL DEFAULT '[]',
                    summary TEXT,
                    event_time TIMESTAMP,
                    amount TEXT,
                    link TEXT,
                    confidence REAL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    completed_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    processed_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chat_configs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    chat_id TEXT UNIQUE NOT NULL,
                    chat_name TEXT NOT NULL,
                    is_monitored INTEGER NOT NULL DEFAULT 0,
                    is_group INTEGER NOT NULL DEFAULT 1,
                    participant_count INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )
            # bot_sessions is pinned to id = 1 so there can only be one cursor.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bot_sessions (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    login_timestamp TIMESTAMP NOT NULL,
                    last_read_timestamp TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_chat_id ON tasks(chat_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_processed_messages_chat_id ON processed_messages(chat_id)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_chat_configs_monitored ON chat_configs(is_monitored)")

    def ping(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            return False
        return True

    # Deduplication.

    def is_processed(self, fingerprint: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM processed_messages WHERE message_id = ?",
                (fingerprint,),
            ).fetchone()
        return row is not None

    def mark_processed(self, fingerprint: str, chat_id: str, had_indicators: bool, was_analyzed: bool) -> None:
        """Insert the dedup row, or upgrade its flags if it already exists."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO processed_messages (
                    message_id, chat_id, processed_at, had_task_indicators, was_analyzed
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    had_task_indicators = MAX(had_task_indicators, excluded.had_task_indicators),
                    was_analyzed = MAX(was_analyzed, excluded.was_analyzed)
                """,
                (fingerprint, chat_id, _now().isoformat(), int(had_indicators), int(was_analyzed)),
            )

    def get_processed(self, fingerprint: str) -> Optional[ProcessedMessageRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM processed_messages WHERE message_id = ?",
                (fingerprint,),
            ).fetchone()
        if row is None:
            return None
        return ProcessedMessageRecord(
            fingerprint=row["message_id"],
            chat_id=row["chat_id"],
            had_indicators=bool(row["had_task_indicators"]),
            was_analyzed=bool(row["was_analyzed"]),
            processed_at=_from_text(row["processed_at"]),
        )

    # Tasks.

    def save_task(self, task: Task) -> bool:
        """Insert a task; returns False if one already exists for the fingerprint."""

        now = _now().isoformat()
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO tasks (
                    message_id, chat_id, chat_name, sender_name, original_text,
                    is_task, task_types, summary, event_time, amount, link,
                    confidence, status, created_at, processed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.fingerprint,
                    task.chat_id,
                    task.chat_name,
                    task.sender_name,
                    task.original_text,
                    int(task.is_task),
                    json.dumps(list(task.types)),
                    task.summary,
                    _to_text(task.event_time),
                    task.amount,
                    task.link,
                    task.confidence,
                    TaskStatus.PENDING.value,
                    _to_text(task.created_at) or now,
                    now,
                ),
            )
            return cur.rowcount == 1

    def list_tasks(self, status: Optional[TaskStatus] = None, limit: int = 50) -> list[Task]:
        query = "SELECT * FROM tasks WHERE is_task = 1"
        params: list = []
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._task_from_row(row) for row in rows]

    def get_task(self, fingerprint: str) -> Optional[Task]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE message_id = ?", (fingerprint,)).fetchone()
        return self._task_from_row(row) if row else None

    def complete_task(self, fingerprint: str) -> bool:
        """Mark a pending task completed. Completed tasks stay completed."""

        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE tasks SET status = ?, completed_at = ?
                WHERE message_id = ? AND status = ?
                """,
                (TaskStatus.COMPLETED.value, _now().isoformat(), fingerprint, TaskStatus.PENDING.value),
            )
            return cur.rowcount == 1

    @staticmethod
    def _task_from_row(row: sqlite3.Row) -> Task:
        return Task(
            fingerprint=row["message_id"],
            chat_id=row["chat_id"],
            chat_name=row["chat_name"] or "",
            sender_name=row["sender_name"] or "",
            original_text=row["original_text"],
            is_task=bool(row["is_task"]),
            types=tuple(json.loads(row["task_types"] or "[]")),
            summary=row["summary"],
            event_time=_from_text(row["event_time"]),
            amount=row["amount"],
            link=row["link"],
            confidence=row["confidence"],
            status=TaskStatus(row["status"]),
            created_at=_from_text(row["created_at"]),
            completed_at=_from_text(row["completed_at"]),
        )

    def processing_stats(self) -> ProcessingStats:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_messages,
                    COALESCE(SUM(pm.had_task_indicators), 0) AS messages_with_indicators,
                    COALESCE(SUM(pm.was_analyzed), 0) AS messages_analyzed,
                    COUNT(t.id) AS tasks_found
                FROM processed_messages pm
                LEFT JOIN tasks t ON pm.message_id = t.message_id AND t.is_task = 1
                """
            ).fetchone()
        return ProcessingStats(
            total_messages=int(row["total_messages"]),
            messages_with_indicators=int(row["messages_with_indicators"]),
            messages_analyzed=int(row["messages_analyzed"]),
            tasks_found=int(row["tasks_found"]),
        )

    # Chat directory.

    def upsert_chat_config(self, chat: ChatConfig) -> None:
        """Insert or refresh a chat; an existing monitored flag is kept."""

        now = _now().isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO chat_configs (
                    chat_id, chat_name, is_monitored, is_group, participant_count, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(chat_id) DO UPDATE SET
                    chat_name = excluded.chat_name,
                    is_group = excluded.is_group,
                    participant_count = excluded.participant_count,
                    updated_at = excluded.updated_at
                """,
                (
                    chat.chat_id,
                    chat.chat_name,
                    int(chat.is_monitored),
                    int(chat.is_group),
                    chat.participant_count,
                    now,
                    now,
                ),
            )

    def list_chats(self) -> list[ChatConfig]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM chat_configs ORDER BY is_monitored DESC, chat_name ASC"
            ).fetchall()
        return [self._chat_from_row(row) for row in rows]

    def list_monitored_chats(self) -> list[ChatConfig]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM chat_configs WHERE is_monitored = 1 ORDER BY chat_name"
            ).fetchall()
        return [self._chat_from_row(row) for row in rows]

    def set_monitored(self, chat_id: str, is_monitored: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE chat_configs SET is_monitored = ?, updated_at = ? WHERE chat_id = ?",
                (int(is_monitored), _now().isoformat(), chat_id),
            )

    def replace_monitored(self, chat_ids: list[str]) -> None:
        """Monitor exactly the given chats."""

        now = _now().isoformat()
        with self._connect() as conn:
            conn.execute("UPDATE chat_configs SET is_monitored = 0, updated_at = ?", (now,))
            conn.executemany(
                "UPDATE chat_configs SET is_monitored = 1, updated_at = ? WHERE chat_id = ?",
                [(now, chat_id) for chat_id in chat_ids],
            )

    @staticmethod
    def _chat_from_row(row: sqlite3.Row) -> ChatConfig:
        return ChatConfig(
            chat_id=row["chat_id"],
            chat_name=row["chat_name"],
            is_monitored=bool(row["is_monitored"]),
            is_group=bool(row["is_group"]),
            participant_count=int(row["participant_count"]),
        )

    # Session checkpoint.

    def init_session(self, now: Optional[datetime] = None) -> SessionCheckpoint:
        """Create the checkpoint row on first run, refresh the login time after."""

        stamp = (now or _now()).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO bot_sessions (id, login_timestamp, last_read_timestamp, updated_at)
                VALUES (1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    login_timestamp = excluded.login_timestamp,
                    updated_at = excluded.updated_at
                """,
                (stamp, stamp, stamp),
            )
        checkpoint = self.get_checkpoint()
        if checkpoint is None:
            raise RuntimeError("bot_sessions row missing after initialization")
        return checkpoint

    def get_checkpoint(self) -> Optional[SessionCheckpoint]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT login_timestamp, last_read_timestamp FROM bot_sessions WHERE id = 1"
            ).fetchone()
        if row is None:
            return None
        return SessionCheckpoint(
            login_timestamp=_from_text(row["login_timestamp"]),
            last_read=_from_text(row["last_read_timestamp"]),
        )

    def advance_checkpoint(self, timestamp: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE bot_sessions SET last_read_timestamp = ?, updated_at = ? WHERE id = 1",
                (timestamp.isoformat(), _now().isoformat()),
            )
