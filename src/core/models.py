"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

TASK_TYPES = ("event", "payment", "reminder", "request")


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Message:
    """A chat message as observed from the transport."""

    fingerprint: str
    chat_id: str
    chat_name: str
    sender_id: str
    sender_name: str
    body: str
    timestamp: datetime
    has_media: bool = False


@dataclass(frozen=True)
class ProcessedMessageRecord:
    """Dedup marker: one row per fingerprint, ever."""

    fingerprint: str
    chat_id: str
    had_indicators: bool
    was_analyzed: bool
    processed_at: datetime


@dataclass(frozen=True)
class Task:
    """Persisted classification result for a message that is a task."""

    fingerprint: str
    chat_id: str
    chat_name: str
    sender_name: str
    original_text: str
    is_task: bool
    types: tuple[str, ...]
    summary: Optional[str]
    event_time: Optional[datetime]
    amount: Optional[str]
    link: Optional[str]
    confidence: Optional[float]
    status: TaskStatus = TaskStatus.PENDING
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class ChatConfig:
    """Directory entry for a chat; `is_monitored` gates the pipeline."""

    chat_id: str
    chat_name: str
    is_monitored: bool = False
    is_group: bool = True
    participant_count: int = 0


@dataclass(frozen=True)
class SessionCheckpoint:
    """Singleton row; `last_read` is the backfill cursor."""

    login_timestamp: datetime
    last_read: datetime


@dataclass(frozen=True)
class ProcessingStats:
    total_messages: int = 0
    messages_with_indicators: int = 0
    messages_analyzed: int = 0
    tasks_found: int = 0


@dataclass
class BackfillReport:
    """Summary of one startup scan."""

    chats_total: int = 0
    chats_scanned: int = 0
    messages_found: int = 0
    tasks_saved: int = 0
    checkpoint_advanced: bool = False
    per_chat: dict[str, int] = field(default_factory=dict)
