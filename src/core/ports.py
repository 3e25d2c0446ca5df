"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, classification, transport and
session-material adapters so that the core can be reused with different
backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from core.models import ChatConfig, Message, SessionCheckpoint, Task


class StoragePort(Protocol):
    """Storage operations required by the core pipeline."""

    def is_processed(self, fingerprint: str) -> bool:
        ...

    def mark_processed(
        self, fingerprint: str, chat_id: str, had_indicators: bool, was_analyzed: bool
    ) -> None:
        ...

    def save_task(self, task: Task) -> bool:
        ...

    def upsert_chat_config(self, chat: ChatConfig) -> None:
        ...

    def list_monitored_chats(self) -> list[ChatConfig]:
        ...

    def get_checkpoint(self) -> Optional[SessionCheckpoint]:
        ...

    def advance_checkpoint(self, timestamp: datetime) -> None:
        ...


class ClassifierBackend(Protocol):
    """Raw access to the language-understanding service.

    Returns the service's JSON text; decoding and failure handling belong to
    the gateway.
    """

    async def complete(self, text: str, reference_date: str) -> str:
        ...


class TransportPort(Protocol):
    """Calls the core makes into the chat transport.

    Progress is reported back as events on the shared EventChannel, so
    `initialize` returns as soon as the session has been started.
    """

    async def initialize(self) -> None:
        ...

    async def destroy(self) -> None:
        ...

    def abort(self) -> None:
        ...

    async def list_chats(self) -> list[ChatConfig]:
        ...

    async def get_chat(self, chat_id: str) -> Optional[ChatConfig]:
        ...

    async def fetch_messages(self, chat_id: str, limit: int) -> list[Message]:
        ...


class SessionMaterialPort(Protocol):
    """Opaque persisted authentication state for the transport."""

    def is_healthy(self, now: datetime) -> bool:
        ...

    def clear(self) -> bool:
        ...
