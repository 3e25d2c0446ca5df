"""Monitored-chat directory (core domain).

Holds the in-memory view of which chats feed the pipeline. Only this object
mutates it; the pipeline and the backfill scanner read it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from core.models import ChatConfig
from core.ports import StoragePort, TransportPort

LOGGER = logging.getLogger(__name__)


class ChatDirectory:
    """Resolve whether a chat is monitored or is the command chat."""

    def __init__(self, storage: StoragePort, configured_names: Iterable[str], command_chat: str) -> None:
        self._storage = storage
        self._configured_names = tuple(name for name in configured_names if name)
        self._command_chat = command_chat
        self._monitored_names: tuple[str, ...] = self._configured_names
        self._monitored_ids: frozenset[str] = frozenset()

    @property
    def monitored_names(self) -> tuple[str, ...]:
        return self._monitored_names

    def matches_configured_name(self, chat_name: str) -> bool:
        return any(name in chat_name for name in self._configured_names)

    def is_command_chat(self, chat_name: Optional[str]) -> bool:
        return bool(self._command_chat and chat_name and self._command_chat in chat_name)

    def is_monitored(self, chat_id: str, chat_name: Optional[str]) -> bool:
        if chat_id in self._monitored_ids:
            return True
        if not chat_name:
            return False
        return any(name in chat_name for name in self._monitored_names)

    def refresh(self) -> list[ChatConfig]:
        """Reload monitored chats from the store."""

        chats = self._storage.list_monitored_chats()
        if chats:
            self._monitored_names = tuple(chat.chat_name for chat in chats)
            self._monitored_ids = frozenset(chat.chat_id for chat in chats)
        else:
            # Nothing selected yet; the configured names still apply.
            self._monitored_names = self._configured_names
            self._monitored_ids = frozenset()
        LOGGER.info("Monitored chats: %s", ", ".join(self._monitored_names) or "(none)")
        return chats

    async def discover(self, transport: TransportPort, timeout: float) -> int:
        """Record every chat the transport knows about; returns the count."""

        chats = await asyncio.wait_for(transport.list_chats(), timeout=timeout)
        for chat in chats:
            self._storage.upsert_chat_config(
                ChatConfig(
                    chat_id=chat.chat_id,
                    chat_name=chat.chat_name,
                    is_monitored=self.matches_configured_name(chat.chat_name),
                    is_group=chat.is_group,
                    participant_count=chat.participant_count,
                )
            )
        LOGGER.info("Discovered %s chats", len(chats))
        return len(chats)
