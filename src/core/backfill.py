"""Startup backfill scanner (core domain).

Covers the time the process was offline: every monitored chat is walked back
to the checkpoint (capped by the lookback window) and the messages found go
through the same pipeline as live ones. The checkpoint only moves after a
completed scan, and always to "now".
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.chat_directory import ChatDirectory
from core.config import BackfillConfig
from core.models import BackfillReport, ChatConfig, Message
from core.ports import StoragePort, TransportPort
from core.processor import MessageProcessor, Outcome

LOGGER = logging.getLogger(__name__)


def compute_cutoff(checkpoint: datetime, now: datetime, max_lookback_days: int) -> datetime:
    """The oldest timestamp the scan still considers (inclusive)."""

    return max(checkpoint, now - timedelta(days=max_lookback_days))


class BackfillScanner:
    """Runs the startup catch-up scan once."""

    def __init__(
        self,
        storage: StoragePort,
        transport: TransportPort,
        directory: ChatDirectory,
        processor: MessageProcessor,
        config: BackfillConfig,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._storage = storage
        self._transport = transport
        self._directory = directory
        self._processor = processor
        self._config = config
        self._clock = clock
        self._started = False

    async def run_once(self) -> Optional[BackfillReport]:
        """Scan at most once per process; later calls return None."""

        if self._started:
            return None
        self._started = True
        return await self.scan()

    async def scan(self) -> Optional[BackfillReport]:
        checkpoint = self._storage.get_checkpoint()
        if checkpoint is None:
            LOGGER.info("No previous read timestamp found, skipping startup scan")
            return None

        chats = self._directory.refresh()
        if not chats:
            LOGGER.info("No monitored chats found, skipping startup scan")
            return BackfillReport()

        now = self._clock()
        cutoff = compute_cutoff(checkpoint.last_read, now, self._config.max_lookback_days)
        if cutoff > checkpoint.last_read:
            LOGGER.info("Only scanning the last %s days", self._config.max_lookback_days)

        report = BackfillReport(chats_total=len(chats))
        LOGGER.info("Scanning %s monitored chats for messages since %s", len(chats), cutoff.isoformat())

        for index, chat in enumerate(chats, start=1):
            LOGGER.info("[%s/%s] Scanning %s", index, len(chats), chat.chat_name)
            try:
                current = await asyncio.wait_for(
                    self._transport.get_chat(chat.chat_id),
                    timeout=self._config.scan_timeout_seconds,
                )
                if current is None:
                    LOGGER.warning("Chat %s (%s) is no longer available, skipping", chat.chat_name, chat.chat_id)
                    continue
                messages = await self.fetch_since(chat.chat_id, cutoff)
            except Exception as exc:
                LOGGER.error("Error scanning %s: %s", chat.chat_name, exc)
                continue

            report.chats_scanned += 1
            report.messages_found += len(messages)
            report.per_chat[chat.chat_id] = len(messages)
            if messages:
                LOGGER.info("Found %s messages in %s", len(messages), chat.chat_name)
                report.tasks_saved += await self._process(chat, messages)
            else:
                LOGGER.info("No new messages in %s", chat.chat_name)

            progress = round(index / len(chats) * 100)
            LOGGER.info("Progress: %s%% (%s/%s chats)", progress, index, len(chats))

        # Chats that failed above are not retried next start: the checkpoint still
        # moves when any chat produced messages, and their gap is lost.
        if report.messages_found > 0:
            self._storage.advance_checkpoint(self._clock())
            report.checkpoint_advanced = True

        LOGGER.info(
            "Startup scan complete: chats=%s/%s, messages=%s, tasks=%s",
            report.chats_scanned,
            report.chats_total,
            report.messages_found,
            report.tasks_saved,
        )
        return report

    async def fetch_since(self, chat_id: str, cutoff: datetime) -> list[Message]:
        """Fetch every message at or after the cutoff, growing the window as needed."""

        limit = self._config.fetch_limit
        rounds = 1
        while True:
            messages = await asyncio.wait_for(
                self._transport.fetch_messages(chat_id, limit),
                timeout=self._config.scan_timeout_seconds,
            )
            recent = [message for message in messages if message.timestamp >= cutoff]
            more_available = len(recent) == len(messages) and len(messages) == limit
            if not more_available:
                break
            if rounds >= self._config.max_fetch_rounds:
                LOGGER.warning("Stopped growing fetch window for %s at %s messages", chat_id, limit)
                break
            limit += self._config.fetch_limit
            rounds += 1

        return sorted(recent, key=lambda message: message.timestamp)

    async def _process(self, chat: ChatConfig, messages: list[Message]) -> int:
        saved = 0
        for message in messages:
            outcome = await self._processor.handle_safely(message)
            if outcome is Outcome.TASK_SAVED:
                saved += 1
        if saved:
            LOGGER.info("Detected %s tasks in %s", saved, chat.chat_name)
        return saved
