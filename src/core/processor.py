"""Core message processing pipeline.

This module is integration-agnostic. It only relies on ports for storage and
classification, so live events and the startup backfill share one path.

Order per message:
1) Fast-exit for unmonitored chats, the command chat, commands, short text
2) Dedup check on the fingerprint
3) Indicator pre-filter, recorded on the processed row
4) Classification (rate limited, bounded by a timeout)
5) Insert-or-ignore the task keyed by fingerprint
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from core.chat_directory import ChatDirectory
from core.classification import Classification, is_task
from core.classifier import ClassifierGateway
from core.config import PipelineConfig
from core.indicators import has_indicators, match_indicators
from core.models import Message, Task
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)

COMMAND_PREFIX = "/"


class Outcome(str, Enum):
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    NO_INDICATORS = "no_indicators"
    NOT_A_TASK = "not_a_task"
    TASK_SAVED = "task_saved"
    FAILED = "failed"


def build_task(message: Message, result: Classification) -> Task:
    return Task(
        fingerprint=message.fingerprint,
        chat_id=message.chat_id,
        chat_name=message.chat_name,
        sender_name=message.sender_name or "Unknown",
        original_text=message.body,
        is_task=result.is_task,
        types=tuple(result.types),
        summary=result.summary,
        event_time=result.event_time,
        amount=result.amount,
        link=result.link,
        confidence=result.confidence,
    )


class MessageProcessor:
    """Orchestrates pre-filter, dedup, classification, and persistence."""

    def __init__(
        self,
        storage: StoragePort,
        directory: ChatDirectory,
        gateway: ClassifierGateway,
        config: PipelineConfig,
        classify_timeout: Optional[float] = None,
    ) -> None:
        self._storage = storage
        self._directory = directory
        self._gateway = gateway
        self._config = config
        self._classify_timeout = classify_timeout

    def accepts(self, message: Message) -> bool:
        """Return True if the message belongs in task detection at all."""

        if self._directory.is_command_chat(message.chat_name):
            return False
        if not self._directory.is_monitored(message.chat_id, message.chat_name):
            return False
        text = message.body.strip()
        if text.startswith(COMMAND_PREFIX):
            return False
        return len(text) >= self._config.min_message_length

    async def handle(self, message: Message) -> Outcome:
        """Process one message through the pipeline."""

        if not self.accepts(message):
            return Outcome.SKIPPED

        if self._storage.is_processed(message.fingerprint):
            return Outcome.DUPLICATE

        indicators = has_indicators(message.body)
        # Marked before any classification so a retried event stops here.
        self._storage.mark_processed(message.fingerprint, message.chat_id, indicators, False)
        if not indicators:
            return Outcome.NO_INDICATORS

        if LOGGER.isEnabledFor(logging.DEBUG):
            hits = ", ".join(f"{m.category}={m.hit}" for m in match_indicators(message.body))
            LOGGER.debug("Indicators for %s: %s", message.fingerprint, hits)

        LOGGER.info("Analyzing potential task from %s: %r", message.chat_name, message.body[:50])
        self._storage.mark_processed(message.fingerprint, message.chat_id, True, True)

        result = await self._gateway.classify(message, message.timestamp, timeout=self._classify_timeout)
        if not is_task(result):
            return Outcome.NOT_A_TASK

        if not self._storage.save_task(build_task(message, result)):
            LOGGER.info("Task for %s already stored", message.fingerprint)
            return Outcome.DUPLICATE

        LOGGER.info("Task detected from %s: %s", message.chat_name, result.summary)
        return Outcome.TASK_SAVED

    async def handle_safely(self, message: Message) -> Outcome:
        """Like handle(), but a failing message never stops the caller."""

        try:
            return await self.handle(message)
        except Exception:
            LOGGER.exception("Error while processing message %s", message.fingerprint)
            return Outcome.FAILED
