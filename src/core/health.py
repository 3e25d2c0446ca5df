"""Periodic health reporting."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from core.connection import ConnectionManager

LOGGER = logging.getLogger(__name__)

QUIET_WARNING_MINUTES = 180


@dataclass(frozen=True)
class HealthSnapshot:
    connected: bool
    state: str
    database_ok: bool
    minutes_since_message: Optional[int]
    monitored_chats: int
    recovery_exhausted: bool


class HealthMonitor:
    def __init__(
        self,
        manager: ConnectionManager,
        database_ping: Callable[[], bool],
        monitored_count: Callable[[], int],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._manager = manager
        self._database_ping = database_ping
        self._monitored_count = monitored_count
        self._clock = clock

    def snapshot(self) -> HealthSnapshot:
        minutes = None
        if self._manager.last_message_at is not None:
            minutes = int((self._clock() - self._manager.last_message_at).total_seconds() // 60)
        return HealthSnapshot(
            connected=self._manager.is_connected,
            state=self._manager.state.value,
            database_ok=self._database_ping(),
            minutes_since_message=minutes,
            monitored_chats=self._monitored_count(),
            recovery_exhausted=self._manager.recovery_exhausted,
        )

    def report(self) -> HealthSnapshot:
        snap = self.snapshot()
        LOGGER.info(
            "Health: transport=%s database=%s last_message=%s monitored_chats=%s",
            snap.state,
            "ok" if snap.database_ok else "unhealthy",
            "never" if snap.minutes_since_message is None else f"{snap.minutes_since_message}m ago",
            snap.monitored_chats,
        )
        if not snap.connected:
            LOGGER.warning("Transport not connected%s", " (manual restart required)" if snap.recovery_exhausted else "")
        if not snap.database_ok:
            LOGGER.warning("Database connection unhealthy")
        if snap.connected and snap.minutes_since_message is not None and snap.minutes_since_message > QUIET_WARNING_MINUTES:
            LOGGER.warning("No message activity for over %s hours", QUIET_WARNING_MINUTES // 60)
        return snap

    async def run(self, interval_seconds: float, initial_delay: float = 30.0) -> None:
        await asyncio.sleep(initial_delay)
        while True:
            self.report()
            await asyncio.sleep(interval_seconds)
