from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from core.config import ConnectionConfig
from core.connection import ConnectionManager, EventChannel, Ready
from core.health import HealthMonitor

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


class IdleTransport:
    async def initialize(self) -> None:
        pass

    async def destroy(self) -> None:
        pass

    def abort(self) -> None:
        pass


class HealthySession:
    def is_healthy(self, now: datetime) -> bool:
        return True

    def clear(self) -> bool:
        return False


def test_snapshot_reports_connection_and_activity() -> None:
    async def _run():
        manager = ConnectionManager(
            IdleTransport(), EventChannel(), HealthySession(), ConnectionConfig(), clock=lambda: NOW
        )
        monitor = HealthMonitor(manager, lambda: True, lambda: 2, clock=lambda: NOW + timedelta(minutes=42))
        before = monitor.snapshot()
        await manager.dispatch(Ready())
        after = monitor.report()
        await manager.close()
        return before, after

    before, after = asyncio.run(_run())

    assert not before.connected
    assert before.minutes_since_message is None
    assert after.connected
    assert after.state == "ready"
    assert after.minutes_since_message == 42
    assert after.monitored_chats == 2
    assert after.database_ok
