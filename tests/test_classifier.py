from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone

from core.classification import Classification, ClassificationFailure
from core.classifier import ClassifierGateway, RateLimiter, format_reference_date
from core.config import ClassifierConfig
from core.models import Message


class FakeBackend:
    def __init__(self, answer: str = '{"is_task": false}', delay: float = 0.0, error: Exception | None = None) -> None:
        self.answer = answer
        self.delay = delay
        self.error = error
        self.calls: list[tuple[str, str]] = []
        self.call_times: list[float] = []

    async def complete(self, text: str, reference_date: str) -> str:
        self.calls.append((text, reference_date))
        self.call_times.append(time.monotonic())
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.answer


def _message(body: str = "Meeting tomorrow at 3pm", message_id: int = 1) -> Message:
    return Message(
        fingerprint=f"100:{message_id}",
        chat_id="100",
        chat_name="Test Group",
        sender_id="7",
        sender_name="Dana",
        body=body,
        timestamp=datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc),
    )


def test_format_reference_date() -> None:
    assert format_reference_date(datetime(2024, 1, 1)) == "Monday, January 1, 2024"


def test_gateway_passes_message_date_as_reference() -> None:
    backend = FakeBackend(answer='{"is_task": true, "types": ["event"], "summary": "Meeting", "confidence": 0.8}')
    gateway = ClassifierGateway(backend, ClassifierConfig(min_interval_seconds=0))

    outcome = asyncio.run(gateway.classify(_message()))

    assert isinstance(outcome, Classification)
    assert backend.calls == [("Meeting tomorrow at 3pm", "Monday, January 1, 2024")]


def test_timeout_becomes_failure() -> None:
    backend = FakeBackend(delay=1.0)
    gateway = ClassifierGateway(backend, ClassifierConfig(min_interval_seconds=0, timeout_seconds=0.05))

    outcome = asyncio.run(gateway.classify(_message()))

    assert outcome == ClassificationFailure(reason="timeout")


def test_backend_error_becomes_failure() -> None:
    backend = FakeBackend(error=ConnectionError("boom"))
    gateway = ClassifierGateway(backend, ClassifierConfig(min_interval_seconds=0))

    outcome = asyncio.run(gateway.classify(_message()))

    assert isinstance(outcome, ClassificationFailure)
    assert "boom" in outcome.reason


def test_malformed_answer_becomes_failure() -> None:
    gateway = ClassifierGateway(FakeBackend(answer="not json"), ClassifierConfig(min_interval_seconds=0))
    outcome = asyncio.run(gateway.classify(_message()))
    assert isinstance(outcome, ClassificationFailure)


def test_calls_are_spaced_by_min_interval() -> None:
    backend = FakeBackend()
    gateway = ClassifierGateway(backend, ClassifierConfig(min_interval_seconds=0.05))

    async def _run() -> None:
        await asyncio.gather(*(gateway.classify(_message(message_id=i)) for i in range(3)))

    asyncio.run(_run())

    assert len(backend.call_times) == 3
    gaps = [b - a for a, b in zip(backend.call_times, backend.call_times[1:])]
    assert all(gap >= 0.045 for gap in gaps)


def test_rate_limit_wait_counts_against_timeout() -> None:
    backend = FakeBackend()
    limiter = RateLimiter(min_interval=1.0)
    gateway = ClassifierGateway(backend, ClassifierConfig(timeout_seconds=0.05), rate_limiter=limiter)

    async def _run():
        await limiter.acquire()
        return await gateway.classify(_message())

    outcome = asyncio.run(_run())

    assert outcome == ClassificationFailure(reason="timeout")
    assert backend.calls == []
