"""Rate-limited classifier gateway (core domain).

One gateway (and one rate limiter) exists per process so that every chat
shares the same external rate ceiling. The gateway never raises: timeouts,
backend errors and malformed answers all come back as ClassificationFailure.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, Optional

from core.classification import ClassificationFailure, ClassificationOutcome, decode_classification
from core.config import ClassifierConfig
from core.models import Message
from core.ports import ClassifierBackend

LOGGER = logging.getLogger(__name__)


def format_reference_date(moment: datetime) -> str:
    """Render the message date the way the prompt expects it."""

    return f"{moment:%A}, {moment:%B} {moment.day}, {moment.year}"


class RateLimiter:
    """Single-slot limiter enforcing a minimum spacing between calls."""

    def __init__(self, min_interval: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._min_interval = max(0.0, min_interval)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_call: Optional[float] = None

    async def acquire(self) -> None:
        async with self._lock:
            if self._last_call is not None:
                wait = self._min_interval - (self._clock() - self._last_call)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_call = self._clock()


class ClassifierGateway:
    """Throttles, times out and decodes calls to the classification backend."""

    def __init__(
        self,
        backend: ClassifierBackend,
        config: ClassifierConfig,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self._backend = backend
        self._config = config
        self._rate_limiter = rate_limiter or RateLimiter(config.min_interval_seconds)

    async def classify(
        self,
        message: Message,
        reference_date: Optional[datetime] = None,
        timeout: Optional[float] = None,
    ) -> ClassificationOutcome:
        """Classify one message; the wait for the rate limiter counts against the timeout."""

        reference = format_reference_date(reference_date or message.timestamp)
        limit = self._config.timeout_seconds if timeout is None else timeout
        try:
            raw = await asyncio.wait_for(self._call(message.body, reference), timeout=limit)
        except asyncio.TimeoutError:
            LOGGER.warning("Classification timed out after %.1fs for %s", limit, message.fingerprint)
            return ClassificationFailure(reason="timeout")
        except Exception as exc:
            LOGGER.warning("Classification failed for %s: %s", message.fingerprint, exc)
            return ClassificationFailure(reason=f"backend error: {exc}")

        outcome = decode_classification(raw)
        if isinstance(outcome, ClassificationFailure):
            LOGGER.warning("Discarding classification for %s (%s)", message.fingerprint, outcome.reason)
        return outcome

    async def _call(self, text: str, reference: str) -> str:
        await self._rate_limiter.acquire()
        return await self._backend.complete(text, reference)
