"""Connection lifecycle state machine (core domain).

The transport reports everything it does as typed events on an EventChannel.
ConnectionManager is the only consumer: it moves between states, arms
timeouts, decides when to reconnect and whether the persisted session should
be cleared, and signals `ready` to the rest of the app.

Timers never act directly. They post a TimeoutElapsed event carrying the
generation that armed them, so a timer that outlived its state is ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from core.config import ConnectionConfig
from core.models import Message
from core.ports import SessionMaterialPort, TransportPort

LOGGER = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    AWAITING_PAIRING = "awaiting_pairing"
    AUTHENTICATING = "authenticating"
    CONNECTING = "connecting"
    READY = "ready"
    RECONNECTING = "reconnecting"


# Transport events.


@dataclass(frozen=True)
class PairingCodeIssued:
    code: str


@dataclass(frozen=True)
class Authenticated:
    pass


@dataclass(frozen=True)
class Ready:
    account: str = ""


@dataclass(frozen=True)
class AuthFailed:
    reason: str


@dataclass(frozen=True)
class Disconnected:
    reason: str


@dataclass(frozen=True)
class MessageReceived:
    message: Message


@dataclass(frozen=True)
class BatteryChanged:
    level: int
    plugged: bool = False


@dataclass(frozen=True)
class StateChanged:
    state: str


@dataclass(frozen=True)
class TransportError:
    reason: str


# Internal events.


@dataclass(frozen=True)
class TimeoutElapsed:
    label: str
    generation: int


@dataclass(frozen=True)
class ReconnectRequested:
    reason: str


@dataclass(frozen=True)
class RestartRequested:
    source: str = "operator"


TransportEvent = Union[
    PairingCodeIssued,
    Authenticated,
    Ready,
    AuthFailed,
    Disconnected,
    MessageReceived,
    BatteryChanged,
    StateChanged,
    TransportError,
    TimeoutElapsed,
    ReconnectRequested,
    RestartRequested,
]


class EventChannel:
    """Typed queue shared by the transport and the state machine."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()

    def emit(self, event: TransportEvent) -> None:
        self._queue.put_nowait(event)

    async def get(self) -> TransportEvent:
        return await self._queue.get()

    def get_nowait(self) -> Optional[TransportEvent]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def empty(self) -> bool:
        return self._queue.empty()


MessageHandler = Callable[[Message], Awaitable[None]]
ReadyHook = Callable[[], Awaitable[None]]


class ConnectionManager:
    """Owns the process-wide connection state and all recovery decisions."""

    def __init__(
        self,
        transport: TransportPort,
        channel: EventChannel,
        session: SessionMaterialPort,
        config: ConnectionConfig,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._transport = transport
        self._channel = channel
        self._session = session
        self._config = config
        self._clock = clock

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.session_clear_attempts = 0
        self.last_successful_connection: Optional[datetime] = None
        self.last_message_at: Optional[datetime] = None
        self.recovery_exhausted = False
        self.ready = asyncio.Event()

        self.on_message: Optional[MessageHandler] = None
        self.on_pairing_code: Optional[Callable[[str], None]] = None
        self._ready_hooks: list[ReadyHook] = []

        self._timeout_generation = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.READY

    def add_ready_hook(self, hook: ReadyHook) -> None:
        self._ready_hooks.append(hook)

    # Lifecycle.

    async def start(self) -> None:
        """Begin the first connection attempt."""

        self._set_state(ConnectionState.CONNECTING)
        self._arm_timeout("connect", self._config.connect_timeout_seconds)
        try:
            await self._transport.initialize()
        except Exception as exc:
            LOGGER.error("Failed to initialize transport: %s", exc)
            self._schedule(self._config.disconnect_delay_seconds, ReconnectRequested("initialize failed"))

    async def run(self) -> None:
        """Consume events until cancelled."""

        while True:
            event = await self._channel.get()
            await self.dispatch(event)

    async def close(self) -> None:
        self._cancel_timeout()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def request_restart(self, source: str = "operator") -> None:
        """Queue a restart; safe to call from a signal handler."""

        self._channel.emit(RestartRequested(source))

    async def restart(self) -> None:
        """Operator entry point after automatic recovery gave up."""

        LOGGER.info("Manual restart requested")
        self.recovery_exhausted = False
        self.reconnect_attempts = 0
        self.session_clear_attempts = 0
        await self.reconnect()

    # Event handling.

    async def dispatch(self, event: TransportEvent) -> None:
        if isinstance(event, MessageReceived):
            self._on_message(event.message)
        elif isinstance(event, PairingCodeIssued):
            self._on_pairing_code(event)
        elif isinstance(event, Authenticated):
            self._on_authenticated()
        elif isinstance(event, Ready):
            self._on_ready(event)
        elif isinstance(event, AuthFailed):
            self._on_auth_failed(event)
        elif isinstance(event, Disconnected):
            self._on_disconnected(event)
        elif isinstance(event, TransportError):
            LOGGER.error("Transport error: %s", event.reason)
            self._schedule(self._config.retry_delay_seconds, ReconnectRequested(event.reason))
        elif isinstance(event, TimeoutElapsed):
            await self._on_timeout(event)
        elif isinstance(event, ReconnectRequested):
            await self.reconnect()
        elif isinstance(event, RestartRequested):
            LOGGER.info("Restart requested by %s", event.source)
            await self.restart()
        elif isinstance(event, BatteryChanged):
            LOGGER.info("Phone battery: %s%% (%s)", event.level, "charging" if event.plugged else "not charging")
        elif isinstance(event, StateChanged):
            LOGGER.info("Transport state changed: %s", event.state)
        else:
            LOGGER.warning("Ignoring unknown event %r", event)

    def _on_message(self, message: Message) -> None:
        self.last_message_at = self._clock()
        if self.on_message is None:
            return
        self._spawn(self.on_message(message))

    def _on_pairing_code(self, event: PairingCodeIssued) -> None:
        self._cancel_timeout()
        self._set_state(ConnectionState.AWAITING_PAIRING)
        LOGGER.info("Waiting for the pairing code to be scanned")
        if self.on_pairing_code is not None:
            self.on_pairing_code(event.code)
        self._arm_timeout("connect", self._config.connect_timeout_seconds)

    def _on_authenticated(self) -> None:
        self._cancel_timeout()
        self._set_state(ConnectionState.AUTHENTICATING)
        LOGGER.info("Authenticated, waiting for the session to become ready")
        self._arm_timeout("ready", self._config.ready_timeout_seconds)

    def _on_ready(self, event: Ready) -> None:
        self._cancel_timeout()
        self.reconnect_attempts = 0
        self.session_clear_attempts = 0
        self.recovery_exhausted = False
        self.last_successful_connection = self._clock()
        self.last_message_at = self.last_successful_connection
        self._set_state(ConnectionState.READY)
        LOGGER.info("Connected%s", f" as {event.account}" if event.account else "")
        self.ready.set()
        for hook in self._ready_hooks:
            self._spawn(hook())

    def _on_auth_failed(self, event: AuthFailed) -> None:
        self._cancel_timeout()
        self._set_state(ConnectionState.DISCONNECTED)
        self.ready.clear()
        LOGGER.error("Authentication failed: %s", event.reason)
        self._schedule(self._config.auth_failure_delay_seconds, ReconnectRequested("auth failure"))

    def _on_disconnected(self, event: Disconnected) -> None:
        if self.state is ConnectionState.RECONNECTING:
            # Our own teardown; the reconnect in progress owns what happens next.
            LOGGER.debug("Disconnect during reconnect ignored: %s", event.reason)
            return
        self._cancel_timeout()
        self._set_state(ConnectionState.DISCONNECTED)
        self.ready.clear()
        LOGGER.warning("Disconnected: %s", event.reason)
        self._schedule(self._config.disconnect_delay_seconds, ReconnectRequested(event.reason))

    async def _on_timeout(self, event: TimeoutElapsed) -> None:
        if event.generation != self._timeout_generation:
            return
        if self.state is ConnectionState.READY:
            return
        LOGGER.warning("%s timeout while %s, forcing reconnect", event.label.capitalize(), self.state.value)
        await self.reconnect()

    # Recovery.

    def session_is_healthy(self) -> bool:
        """Health heuristic over the persisted session and recent successes."""

        now = self._clock()
        if not self._session.is_healthy(now):
            return False
        if self.last_successful_connection is not None:
            limit = timedelta(hours=self._config.max_hours_without_success)
            if now - self.last_successful_connection > limit:
                LOGGER.info("No successful connection in %s hours", self._config.max_hours_without_success)
                return False
        return True

    def should_clear_session(self) -> bool:
        if not self._config.auto_clear_session:
            LOGGER.info("Automatic session clearing is disabled")
            return False
        if self.session_clear_attempts < self._config.session_clear_threshold:
            LOGGER.info(
                "Keeping session (attempt %s/%s)",
                self.session_clear_attempts,
                self._config.session_clear_threshold,
            )
            return False
        if self.session_is_healthy():
            LOGGER.info("Session clear threshold reached but session looks healthy, keeping it")
            self.session_clear_attempts = max(1, self.session_clear_attempts - 1)
            return False
        return True

    def retry_delay(self) -> float:
        attempts = max(1, self.session_clear_attempts)
        return min(self._config.retry_delay_seconds * attempts, self._config.max_retry_delay_seconds)

    async def reconnect(self) -> None:
        if self.state is ConnectionState.RECONNECTING:
            LOGGER.debug("Reconnect already in progress")
            return
        if self.reconnect_attempts >= self._config.max_reconnect_attempts:
            self._cancel_timeout()
            self._set_state(ConnectionState.DISCONNECTED)
            if not self.recovery_exhausted:
                LOGGER.error(
                    "Max reconnection attempts (%s) reached. Manual restart required.",
                    self._config.max_reconnect_attempts,
                )
            self.recovery_exhausted = True
            return

        self.reconnect_attempts += 1
        LOGGER.info("Attempting reconnection %s/%s", self.reconnect_attempts, self._config.max_reconnect_attempts)
        self._cancel_timeout()
        self.ready.clear()
        self._set_state(ConnectionState.RECONNECTING)

        await self._destroy_transport()

        self.session_clear_attempts += 1
        if self.should_clear_session():
            LOGGER.warning("Session failed validation, clearing it")
            if self._session.clear():
                self.session_clear_attempts = 0

        delay = self.retry_delay()
        if delay > 0:
            await asyncio.sleep(delay)

        LOGGER.info("Reinitializing transport")
        self._set_state(ConnectionState.CONNECTING)
        self._arm_timeout("connect", self._config.connect_timeout_seconds)
        try:
            await self._transport.initialize()
        except Exception as exc:
            LOGGER.error("Failed to reinitialize transport: %s", exc)
            self._schedule(delay * 2, ReconnectRequested("reinitialize failed"))

    async def _destroy_transport(self) -> None:
        try:
            await asyncio.wait_for(self._transport.destroy(), timeout=self._config.destroy_timeout_seconds)
        except asyncio.TimeoutError:
            LOGGER.warning("Transport destroy timed out, aborting it")
            self._transport.abort()
        except Exception as exc:
            LOGGER.info("Transport destroy finished with errors: %s", exc)
            self._transport.abort()

    # Helpers.

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            LOGGER.debug("Connection state %s -> %s", self.state.value, state.value)
        self.state = state

    def _arm_timeout(self, label: str, seconds: float) -> None:
        self._timeout_generation += 1
        self._schedule(seconds, TimeoutElapsed(label=label, generation=self._timeout_generation))

    def _cancel_timeout(self) -> None:
        # Bumping the generation turns any pending timer into a no-op.
        self._timeout_generation += 1

    def _schedule(self, delay: float, event: TransportEvent) -> None:
        async def _fire() -> None:
            await asyncio.sleep(delay)
            self._channel.emit(event)

        self._spawn(_fire())

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Background task failed", exc_info=exc)
