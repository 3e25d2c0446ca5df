"""Application entry point for the tasklens watcher."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sqlite3
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.openai_classifier import OpenAIClassifier
from adapters.session_files import SessionDirectory
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_mapper import chat_config_from_dialog
from adapters.telegram_transport import TelegramTransport, print_qr
from client import build_client, load_credentials
from core.backfill import BackfillScanner
from core.chat_directory import ChatDirectory
from core.classifier import ClassifierGateway, RateLimiter
from core.connection import ConnectionManager, EventChannel
from core.health import HealthMonitor
from core.models import Message
from core.processor import MessageProcessor

NAME = "TASKLENS"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/tasklens.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)
    # Telethon is chatty at INFO during reconnects.
    logging.getLogger("telethon").setLevel(max(level, logging.WARNING))


def _open_storage() -> SQLiteStorage:
    """Open and initialise the database; nothing works without it."""

    storage = SQLiteStorage(settings.DB_PATH)
    try:
        storage.init_db()
    except sqlite3.Error:
        LOGGER.exception("Database initialization failed (%s)", settings.DB_PATH)
        raise SystemExit(1)
    LOGGER.info("Database initialized at %s", settings.DB_PATH)
    return storage


def _session_directory() -> SessionDirectory:
    return SessionDirectory(settings.SESSION_DIR, max_age_days=settings.CONNECTION.max_session_age_days)


async def _ask(prompt: str) -> str:
    # input() blocks, so keep it off the event loop.
    return (await asyncio.to_thread(input, prompt)).strip().lower()


async def _verify_chats(storage: SQLiteStorage, directory: ChatDirectory) -> None:
    """Show the monitored-chat selection and let the operator adjust it."""

    if not sys.stdin.isatty():
        LOGGER.info("No terminal attached, keeping current chat selection")
        return

    chats = storage.list_chats()
    if not chats:
        print("No chats discovered yet; using configured names:", ", ".join(settings.MONITORED_CHATS))
        return

    print("")
    print("Chats:")
    for index, chat in enumerate(chats, start=1):
        marker = "[x]" if chat.is_monitored else "[ ]"
        kind = f"group, {chat.participant_count} members" if chat.is_group else "direct"
        print(f"{index}. {marker} {chat.chat_name} ({kind})")
    print("")
    print("[1] Keep current selection")
    print("[2] Toggle chats by number")
    print("[3] Monitor groups only")
    print("[4] Monitor all chats")

    choice = await _ask("tasklens > ")
    if choice == "2":
        raw = await _ask("Numbers (comma separated): ")
        for part in raw.split(","):
            if not part.strip().isdigit():
                continue
            number = int(part.strip())
            if 1 <= number <= len(chats):
                chat = chats[number - 1]
                storage.set_monitored(chat.chat_id, not chat.is_monitored)
    elif choice == "3":
        storage.replace_monitored([chat.chat_id for chat in chats if chat.is_group])
    elif choice == "4":
        storage.replace_monitored([chat.chat_id for chat in chats])
    else:
        print("Keeping current chat selection.")
    directory.refresh()


class _StartupSequence:
    """Runs once after the first ready signal: discovery, verification, backfill."""

    def __init__(
        self,
        storage: SQLiteStorage,
        transport: TelegramTransport,
        directory: ChatDirectory,
        scanner: BackfillScanner,
        backfill_done: asyncio.Event,
    ) -> None:
        self._storage = storage
        self._transport = transport
        self._directory = directory
        self._scanner = scanner
        self._backfill_done = backfill_done
        self._started = False

    async def __call__(self) -> None:
        if self._started:
            return
        self._started = True
        try:
            try:
                await self._directory.discover(self._transport, settings.DISCOVERY_TIMEOUT_SECONDS)
            except Exception as exc:
                LOGGER.error("Chat discovery failed, continuing with stored selection: %s", exc)
            self._directory.refresh()

            if settings.VERIFY_CHATS_ON_STARTUP:
                await _verify_chats(self._storage, self._directory)

            if settings.BACKFILL.enabled:
                await self._scanner.run_once()
            else:
                LOGGER.info("Startup message processing disabled")
        finally:
            # Live ingestion is held until this point.
            self._backfill_done.set()
            LOGGER.info("Startup processing complete, live monitoring active")


def _install_restart_signal(manager: ConnectionManager) -> None:
    """Let an operator reset recovery with `kill -USR1 <pid>`."""

    if not hasattr(signal, "SIGUSR1"):
        return
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGUSR1, manager.request_restart)
    except NotImplementedError:
        return
    LOGGER.info("Send SIGUSR1 to pid %s to restart the connection", os.getpid())


def _on_pairing_code(url: str) -> None:
    print("Scan this QR code with Telegram (Settings > Devices > Link Desktop Device):")
    print_qr(url)


async def _serve() -> None:
    storage = _open_storage()
    checkpoint = storage.init_session()
    LOGGER.info("Last read timestamp: %s", checkpoint.last_read.isoformat())

    load_credentials()
    backend = OpenAIClassifier(
        api_key=os.getenv("OPENAI_API_KEY", ""),
        model=settings.CLASSIFIER_MODEL,
        temperature=settings.CLASSIFIER_TEMPERATURE,
    )
    gateway = ClassifierGateway(backend, settings.CLASSIFIER, RateLimiter(settings.CLASSIFIER.min_interval_seconds))

    directory = ChatDirectory(storage, settings.MONITORED_CHATS, settings.COMMAND_CHAT)
    directory.refresh()
    processor = MessageProcessor(storage, directory, gateway, settings.PIPELINE)

    channel = EventChannel()
    transport = TelegramTransport(lambda: build_client(settings.SESSION_DIR, settings.SESSION_NAME), channel)
    session = _session_directory()
    if session.exists():
        LOGGER.info("Found existing session, attempting to restore")
    else:
        LOGGER.info("No existing session found, a QR code will be shown")

    manager = ConnectionManager(transport, channel, session, settings.CONNECTION)
    scanner = BackfillScanner(storage, transport, directory, processor, settings.BACKFILL)
    backfill_done = asyncio.Event()

    async def handle_message(message: Message) -> None:
        await backfill_done.wait()
        await processor.handle_safely(message)

    manager.on_message = handle_message
    manager.on_pairing_code = _on_pairing_code
    manager.add_ready_hook(_StartupSequence(storage, transport, directory, scanner, backfill_done))
    _install_restart_signal(manager)

    background: list[asyncio.Task] = []
    if settings.HEALTH_ENABLED:
        monitor = HealthMonitor(manager, storage.ping, lambda: len(directory.monitored_names))
        background.append(asyncio.ensure_future(monitor.run(settings.HEALTH_INTERVAL_SECONDS)))

    await manager.start()
    try:
        await manager.run()
    finally:
        for task in background:
            task.cancel()
        await manager.close()
        await transport.destroy()


def _run() -> None:
    _print_banner()
    _configure_logging()
    LOGGER.info("Starting tasklens")
    try:
        asyncio.run(_serve())
    except RuntimeError as exc:
        LOGGER.error("Fatal startup error: %s", exc)
        raise SystemExit(1)
    except KeyboardInterrupt:
        LOGGER.info("Stopped")


def _discover() -> None:
    _print_banner()
    _configure_logging()
    storage = _open_storage()
    monitored = {chat.chat_id for chat in storage.list_monitored_chats()}

    async def _run_discover() -> None:
        client = build_client(settings.SESSION_DIR, settings.SESSION_NAME)
        await client.connect()
        try:
            if not await client.is_user_authorized():
                print("Not paired yet. Run `tasklens run` and scan the QR code first.")
                return
            async for dialog in client.iter_dialogs():
                chat = chat_config_from_dialog(dialog)
                storage.upsert_chat_config(chat)
                marker = "[x]" if chat.chat_id in monitored else "[ ]"
                kind = "group" if chat.is_group else "direct"
                print(f"{marker} {kind} | {chat.chat_name} | {chat.chat_id}")
        finally:
            await client.disconnect()

    asyncio.run(_run_discover())


def _status() -> None:
    storage = _open_storage()
    checkpoint = storage.get_checkpoint()
    stats = storage.processing_stats()
    session = _session_directory()
    now = datetime.now(timezone.utc)

    if checkpoint is None:
        print("No session checkpoint yet (never started).")
    else:
        print(f"Last login:        {checkpoint.login_timestamp.astimezone():%Y-%m-%d %H:%M:%S}")
        print(f"Last read:         {checkpoint.last_read.astimezone():%Y-%m-%d %H:%M:%S}")
    print(f"Messages seen:     {stats.total_messages}")
    print(f"With indicators:   {stats.messages_with_indicators}")
    print(f"Analyzed:          {stats.messages_analyzed}")
    print(f"Tasks found:       {stats.tasks_found}")
    print(f"Monitored chats:   {len(storage.list_monitored_chats())}")
    print(f"Session healthy:   {'yes' if session.is_healthy(now) else 'no'} ({session.path})")


def _clear_session() -> None:
    _configure_logging()
    session = _session_directory()
    healthy = session.is_healthy(datetime.now(timezone.utc))
    if session.clear():
        print(f"Session cleared (was {'healthy' if healthy else 'unhealthy'}). A new QR code is needed on next run.")
    else:
        print("No session was cleared.")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="tasklens")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the watcher")
    subparsers.add_parser("discover", help="List chats and record them for monitoring")
    subparsers.add_parser("status", help="Show checkpoint, processing stats and session health")
    subparsers.add_parser("clear-session", help="Back up and remove the Telegram session (forces QR pairing)")

    args = parser.parse_args(argv)
    if args.command == "discover":
        _discover()
        return
    if args.command == "status":
        _status()
        return
    if args.command == "clear-session":
        _clear_session()
        return
    _run()


if __name__ == "__main__":
    main()
