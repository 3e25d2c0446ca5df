"""Telethon transport adapter.

Runs the Telethon client in a background task and reports its progress as
core transport events (pairing code, authenticated, ready, disconnected,
message received). Recovery decisions are not made here; the connection
state machine owns them.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Callable, Optional

import qrcode
from telethon import TelegramClient, errors, events

from adapters.telegram_mapper import build_message, chat_config_from_dialog, entity_title, resolve_message
from core.connection import (
    AuthFailed,
    Authenticated,
    Disconnected,
    EventChannel,
    MessageReceived,
    PairingCodeIssued,
    Ready,
    StateChanged,
    TransportError,
)
from core.models import ChatConfig, Message

LOGGER = logging.getLogger(__name__)

QR_WAIT_SECONDS = 60


def print_qr(url: str) -> None:
    """Render a pairing URL as a terminal QR code."""

    qr = qrcode.QRCode(border=1)
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


class TelegramTransport:
    """TransportPort implementation on top of a Telethon user client."""

    def __init__(self, client_factory: Callable[[], TelegramClient], channel: EventChannel) -> None:
        self._client_factory = client_factory
        self._channel = channel
        self._client: Optional[TelegramClient] = None
        self._runner: Optional[asyncio.Task] = None
        self._closing = False

    async def initialize(self) -> None:
        """Start a fresh client; progress arrives on the event channel."""

        self._closing = False
        self._client = self._client_factory()
        self._runner = asyncio.ensure_future(self._run(self._client))

    async def destroy(self) -> None:
        self._closing = True
        client, runner = self._client, self._runner
        self._client, self._runner = None, None
        if client is not None:
            await client.disconnect()
        if runner is not None and not runner.done():
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)

    def abort(self) -> None:
        self._closing = True
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
        self._client, self._runner = None, None

    async def _run(self, client: TelegramClient) -> None:
        try:
            await client.connect()
            self._channel.emit(StateChanged("connected"))
            if not await client.is_user_authorized():
                if not await self._pair(client):
                    self._channel.emit(AuthFailed("two-step verification password required (TELEGRAM_2FA)"))
                    return
            self._channel.emit(Authenticated())

            client.add_event_handler(self._on_new_message, events.NewMessage(incoming=True))
            me = await client.get_me()
            self._channel.emit(Ready(account=entity_title(me, fallback="")))

            await client.disconnected
            if not self._closing:
                self._channel.emit(Disconnected("connection closed"))
        except asyncio.CancelledError:
            raise
        except (errors.UnauthorizedError, errors.PasswordHashInvalidError) as exc:
            if not self._closing:
                self._channel.emit(AuthFailed(str(exc)))
        except Exception as exc:
            if not self._closing:
                LOGGER.exception("Telegram client stopped unexpectedly")
                self._channel.emit(TransportError(str(exc)))

    async def _pair(self, client: TelegramClient) -> bool:
        """Issue QR codes until one is scanned. Returns False if 2FA blocks us."""

        qr = await client.qr_login()
        while True:
            self._channel.emit(PairingCodeIssued(qr.url))
            try:
                await qr.wait(timeout=QR_WAIT_SECONDS)
                return True
            except asyncio.TimeoutError:
                await qr.recreate()
            except errors.SessionPasswordNeededError:
                password = os.getenv("TELEGRAM_2FA")
                if not password:
                    return False
                await client.sign_in(password=password)
                return True

    async def _on_new_message(self, event) -> None:
        try:
            message = await resolve_message(event.message)
        except Exception:
            LOGGER.exception("Could not map incoming message")
            return
        self._channel.emit(MessageReceived(message))

    def _require_client(self) -> TelegramClient:
        if self._client is None or not self._client.is_connected():
            raise RuntimeError("Telegram client is not connected")
        return self._client

    async def list_chats(self) -> list[ChatConfig]:
        client = self._require_client()
        return [chat_config_from_dialog(dialog) async for dialog in client.iter_dialogs()]

    async def get_chat(self, chat_id: str) -> Optional[ChatConfig]:
        client = self._require_client()
        try:
            entity = await client.get_entity(int(chat_id))
        except ValueError:
            LOGGER.warning("Chat not found: %s", chat_id)
            return None
        participants = getattr(entity, "participants_count", None)
        return ChatConfig(
            chat_id=chat_id,
            chat_name=entity_title(entity),
            is_group=participants is not None or bool(getattr(entity, "megagroup", False)),
            participant_count=int(participants or 0),
        )

    async def fetch_messages(self, chat_id: str, limit: int) -> list[Message]:
        """Return up to `limit` most recent messages, newest first."""

        client = self._require_client()
        entity = await client.get_entity(int(chat_id))
        chat_name = entity_title(entity)
        found = await client.get_messages(entity, limit=limit)
        return [build_message(item, chat=entity, sender=item.sender, chat_name=chat_name) for item in found]
