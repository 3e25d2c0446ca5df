"""Deduplication helpers (core domain)."""

from __future__ import annotations

FINGERPRINT_SEPARATOR = ":"


def message_fingerprint(chat_id: object, message_id: object) -> str:
    """Return the globally unique key for a message.

    Telegram message ids are only unique within a chat, so the chat id is
    part of the key.
    """

    chat = str(chat_id).strip()
    message = str(message_id).strip()
    if not chat or not message:
        raise ValueError("chat_id and message_id are required for a fingerprint")
    return f"{chat}{FINGERPRINT_SEPARATOR}{message}"
