"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline.
"""

from __future__ import annotations

from datetime import timezone
from typing import Any, Optional

from telethon.tl.custom import Message as TelethonMessage

from core.dedup import message_fingerprint
from core.models import ChatConfig, Message


def entity_title(entity: Any, fallback: Optional[str] = None) -> str:
    """Human-friendly name for a chat, channel or user entity."""

    title = getattr(entity, "title", None)
    if title:
        return str(title)
    first = getattr(entity, "first_name", None)
    last = getattr(entity, "last_name", None)
    if first or last:
        return " ".join(part for part in [first, last] if part)
    username = getattr(entity, "username", None)
    if username:
        return f"@{username}"
    if fallback:
        return fallback
    entity_id = getattr(entity, "id", None)
    return str(entity_id or "Unknown")


def chat_config_from_dialog(dialog: Any) -> ChatConfig:
    """Build a directory entry from a Telethon Dialog."""

    entity = getattr(dialog, "entity", None)
    is_group = bool(getattr(dialog, "is_group", False))
    if not is_group and getattr(dialog, "is_channel", False):
        is_group = bool(getattr(entity, "megagroup", False))
    participants = getattr(entity, "participants_count", None)
    if participants is None:
        participants = 0 if is_group else 1
    return ChatConfig(
        chat_id=str(dialog.id),
        chat_name=getattr(dialog, "name", None) or entity_title(entity),
        is_monitored=False,
        is_group=is_group,
        participant_count=int(participants),
    )


def build_message(
    message: TelethonMessage,
    chat: Any = None,
    sender: Any = None,
    chat_name: Optional[str] = None,
) -> Message:
    """Build a core Message from a Telethon Message and its resolved entities."""

    chat = chat if chat is not None else getattr(message, "chat", None)
    sender = sender if sender is not None else getattr(message, "sender", None)
    date = message.date
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)

    return Message(
        fingerprint=message_fingerprint(message.chat_id, message.id),
        chat_id=str(message.chat_id),
        chat_name=chat_name or entity_title(chat, fallback=str(message.chat_id)),
        sender_id=str(getattr(message, "sender_id", "") or ""),
        sender_name=entity_title(sender, fallback="Unknown") if sender is not None else "Unknown",
        body=getattr(message, "raw_text", None) or "",
        timestamp=date,
        has_media=bool(getattr(message, "media", None)),
    )


async def resolve_message(message: TelethonMessage) -> Message:
    """Fetch chat and sender entities as needed, then map the message."""

    chat = await message.get_chat()
    sender = await message.get_sender()
    return build_message(message, chat=chat, sender=sender)
