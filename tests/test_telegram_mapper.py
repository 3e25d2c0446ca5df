from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from adapters.telegram_mapper import build_message, chat_config_from_dialog, entity_title, resolve_message


class DummyChat:
    def __init__(self, title: "str | None" = None, username: "str | None" = None, participants_count=None) -> None:
        self.title = title
        self.username = username
        self.participants_count = participants_count
        self.megagroup = False


class DummyUser:
    def __init__(self, first_name: "str | None", last_name: "str | None" = None, username: "str | None" = None) -> None:
        self.first_name = first_name
        self.last_name = last_name
        self.username = username


class DummyMessage:
    def __init__(
        self,
        *,
        chat_id: int,
        message_id: int,
        text: "str | None",
        chat=None,
        sender=None,
        media=None,
        date: "datetime | None" = None,
    ) -> None:
        self.chat_id = chat_id
        self.id = message_id
        self.raw_text = text
        self.chat = chat
        self.sender = sender
        self.sender_id = 42
        self.media = media
        self.date = date or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    async def get_chat(self):
        return self.chat

    async def get_sender(self):
        return self.sender


class DummyDialog:
    def __init__(self, dialog_id: int, name: str, entity, is_group: bool, is_channel: bool = False) -> None:
        self.id = dialog_id
        self.name = name
        self.entity = entity
        self.is_group = is_group
        self.is_channel = is_channel


def test_build_message_uses_chat_scoped_fingerprint() -> None:
    message = DummyMessage(
        chat_id=-100123,
        message_id=10,
        text="Meeting tomorrow at 3pm",
        chat=DummyChat(title="Test Group"),
        sender=DummyUser("Dana", "Levi"),
    )

    result = build_message(message)

    assert result.fingerprint == "-100123:10"
    assert result.chat_id == "-100123"
    assert result.chat_name == "Test Group"
    assert result.sender_name == "Dana Levi"
    assert result.sender_id == "42"
    assert result.body == "Meeting tomorrow at 3pm"
    assert not result.has_media


def test_build_message_media_without_caption() -> None:
    message = DummyMessage(chat_id=5, message_id=1, text=None, chat=DummyChat(title="Family"), media=object())

    result = build_message(message)

    assert result.body == ""
    assert result.has_media
    assert result.sender_name == "Unknown"


def test_build_message_assumes_utc_for_naive_dates() -> None:
    message = DummyMessage(chat_id=5, message_id=1, text="hi", date=datetime(2024, 1, 1, 9, 0))
    result = build_message(message)
    assert result.timestamp.tzinfo is timezone.utc
    assert result.chat_name == "5"


def test_resolve_message_fetches_entities() -> None:
    message = DummyMessage(
        chat_id=5,
        message_id=3,
        text="pay 20$",
        chat=DummyChat(title="Class Parents"),
        sender=DummyUser(None, username="dana"),
    )

    result = asyncio.run(resolve_message(message))

    assert result.chat_name == "Class Parents"
    assert result.sender_name == "@dana"


def test_entity_title_fallbacks() -> None:
    assert entity_title(DummyChat(title="Group")) == "Group"
    assert entity_title(DummyUser("Dana")) == "Dana"
    assert entity_title(DummyChat(username="news")) == "@news"
    assert entity_title(DummyChat(), fallback="Unknown") == "Unknown"


def test_chat_config_from_dialog() -> None:
    group = DummyDialog(1, "Class Parents", DummyChat(title="Class Parents", participants_count=31), is_group=True)
    direct = DummyDialog(2, "Dana", DummyUser("Dana"), is_group=False)

    group_config = chat_config_from_dialog(group)
    direct_config = chat_config_from_dialog(direct)

    assert group_config.chat_id == "1"
    assert group_config.is_group
    assert group_config.participant_count == 31
    assert not group_config.is_monitored
    assert not direct_config.is_group
    assert direct_config.participant_count == 1
