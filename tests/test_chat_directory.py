from __future__ import annotations

import asyncio
from typing import Optional

from adapters.sqlite_storage import SQLiteStorage
from core.chat_directory import ChatDirectory
from core.models import ChatConfig


class FakeTransport:
    def __init__(self, chats: list[ChatConfig]) -> None:
        self.chats = chats

    async def list_chats(self) -> list[ChatConfig]:
        return list(self.chats)

    async def get_chat(self, chat_id: str) -> Optional[ChatConfig]:
        return next((chat for chat in self.chats if chat.chat_id == chat_id), None)


def _storage(tmp_path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "tasklens.db"))
    storage.init_db()
    return storage


def test_refresh_falls_back_to_configured_names(tmp_path) -> None:
    directory = ChatDirectory(_storage(tmp_path), ["Parents"], "Bot Commands")

    assert directory.refresh() == []

    assert directory.monitored_names == ("Parents",)
    assert directory.is_monitored("1", "Class 3 Parents")
    assert not directory.is_monitored("2", "Football")


def test_discover_marks_chats_matching_configured_names(tmp_path) -> None:
    storage = _storage(tmp_path)
    directory = ChatDirectory(storage, ["Parents"], "Bot Commands")
    transport = FakeTransport(
        [
            ChatConfig(chat_id="1", chat_name="Class 3 Parents", participant_count=30),
            ChatConfig(chat_id="2", chat_name="Football"),
            ChatConfig(chat_id="3", chat_name="Bot Commands", is_group=False),
        ]
    )

    count = asyncio.run(directory.discover(transport, timeout=5))
    monitored = directory.refresh()

    assert count == 3
    assert [chat.chat_id for chat in monitored] == ["1"]
    assert len(storage.list_chats()) == 3
    assert directory.is_monitored("1", "Renamed group")
    assert not directory.is_monitored("2", "Football")


def test_stored_selection_replaces_configured_names(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.upsert_chat_config(ChatConfig(chat_id="2", chat_name="Football", is_monitored=True))
    directory = ChatDirectory(storage, ["Parents"], "Bot Commands")

    directory.refresh()

    assert directory.monitored_names == ("Football",)
    assert not directory.is_monitored("1", "Class 3 Parents")


def test_command_chat_matches_by_substring(tmp_path) -> None:
    directory = ChatDirectory(_storage(tmp_path), ["Parents"], "Bot Commands")
    assert directory.is_command_chat("My Bot Commands")
    assert not directory.is_command_chat("Parents")
    assert not directory.is_command_chat(None)
