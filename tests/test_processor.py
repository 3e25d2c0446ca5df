from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

from adapters.sqlite_storage import SQLiteStorage
from core.chat_directory import ChatDirectory
from core.classifier import ClassifierGateway
from core.config import ClassifierConfig, PipelineConfig
from core.models import ChatConfig, Message, Task
from core.processor import MessageProcessor, Outcome

MEETING_ANSWER = (
    '{"is_task": true, "types": ["event"], "summary": "Meeting at 3pm", '
    '"event_time": "2024-01-02T15:00:00", "confidence": 0.9}'
)


class FakeStorage:
    def __init__(self) -> None:
        self.records: dict[str, dict] = {}
        self.tasks: dict[str, Task] = {}
        self.monitored: list[ChatConfig] = []

    def is_processed(self, fingerprint: str) -> bool:
        return fingerprint in self.records

    def mark_processed(self, fingerprint: str, chat_id: str, had_indicators: bool, was_analyzed: bool) -> None:
        record = self.records.setdefault(
            fingerprint, {"chat_id": chat_id, "had_indicators": False, "was_analyzed": False}
        )
        record["had_indicators"] = record["had_indicators"] or had_indicators
        record["was_analyzed"] = record["was_analyzed"] or was_analyzed

    def save_task(self, task: Task) -> bool:
        if task.fingerprint in self.tasks:
            return False
        self.tasks[task.fingerprint] = task
        return True

    def list_monitored_chats(self) -> list[ChatConfig]:
        return list(self.monitored)


class FakeBackend:
    def __init__(self, *answers: str, delays: Optional[list[float]] = None) -> None:
        self.answers = list(answers) or ['{"is_task": false}']
        self.delays = list(delays or [])
        self.calls: list[tuple[str, str]] = []

    async def complete(self, text: str, reference_date: str) -> str:
        self.calls.append((text, reference_date))
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        delay = self.delays.pop(0) if self.delays else 0.0
        if delay:
            await asyncio.sleep(delay)
        return answer


def _message(
    body: str,
    *,
    message_id: int = 1,
    chat_id: str = "100",
    chat_name: str = "Test Group",
) -> Message:
    return Message(
        fingerprint=f"{chat_id}:{message_id}",
        chat_id=chat_id,
        chat_name=chat_name,
        sender_id="7",
        sender_name="Dana",
        body=body,
        timestamp=datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc),
    )


def _processor(storage, backend, classify_timeout: Optional[float] = None) -> MessageProcessor:
    directory = ChatDirectory(storage, ["Test Group"], "Bot Commands")
    gateway = ClassifierGateway(backend, ClassifierConfig(min_interval_seconds=0, timeout_seconds=5))
    directory.refresh()
    config = PipelineConfig()
    return MessageProcessor(storage, directory, gateway, config, classify_timeout=classify_timeout)


def test_message_without_indicators_is_never_classified() -> None:
    storage = FakeStorage()
    backend = FakeBackend()
    processor = _processor(storage, backend)

    outcome = asyncio.run(processor.handle(_message("Thanks!")))

    assert outcome is Outcome.NO_INDICATORS
    assert backend.calls == []
    assert storage.records["100:1"] == {"chat_id": "100", "had_indicators": False, "was_analyzed": False}
    assert not storage.tasks


def test_meeting_message_becomes_task_with_resolved_time() -> None:
    storage = FakeStorage()
    backend = FakeBackend(MEETING_ANSWER)
    processor = _processor(storage, backend)

    outcome = asyncio.run(processor.handle(_message("Meeting tomorrow at 3pm")))

    assert outcome is Outcome.TASK_SAVED
    assert backend.calls == [("Meeting tomorrow at 3pm", "Monday, January 1, 2024")]
    record = storage.records["100:1"]
    assert record["had_indicators"] and record["was_analyzed"]
    task = storage.tasks["100:1"]
    assert task.types == ("event",)
    assert task.event_time == datetime(2024, 1, 2, 15, 0, 0)
    assert task.sender_name == "Dana"
    assert task.original_text == "Meeting tomorrow at 3pm"


def test_not_a_task_is_analyzed_but_not_saved() -> None:
    storage = FakeStorage()
    processor = _processor(storage, FakeBackend('{"is_task": false}'))

    outcome = asyncio.run(processor.handle(_message("We had a meeting yesterday")))

    assert outcome is Outcome.NOT_A_TASK
    assert storage.records["100:1"]["was_analyzed"]
    assert not storage.tasks


def test_classifier_timeout_does_not_block_next_message() -> None:
    storage = FakeStorage()
    backend = FakeBackend('{"is_task": false}', MEETING_ANSWER, delays=[1.0, 0.0])
    processor = _processor(storage, backend, classify_timeout=0.05)

    first = asyncio.run(processor.handle(_message("Pay 150₪ tomorrow", message_id=1)))
    second = asyncio.run(processor.handle(_message("Meeting tomorrow at 3pm", message_id=2)))

    assert first is Outcome.NOT_A_TASK
    assert storage.records["100:1"]["was_analyzed"]
    assert "100:1" not in storage.tasks
    assert second is Outcome.TASK_SAVED
    assert "100:2" in storage.tasks


def test_duplicate_delivery_is_processed_once() -> None:
    storage = FakeStorage()
    backend = FakeBackend(MEETING_ANSWER)
    processor = _processor(storage, backend)
    message = _message("Meeting tomorrow at 3pm")

    first = asyncio.run(processor.handle(message))
    second = asyncio.run(processor.handle(message))

    assert first is Outcome.TASK_SAVED
    assert second is Outcome.DUPLICATE
    assert len(backend.calls) == 1
    assert len(storage.tasks) == 1


def test_concurrent_duplicates_share_one_record(tmp_path) -> None:
    storage = SQLiteStorage(str(tmp_path / "tasks.db"))
    storage.init_db()
    backend = FakeBackend(MEETING_ANSWER, delays=[0.05])
    processor = _processor(storage, backend)
    message = _message("Meeting tomorrow at 3pm")

    async def _run():
        return await asyncio.gather(*(processor.handle(message) for _ in range(3)))

    outcomes = asyncio.run(_run())

    assert outcomes.count(Outcome.TASK_SAVED) == 1
    assert outcomes.count(Outcome.DUPLICATE) == 2
    assert len(backend.calls) == 1
    assert storage.processing_stats().total_messages == 1
    assert len(storage.list_tasks()) == 1


def test_command_chat_and_unmonitored_chats_are_skipped() -> None:
    storage = FakeStorage()
    backend = FakeBackend(MEETING_ANSWER)
    processor = _processor(storage, backend)

    outcomes = [
        asyncio.run(processor.handle(_message("Meeting tomorrow at 3pm", chat_name="Bot Commands"))),
        asyncio.run(processor.handle(_message("Meeting tomorrow at 3pm", chat_id="200", chat_name="Family"))),
        asyncio.run(processor.handle(_message("/tasks"))),
        asyncio.run(processor.handle(_message("ok"))),
    ]

    assert outcomes == [Outcome.SKIPPED] * 4
    assert not storage.records
    assert backend.calls == []


def test_monitored_chat_id_from_store_is_accepted() -> None:
    storage = FakeStorage()
    storage.monitored = [ChatConfig(chat_id="200", chat_name="Family", is_monitored=True)]
    processor = _processor(storage, FakeBackend(MEETING_ANSWER))

    outcome = asyncio.run(processor.handle(_message("Meeting tomorrow at 3pm", chat_id="200", chat_name="Family")))

    assert outcome is Outcome.TASK_SAVED


def test_handle_safely_reports_failure() -> None:
    class BrokenStorage(FakeStorage):
        def mark_processed(self, *args, **kwargs) -> None:
            raise RuntimeError("disk full")

    processor = _processor(BrokenStorage(), FakeBackend())

    outcome = asyncio.run(processor.handle_safely(_message("Meeting tomorrow at 3pm")))

    assert outcome is Outcome.FAILED
