from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from adapters.openai_classifier import OpenAIClassifier, build_prompt


class FakeCompletions:
    def __init__(self, content) -> None:
        self.content = content
        self.requests: list[dict] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(content) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(content)))


def test_prompt_includes_reference_date_and_text() -> None:
    prompt = build_prompt("Meeting tomorrow at 3pm", "Monday, January 1, 2024")
    assert "The message was sent on: Monday, January 1, 2024" in prompt
    assert 'Message text: "Meeting tomorrow at 3pm"' in prompt
    assert '{"is_task": false}' in prompt


def test_complete_requests_json_object() -> None:
    client = _client('{"is_task": false}')
    classifier = OpenAIClassifier(api_key="", model="gpt-4o-mini", client=client)

    answer = asyncio.run(classifier.complete("Thanks for the update", "Monday, January 1, 2024"))

    assert answer == '{"is_task": false}'
    request = client.chat.completions.requests[0]
    assert request["model"] == "gpt-4o-mini"
    assert request["response_format"] == {"type": "json_object"}
    assert "Thanks for the update" in request["messages"][0]["content"]


def test_empty_content_becomes_empty_string() -> None:
    classifier = OpenAIClassifier(api_key="", client=_client(None))
    assert asyncio.run(classifier.complete("x", "Monday, January 1, 2024")) == ""


def test_missing_api_key_is_rejected() -> None:
    with pytest.raises(RuntimeError):
        OpenAIClassifier(api_key="")
