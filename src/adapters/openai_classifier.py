"""OpenAI classification backend.

Fills the task-detection instruction template and asks the chat-completions
API for a JSON object. Decoding, throttling and timeouts live in the core
gateway; this adapter only talks to the API.
"""

from __future__ import annotations

import logging
from typing import Optional

from openai import AsyncOpenAI

LOGGER = logging.getLogger(__name__)

TASK_DETECTION_PROMPT = """
You analyze chat messages and decide whether they describe something the reader
has to act on. Messages may mix Hebrew and English.

TASK TYPES:
1. event: meetings, appointments, deadlines, celebrations, classes
2. payment: transfers, bills, fees, registrations, shared expenses, debts
3. reminder: things to remember, follow up on, or complete
4. request: direct or indirect requests for action

DATES:
The message was sent on: {reference_date}
- "tomorrow" / "מחר" is the day after the message date
- "today" / "היום" is the message date
- "next week" / "שבוע הבא" is the following week
- a weekday name is its next occurrence after the message date

Answer with a JSON object only.
For a task:
{{
  "is_task": true,
  "types": ["event" | "payment" | "reminder" | "request"],
  "summary": "short description of what needs to be done",
  "event_time": "YYYY-MM-DDTHH:MM:SS" (only if a date or time is mentioned),
  "amount": "150₪" (only if money is mentioned),
  "link": "https://..." (only if a URL is present),
  "confidence": 0.0-1.0
}}
For anything else (greetings, thanks, reports of past events, observations):
{{"is_task": false}}

Message text: "{message_text}"
"""


def build_prompt(text: str, reference_date: str) -> str:
    return TASK_DETECTION_PROMPT.format(reference_date=reference_date, message_text=text)


class OpenAIClassifier:
    """ClassifierBackend backed by the OpenAI chat-completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        temperature: float = 0.3,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        if client is None and not api_key:
            raise RuntimeError("Missing OPENAI_API_KEY in environment")
        self._client = client or AsyncOpenAI(api_key=api_key)
        self._model = model
        self._temperature = temperature
        LOGGER.info("OpenAI classifier initialized (model=%s)", model)

    async def complete(self, text: str, reference_date: str) -> str:
        completion = await self._client.chat.completions.create(
            model=self._model,
            messages=[{"role": "system", "content": build_prompt(text, reference_date)}],
            response_format={"type": "json_object"},
            temperature=self._temperature,
        )
        content = completion.choices[0].message.content
        return content or ""
