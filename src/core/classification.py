"""Classification result decoding (core domain).

The service answers with free-form JSON. We decode it through a strict
pydantic model into a tagged result: `Classification` on success,
`ClassificationFailure` otherwise. Callers only ever see one of the two.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError, field_validator, model_validator

TaskType = Literal["event", "payment", "reminder", "request"]


class Classification(BaseModel):
    """Validated classification payload."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    is_task: StrictBool
    types: List[TaskType] = Field(default_factory=list)
    summary: Optional[str] = None
    event_time: Optional[datetime] = None
    amount: Optional[str] = None
    link: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_as_text(cls, value):
        # The model sometimes answers with a bare number.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("summary", "link", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _task_fields_present(self) -> "Classification":
        # Only event_time, amount and link are optional on a task.
        if self.is_task:
            missing = [
                name
                for name, present in (
                    ("types", bool(self.types)),
                    ("summary", self.summary is not None),
                    ("confidence", self.confidence is not None),
                )
                if not present
            ]
            if missing:
                raise ValueError(f"task answer missing {', '.join(missing)}")
        return self


@dataclass(frozen=True)
class ClassificationFailure:
    """Anything that is not a valid classification. Treated as not a task."""

    reason: str
    is_task: bool = False


ClassificationOutcome = Union[Classification, ClassificationFailure]


def decode_classification(raw: Optional[str]) -> ClassificationOutcome:
    """Decode the service's JSON answer, failing closed."""

    if raw is None or not raw.strip():
        return ClassificationFailure(reason="empty response")
    try:
        return Classification.model_validate_json(raw)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        return ClassificationFailure(reason=f"invalid response at {location}: {first.get('msg', exc)}")


def is_task(outcome: ClassificationOutcome) -> bool:
    return isinstance(outcome, Classification) and outcome.is_task
