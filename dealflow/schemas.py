"""Pydantic request/response schemas for the DealFlow API.

Attributes are snake_case in Python; the wire format uses camelCase aliases
(``personName``, ``closeProbability``...). Both spellings are accepted on input.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from dealflow.stages import Priority, Stage
from dealflow.utils import as_utc


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)


def _clean_title(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("title must not be empty")
    return v


# ---------------------------------------------------------------------------
# Deals
# ---------------------------------------------------------------------------


class Deal(_CamelModel):
    """A stored deal. Produced by a store, never built by callers."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False, frozen=True)

    id: int | str
    title: str
    person_name: str | None = None
    company_name: str | None = None
    stage: Stage
    tags: list[str] = []
    priority: Priority = Priority.MEDIUM
    expected_value: float = 0
    close_probability: float = 0
    expected_close_date: datetime | None = None
    last_contact_date: datetime | None = None
    next_action_date: datetime | None = None
    next_action: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator(
        "expected_close_date", "last_contact_date", "next_action_date", "created_at", "updated_at",
    )
    @classmethod
    def normalize_to_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)


class DealCreate(_CamelModel):
    """Fields a caller may supply on creation. ``id`` and timestamps are ignored."""
    title: str
    person_name: str | None = None
    company_name: str | None = None
    stage: Stage = Stage.LEAD
    tags: list[str] = []
    priority: Priority = Priority.MEDIUM
    expected_value: float = Field(0, ge=0)
    close_probability: float = Field(20, ge=0, le=100)
    expected_close_date: datetime | None = None
    last_contact_date: datetime | None = None
    next_action_date: datetime | None = None
    next_action: str | None = None
    notes: str | None = ""

    @field_validator("title")
    @classmethod
    def title_must_not_be_blank(cls, v: str) -> str:
        return _clean_title(v)


# Fields that exist on every deal and therefore cannot be cleared by an update
NON_NULLABLE_FIELDS = ("title", "stage", "priority", "tags", "expected_value", "close_probability")


class DealUpdate(_CamelModel):
    """Partial update. Only fields present in the payload are applied.

    Presence is tracked by pydantic (``model_fields_set``), so an explicit
    ``null`` clears an optional field while an absent key leaves it untouched.
    """
    title: str | None = None
    person_name: str | None = None
    company_name: str | None = None
    stage: Stage | None = None
    tags: list[str] | None = None
    priority: Priority | None = None
    expected_value: float | None = Field(None, ge=0)
    close_probability: float | None = Field(None, ge=0, le=100)
    expected_close_date: datetime | None = None
    last_contact_date: datetime | None = None
    next_action_date: datetime | None = None
    next_action: str | None = None
    notes: str | None = None

    @field_validator("title")
    @classmethod
    def title_must_not_be_blank(cls, v: str | None) -> str | None:
        return _clean_title(v)

    @model_validator(mode="after")
    def required_fields_not_cleared(self) -> DealUpdate:
        cleared = [f for f in NON_NULLABLE_FIELDS if f in self.model_fields_set and getattr(self, f) is None]
        if cleared:
            raise ValueError(f"fields cannot be null: {', '.join(cleared)}")
        return self

    def changes(self) -> dict[str, Any]:
        """Return only the fields present in the payload, keyed by attribute name."""
        return {f: getattr(self, f) for f in self.model_fields_set}


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


class FilterSpec(_CamelModel):
    search: str = ""
    stages: frozenset[Stage] = frozenset()
    priorities: frozenset[Priority] = frozenset()
    tags: frozenset[str] = frozenset()
    hide_closed: bool = False

    @classmethod
    def from_query(
        cls, *, search: str | None = None, stages: str | None = None,
        priorities: str | None = None, tags: str | None = None, hide_closed: bool = False,
    ) -> FilterSpec:
        """Build a spec from comma-separated query-string values."""
        return cls(
            search=search or "",
            stages=frozenset(s.lower() for s in _split_csv(stages)),
            priorities=frozenset(p.lower() for p in _split_csv(priorities)),
            tags=frozenset(_split_csv(tags)),
            hide_closed=hide_closed,
        )


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


class StatsOut(_CamelModel):
    active_count: int
    total_value: float
    weighted_value: float
    avg_probability: float
    stage_counts: dict[str, int]
    total_value_display: str
    weighted_value_display: str
    avg_probability_display: str
    overdue_count: int
    stale_count: int


class StageInfo(BaseModel):
    value: str
    label: str
    color: str
    closed: bool


# ---------------------------------------------------------------------------
# Coach
# ---------------------------------------------------------------------------


class ChatTurn(BaseModel):
    role: Literal["user", "model"]
    text: str

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().lower() == "assistant":
            return "model"
        return v


class CoachRequest(BaseModel):
    message: str

    @field_validator("message")
    @classmethod
    def message_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be empty")
        return v


class CoachReply(BaseModel):
    reply: str
    history: list[ChatTurn]


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


class ImportResult(BaseModel):
    imported: int
    skipped: int
    errors: list[str] = []
