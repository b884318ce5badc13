# command_center/drafts.py
"""
Typed draft shapes produced by the intake pipeline.

A draft is exactly one of six variants (task, epic, challenge, event, bill, note),
discriminated by its ``type`` field. The set is closed: the parser and the
materializer both dispatch over it exhaustively.

Attributes are snake_case in Python and camelCase on the wire.
"""
from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


LIFE_AREAS = {
    "lw-1": "Health & Fitness",
    "lw-2": "Career & Work",
    "lw-3": "Finance & Money",
    "lw-4": "Personal Growth",
    "lw-5": "Relationships & Family",
    "lw-6": "Social Life",
    "lw-7": "Fun & Recreation",
    "lw-8": "Environment & Home",
}
DEFAULT_LIFE_AREA = "lw-4"
FINANCE_LIFE_AREA = "lw-3"

PRIORITY_QUADRANTS = {
    "q1": "Urgent & Important",
    "q2": "Not Urgent & Important",
    "q3": "Urgent & Not Important",
    "q4": "Not Urgent & Not Important",
}
DEFAULT_QUADRANT = "q2"

EFFORT_POINTS = (1, 2, 3, 5, 8, 13)
DEFAULT_EFFORT_POINTS = 3


def life_area_name(code: str | None) -> str:
    return LIFE_AREAS.get(code or "", code or "unknown")


class DraftType(str, Enum):
    TASK = "task"
    EPIC = "epic"
    CHALLENGE = "challenge"
    EVENT = "event"
    BILL = "bill"
    NOTE = "note"


class DraftStatus(str, Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    MODIFIED = "MODIFIED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class EnvelopeStatus(str, Enum):
    READY = "READY"
    NEEDS_CLARIFICATION = "NEEDS_CLARIFICATION"
    SUGGEST_ALTERNATIVE = "SUGGEST_ALTERNATIVE"


class DraftAction(str, Enum):
    APPROVE = "APPROVE"
    MODIFY = "MODIFY"
    REJECT = "REJECT"


class QuestionType(str, Enum):
    SINGLE_CHOICE = "SINGLE_CHOICE"
    YES_NO = "YES_NO"
    NUMBER_INPUT = "NUMBER_INPUT"
    DATE_PICKER = "DATE_PICKER"
    TIME_PICKER = "TIME_PICKER"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------
# Draft variants
# -----------------------

class RecurrencePattern(CamelModel):
    frequency: str = "daily"
    interval: int = 1
    end_date: Optional[dt.date] = None


class TaskDraft(CamelModel):
    type: Literal["task"] = "task"
    title: str
    description: str = ""
    life_area_code: str = DEFAULT_LIFE_AREA
    priority_quadrant_code: str = DEFAULT_QUADRANT
    effort_points: int = DEFAULT_EFFORT_POINTS
    epic_ref: Optional[str] = None
    sprint_ref: Optional[str] = None
    due_date: Optional[dt.date] = None
    recurring: bool = False
    recurrence: Optional[RecurrencePattern] = None


class EpicDraft(CamelModel):
    type: Literal["epic"] = "epic"
    title: str
    description: str = ""
    life_area_code: str = DEFAULT_LIFE_AREA
    suggested_tasks: List[TaskDraft] = Field(default_factory=list)
    color: str = "#3B82F6"
    icon: Optional[str] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class ChallengeDraft(CamelModel):
    type: Literal["challenge"] = "challenge"
    name: str
    description: str = ""
    life_area_code: str = DEFAULT_LIFE_AREA
    metric_type: str = "yesno"
    target_value: Optional[Decimal] = None
    unit: Optional[str] = None
    duration_days: int = 30
    recurrence_frequency: str = "daily"
    why_statement: Optional[str] = None
    reward_description: Optional[str] = None
    grace_days: int = 2
    reminder_time: Optional[dt.time] = None


class EventDraft(CamelModel):
    type: Literal["event"] = "event"
    title: str
    description: str = ""
    life_area_code: str = DEFAULT_LIFE_AREA
    date: Optional[dt.date] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    location: Optional[str] = None
    all_day: bool = False
    recurrence: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)


class BillDraft(CamelModel):
    type: Literal["bill"] = "bill"
    vendor_name: str
    amount: Optional[Decimal] = None
    currency: str = "USD"
    due_date: Optional[dt.date] = None
    category: Optional[str] = None
    life_area_code: str = FINANCE_LIFE_AREA
    recurring: bool = False
    recurrence: Optional[str] = None
    notes: Optional[str] = None


class NoteDraft(CamelModel):
    type: Literal["note"] = "note"
    title: str
    content: str = ""
    life_area_code: str = DEFAULT_LIFE_AREA
    tags: List[str] = Field(default_factory=list)
    clarifying_questions: List[str] = Field(default_factory=list)


Draft = Annotated[
    Union[TaskDraft, EpicDraft, ChallengeDraft, EventDraft, BillDraft, NoteDraft],
    Field(discriminator="type"),
]

_DRAFT_ADAPTER = TypeAdapter(Draft)


def draft_type_of(draft) -> DraftType:
    return DraftType(draft.type)


def draft_to_json(draft) -> Dict[str, Any]:
    return draft.model_dump(by_alias=True, mode="json")


def draft_from_json(data: Dict[str, Any]):
    """Rebuilds a stored (or client supplied) draft. Raises pydantic.ValidationError."""
    return _DRAFT_ADAPTER.validate_python(data)


# -----------------------
# Clarification flow
# -----------------------

class QuestionOption(CamelModel):
    value: str
    label: str
    icon: Optional[str] = None


class ClarificationQuestion(CamelModel):
    id: str
    question: str
    type: QuestionType = QuestionType.SINGLE_CHOICE
    options: List[QuestionOption] = Field(default_factory=list)
    field_to_populate: str
    required: bool = False
    default_value: Optional[str] = None


class ClarificationFlow(CamelModel):
    flow_id: str = ""
    title: str = ""
    description: str = ""
    questions: List[ClarificationQuestion] = Field(default_factory=list)
    max_questions: int = 5


# -----------------------
# Responses
# -----------------------

class SmartInputResponse(CamelModel):
    """The envelope returned by every intake call."""
    status: EnvelopeStatus
    intent_detected: DraftType
    confidence_score: float
    draft: Draft
    reasoning: str = ""
    suggestions: List[str] = Field(default_factory=list)
    clarification_flow: Optional[ClarificationFlow] = None
    session_id: Optional[str] = None
    draft_id: Optional[str] = None
    draft_status: Optional[DraftStatus] = None
    original_input: Optional[str] = None
    expires_at: Optional[dt.datetime] = None


class DraftActionResponse(CamelModel):
    draft_id: str
    status: DraftStatus
    entity_type: DraftType
    created_entity_id: Optional[str] = None
    message: str = ""
