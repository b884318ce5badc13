# command_center/materializer.py
"""
Maps an approved draft onto the downstream creation call for its type.

Tasks, epics and challenges go to EntityServices. Events, bills and notes have no
creation service yet: they get a prefixed placeholder id (event-/bill-/note-<uuid>)
so callers can tell a stubbed id from a real one.
"""
import logging
from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from command_center.drafts import (
    BillDraft,
    ChallengeDraft,
    EpicDraft,
    EventDraft,
    NoteDraft,
    TaskDraft,
    life_area_name,
)
from command_center.entities import QueueMessage

logger = logging.getLogger("command_center")

TASK_AI_CONFIDENCE = 0.9


class MetricType(str, Enum):
    YESNO = "YESNO"
    COUNT = "COUNT"
    TIME = "TIME"
    STREAK = "STREAK"
    COMPLETION = "COMPLETION"


class ChallengeRecurrence(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    CUSTOM = "CUSTOM"


_METRIC_TYPES = {
    "yesno": MetricType.YESNO,
    "yes_no": MetricType.YESNO,
    "count": MetricType.COUNT,
    "duration": MetricType.TIME,
    "time": MetricType.TIME,
    "streak": MetricType.STREAK,
    "completion": MetricType.COMPLETION,
}

_RECURRENCES = {
    "daily": ChallengeRecurrence.DAILY,
    "weekly": ChallengeRecurrence.WEEKLY,
    "biweekly": ChallengeRecurrence.BIWEEKLY,
    "monthly": ChallengeRecurrence.MONTHLY,
    "custom": ChallengeRecurrence.CUSTOM,
}


def map_metric_type(value: str | None) -> MetricType:
    return _METRIC_TYPES.get((value or "").strip().lower(), MetricType.YESNO)


def map_recurrence(value: str | None) -> ChallengeRecurrence:
    return _RECURRENCES.get((value or "").strip().lower(), ChallengeRecurrence.DAILY)


# -----------------------
# Creation requests
# -----------------------

class CreateTaskRequest(BaseModel):
    title: str
    description: str = ""
    life_area_code: str
    priority_quadrant_code: str
    sprint_ref: Optional[str] = None
    effort_points: int
    due_date: Optional[date] = None
    is_draft: bool = False
    ai_confidence: float = TASK_AI_CONFIDENCE


class CreateEpicRequest(BaseModel):
    title: str
    description: str = ""
    life_area_code: str
    color: str
    icon: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class CreateChallengeRequest(BaseModel):
    name: str
    description: str = ""
    life_area_code: str
    metric_type: MetricType
    target_value: Decimal
    unit: Optional[str] = None
    duration_days: int
    recurrence: ChallengeRecurrence
    why_statement: Optional[str] = None
    reward_description: Optional[str] = None
    grace_days: int
    reminder_time: Optional[time] = None


class EntityServices:
    """
    Downstream creation collaborator. Each call returns at least {"id": ...}.
    `db` is the caller's open transaction, for implementations that can join it.
    """

    def create_task(self, user_id: str, request: CreateTaskRequest, db: Session | None = None) -> Dict[str, Any]:
        raise NotImplementedError

    def create_epic(self, user_id: str, request: CreateEpicRequest, db: Session | None = None) -> Dict[str, Any]:
        raise NotImplementedError

    def create_challenge(self, user_id: str, request: CreateChallengeRequest, db: Session | None = None) -> Dict[str, Any]:
        raise NotImplementedError


class QueueEntityServices(EntityServices):
    """
    Posts create requests as queue messages to the entity worker and returns the id
    assigned up front. When given the caller's transaction the message commits with it,
    so an approval and its create request land together or not at all.
    """

    def __init__(self, session_factory: sessionmaker, sender_id: str, receiver_id: str):
        self.SessionFactory = session_factory
        self.sender_id = sender_id
        self.receiver_id = receiver_id

    def _send_queue_message(self, msg_type: str, payload: Dict[str, Any], db: Session | None) -> None:
        message = QueueMessage(
            sender_id=str(self.sender_id),
            receiver_id=str(self.receiver_id),
            type=msg_type,
            payload=payload,
        )
        if db is not None:
            db.add(message)
            return

        session = self.SessionFactory()
        try:
            session.add(message)
            session.commit()
        finally:
            session.close()

    def _create(self, msg_type: str, user_id: str, request: BaseModel, db: Session | None) -> Dict[str, Any]:
        entity_id = str(uuid4())
        self._send_queue_message(
            msg_type,
            {
                "entity_id": entity_id,
                "user_id": str(user_id),
                "request": request.model_dump(mode="json"),
            },
            db,
        )
        return {"id": entity_id}

    def create_task(self, user_id, request, db=None):
        return self._create("create_task", user_id, request, db)

    def create_epic(self, user_id, request, db=None):
        return self._create("create_epic", user_id, request, db)

    def create_challenge(self, user_id, request, db=None):
        return self._create("create_challenge", user_id, request, db)


class Materializer:

    def __init__(self, entity_services: EntityServices):
        self.entity_services = entity_services

    def materialize(self, user_id: str, draft, db: Session | None = None) -> str:
        if isinstance(draft, TaskDraft):
            return self._create_task(user_id, draft, db)
        if isinstance(draft, EpicDraft):
            return self._create_epic(user_id, draft, db)
        if isinstance(draft, ChallengeDraft):
            return self._create_challenge(user_id, draft, db)
        if isinstance(draft, EventDraft):
            return self._placeholder_id("event")
        if isinstance(draft, BillDraft):
            return self._placeholder_id("bill")
        if isinstance(draft, NoteDraft):
            return self._placeholder_id("note")
        raise TypeError(f"Unsupported draft type: {type(draft).__name__}")

    def _create_task(self, user_id: str, draft: TaskDraft, db: Session | None) -> str:
        request = CreateTaskRequest(
            title=draft.title,
            description=draft.description,
            life_area_code=draft.life_area_code,
            priority_quadrant_code=draft.priority_quadrant_code,
            sprint_ref=draft.sprint_ref,
            effort_points=draft.effort_points,
            due_date=draft.due_date,
        )
        created = self.entity_services.create_task(user_id, request, db=db)
        logger.info(f"[Materialize] Task '{draft.title}' created in {life_area_name(draft.life_area_code)}")
        return str(created["id"])

    def _create_epic(self, user_id: str, draft: EpicDraft, db: Session | None) -> str:
        # suggested_tasks are not created here
        request = CreateEpicRequest(
            title=draft.title,
            description=draft.description,
            life_area_code=draft.life_area_code,
            color=draft.color,
            icon=draft.icon,
            start_date=draft.start_date,
            end_date=draft.end_date,
        )
        created = self.entity_services.create_epic(user_id, request, db=db)
        logger.info(f"[Materialize] Epic '{draft.title}' created in {life_area_name(draft.life_area_code)}")
        return str(created["id"])

    def _create_challenge(self, user_id: str, draft: ChallengeDraft, db: Session | None) -> str:
        request = CreateChallengeRequest(
            name=draft.name,
            description=draft.description,
            life_area_code=draft.life_area_code,
            metric_type=map_metric_type(draft.metric_type),
            target_value=draft.target_value if draft.target_value is not None else Decimal(1),
            unit=draft.unit,
            duration_days=draft.duration_days,
            recurrence=map_recurrence(draft.recurrence_frequency),
            why_statement=draft.why_statement,
            reward_description=draft.reward_description,
            grace_days=draft.grace_days,
            reminder_time=draft.reminder_time,
        )
        created = self.entity_services.create_challenge(user_id, request, db=db)
        logger.info(f"[Materialize] Challenge '{draft.name}' created in {life_area_name(draft.life_area_code)}")
        return str(created["id"])

    def _placeholder_id(self, prefix: str) -> str:
        placeholder = f"{prefix}-{uuid4()}"
        logger.warning(f"[Materialize] No {prefix} creation service, returning placeholder id {placeholder}")
        return placeholder
