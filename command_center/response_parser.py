# command_center/response_parser.py
"""
Turns the model's raw reply into a typed draft.

The model is an untrusted upstream: output may be fenced, truncated or shaped
differently from the prompt's schema. Every field is read with a default and
any structural failure produces the "Processing Error" note instead of raising.
"""
import datetime as dt
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from command_center.base_utils import BaseUtils
from command_center.drafts import (
    DEFAULT_EFFORT_POINTS,
    DEFAULT_LIFE_AREA,
    DEFAULT_QUADRANT,
    EFFORT_POINTS,
    FINANCE_LIFE_AREA,
    LIFE_AREAS,
    PRIORITY_QUADRANTS,
    BillDraft,
    ChallengeDraft,
    ClarificationFlow,
    ClarificationQuestion,
    Draft,
    DraftType,
    EnvelopeStatus,
    EpicDraft,
    EventDraft,
    NoteDraft,
    QuestionOption,
    QuestionType,
    RecurrencePattern,
    TaskDraft,
)

logger = logging.getLogger("command_center")

FALLBACK_CONFIDENCE = 0.3
DEFAULT_CONFIDENCE = 0.5
FALLBACK_QUESTIONS = [
    "What would you like to create?",
    "Can you provide more details?",
]


class ParsedResponse(BaseModel):
    intent: DraftType
    confidence: float
    reasoning: str = ""
    suggestions: List[str] = Field(default_factory=list)
    draft: Draft
    # draft node as the model sent it; clarification answers are written into it
    raw_draft: Dict[str, Any] = Field(default_factory=dict)
    status_hint: Optional[EnvelopeStatus] = None
    clarification_flow: Optional[ClarificationFlow] = None
    original_intent: Optional[DraftType] = None
    fallback: bool = False


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip().lower() in ("", "null"))


class ResponseParser(BaseUtils):

    def __init__(self):
        self._extractors: Dict[DraftType, Callable[[Dict[str, Any]], Any]] = {
            DraftType.TASK: self.extract_task,
            DraftType.EPIC: self.extract_epic,
            DraftType.CHALLENGE: self.extract_challenge,
            DraftType.EVENT: self.extract_event,
            DraftType.BILL: self.extract_bill,
            DraftType.NOTE: self.extract_note,
        }

    # -----------------------
    # Entry points
    # -----------------------

    def parse(self, raw: str | None) -> ParsedResponse:
        """
        Never raises. Anything that cannot be read as an envelope with a draft object
        becomes the fallback note with confidence 0.3.
        """
        try:
            return self._parse_envelope(raw or "")
        except Exception as e:
            logger.warning(f"[Parser] Failed to parse AI response, using fallback note: {e}")
            return self.fallback(raw or "")

    def fallback(self, raw: str) -> ParsedResponse:
        draft = NoteDraft(
            title="Processing Error",
            content=f"Could not parse AI response: {raw}",
            life_area_code=DEFAULT_LIFE_AREA,
            tags=["error"],
            clarifying_questions=list(FALLBACK_QUESTIONS),
        )
        return ParsedResponse(
            intent=DraftType.NOTE,
            confidence=FALLBACK_CONFIDENCE,
            reasoning="Failed to parse AI response, captured as note",
            suggestions=[],
            draft=draft,
            raw_draft={},
            fallback=True,
        )

    def extract_draft(self, draft_type: DraftType, node: Dict[str, Any]):
        if not isinstance(node, dict):
            raise ValueError(f"draft node must be an object, got {type(node).__name__}")
        return self._extractors[draft_type](node)

    def _parse_envelope(self, raw: str) -> ParsedResponse:
        root = self.load_json_strict(raw)
        if not isinstance(root, dict):
            raise ValueError("AI response root is not a JSON object")

        draft_type = self.parse_intent(root.get("intentDetected")) or DraftType.NOTE
        draft_node = root.get("draft")
        if not isinstance(draft_node, dict):
            raise ValueError("AI response has no draft object")

        draft = self.extract_draft(draft_type, draft_node)
        logger.debug(f"[Parser] intent={draft_type.value} draft={draft!r}")

        return ParsedResponse(
            intent=draft_type,
            confidence=self._confidence(root.get("confidenceScore")),
            reasoning=self._text(root, "reasoning", ""),
            suggestions=self._str_list(root, "suggestions"),
            draft=draft,
            raw_draft=dict(draft_node),
            status_hint=self._status_hint(root.get("status")),
            clarification_flow=self.parse_flow(root.get("clarificationFlow")),
            original_intent=self.parse_intent(root.get("originalIntent")),
        )

    # -----------------------
    # Envelope fields
    # -----------------------

    def parse_intent(self, value: Any) -> DraftType | None:
        if _is_null(value):
            return None
        try:
            return DraftType(str(value).strip().lower())
        except ValueError:
            # unknown intent -> note extractor
            return DraftType.NOTE

    def _status_hint(self, value: Any) -> EnvelopeStatus | None:
        if _is_null(value):
            return None
        try:
            return EnvelopeStatus(str(value).strip().upper())
        except ValueError:
            return None

    def _confidence(self, value: Any) -> float:
        if isinstance(value, bool) or _is_null(value):
            return DEFAULT_CONFIDENCE
        try:
            score = float(value)
        except (TypeError, ValueError):
            return DEFAULT_CONFIDENCE
        if score != score:  # NaN
            return DEFAULT_CONFIDENCE
        return min(1.0, max(0.0, score))

    def parse_flow(self, node: Any) -> ClarificationFlow | None:
        if not isinstance(node, dict):
            return None
        questions: List[ClarificationQuestion] = []
        for q in self._list(node, "questions"):
            question = self._question(q)
            if question is not None:
                questions.append(question)
        if not questions:
            return None
        return ClarificationFlow(
            flow_id=self._text(node, "flowId", ""),
            title=self._text(node, "title", ""),
            description=self._text(node, "description", ""),
            questions=questions,
            max_questions=self._int(node, "maxQuestions", 5),
        )

    def _question(self, node: Any) -> ClarificationQuestion | None:
        if not isinstance(node, dict):
            return None
        qid = self._opt_text(node, "id")
        text = self._opt_text(node, "question")
        if qid is None or text is None:
            logger.warning(f"[Parser] Skipping malformed clarification question: {node!r}")
            return None

        try:
            qtype = QuestionType(str(node.get("type") or "").strip().upper())
        except ValueError:
            qtype = QuestionType.SINGLE_CHOICE

        options: List[QuestionOption] = []
        for opt in self._list(node, "options"):
            if isinstance(opt, dict):
                value = self._opt_text(opt, "value")
                if value is None:
                    continue
                options.append(QuestionOption(
                    value=value,
                    label=self._text(opt, "label", value),
                    icon=self._opt_text(opt, "icon"),
                ))
            elif not _is_null(opt):
                options.append(QuestionOption(value=str(opt), label=str(opt)))

        return ClarificationQuestion(
            id=qid,
            question=text,
            type=qtype,
            options=options,
            field_to_populate=self._text(node, "fieldToPopulate", qid),
            required=self._bool(node, "required", False),
            default_value=self._opt_text(node, "defaultValue"),
        )

    # -----------------------
    # Variant extractors
    # -----------------------

    def extract_task(self, node: Dict[str, Any]) -> TaskDraft:
        effort = self._int(node, "storyPoints", DEFAULT_EFFORT_POINTS)
        if effort not in EFFORT_POINTS:
            effort = DEFAULT_EFFORT_POINTS

        recurring = self._bool(node, "isRecurring", False)
        recurrence = None
        pattern = node.get("recurrencePattern")
        if isinstance(pattern, dict):
            recurrence = RecurrencePattern(
                frequency=self._text(pattern, "frequency", "daily").lower(),
                interval=max(1, self._int(pattern, "interval", 1)),
                end_date=self._date(pattern, "endDate"),
            )
        elif recurring:
            recurrence = RecurrencePattern()

        return TaskDraft(
            title=self._text(node, "title", "Untitled Task"),
            description=self._text(node, "description", ""),
            life_area_code=self._life_area(node),
            priority_quadrant_code=self._quadrant(node),
            effort_points=effort,
            epic_ref=self._opt_text(node, "suggestedEpicId"),
            sprint_ref=self._opt_text(node, "suggestedSprintId"),
            due_date=self._date(node, "dueDate"),
            recurring=recurring,
            recurrence=recurrence,
        )

    def extract_epic(self, node: Dict[str, Any]) -> EpicDraft:
        tasks = [
            self.extract_task(t)
            for t in self._list(node, "suggestedTasks")
            if isinstance(t, dict)
        ]
        return EpicDraft(
            title=self._text(node, "title", "Untitled Epic"),
            description=self._text(node, "description", ""),
            life_area_code=self._life_area(node),
            suggested_tasks=tasks,
            color=self._text(node, "color", "#3B82F6"),
            icon=self._opt_text(node, "icon"),
            start_date=self._date(node, "startDate"),
            end_date=self._date(node, "endDate"),
        )

    def extract_challenge(self, node: Dict[str, Any]) -> ChallengeDraft:
        name = self._opt_text(node, "name") or self._text(node, "title", "Untitled Challenge")
        return ChallengeDraft(
            name=name,
            description=self._text(node, "description", ""),
            life_area_code=self._life_area(node),
            metric_type=self._text(node, "metricType", "yesno"),
            target_value=self._decimal(node, "targetValue"),
            unit=self._opt_text(node, "unit"),
            duration_days=self._int(node, "duration", 30),
            recurrence_frequency=self._text(node, "recurrence", "daily"),
            why_statement=self._opt_text(node, "whyStatement"),
            reward_description=self._opt_text(node, "rewardDescription"),
            grace_days=self._int(node, "graceDays", 2),
            reminder_time=self._time(node, "reminderTime"),
        )

    def extract_event(self, node: Dict[str, Any]) -> EventDraft:
        return EventDraft(
            title=self._text(node, "title", "Untitled Event"),
            description=self._text(node, "description", ""),
            life_area_code=self._life_area(node),
            date=self._date(node, "date"),
            start_time=self._time(node, "startTime"),
            end_time=self._time(node, "endTime"),
            location=self._opt_text(node, "location"),
            all_day=self._bool(node, "isAllDay", False),
            recurrence=self._opt_text(node, "recurrence"),
            attendees=self._str_list(node, "attendees"),
        )

    def extract_bill(self, node: Dict[str, Any]) -> BillDraft:
        # life area is pinned to finance whatever the model says
        return BillDraft(
            vendor_name=self._text(node, "vendorName", "Unknown Vendor"),
            amount=self._decimal(node, "amount"),
            currency=self._text(node, "currency", "USD").upper(),
            due_date=self._date(node, "dueDate"),
            category=self._opt_text(node, "category"),
            life_area_code=FINANCE_LIFE_AREA,
            recurring=self._bool(node, "isRecurring", False),
            recurrence=self._opt_text(node, "recurrence"),
            notes=self._opt_text(node, "notes"),
        )

    def extract_note(self, node: Dict[str, Any]) -> NoteDraft:
        return NoteDraft(
            title=self._text(node, "title", "Quick Note"),
            content=self._text(node, "content", ""),
            life_area_code=self._life_area(node),
            tags=self._str_list(node, "tags"),
            clarifying_questions=self._str_list(node, "clarifyingQuestions"),
        )

    # -----------------------
    # Field readers
    # -----------------------

    def _text(self, node: Dict[str, Any], key: str, default: str) -> str:
        value = node.get(key)
        if _is_null(value):
            return default
        if isinstance(value, (dict, list)):
            return self._coerce_field_to_str(value)
        return str(value).strip()

    def _opt_text(self, node: Dict[str, Any], key: str) -> str | None:
        value = node.get(key)
        if _is_null(value) or isinstance(value, (dict, list)):
            return None
        return str(value).strip()

    def _int(self, node: Dict[str, Any], key: str, default: int) -> int:
        value = node.get(key)
        if isinstance(value, bool) or _is_null(value):
            return default
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return default

    def _bool(self, node: Dict[str, Any], key: str, default: bool) -> bool:
        value = node.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "yes", "1"):
                return True
            if lowered in ("false", "no", "0"):
                return False
        if isinstance(value, (int, float)):
            return bool(value)
        return default

    def _date(self, node: Dict[str, Any], key: str) -> dt.date | None:
        value = node.get(key)
        if _is_null(value) or not isinstance(value, str):
            return None
        value = value.strip()
        try:
            return dt.date.fromisoformat(value)
        except ValueError:
            pass
        try:
            return dt.datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None

    def _time(self, node: Dict[str, Any], key: str) -> dt.time | None:
        value = node.get(key)
        if _is_null(value) or not isinstance(value, str):
            return None
        try:
            return dt.time.fromisoformat(value.strip())
        except ValueError:
            return None

    def _decimal(self, node: Dict[str, Any], key: str) -> Decimal | None:
        value = node.get(key)
        if isinstance(value, bool) or _is_null(value) or isinstance(value, (dict, list)):
            return None
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            return None
        return number if number.is_finite() else None

    def _list(self, node: Dict[str, Any], key: str) -> List[Any]:
        value = node.get(key)
        return value if isinstance(value, list) else []

    def _str_list(self, node: Dict[str, Any], key: str) -> List[str]:
        value = node.get(key)
        if not isinstance(value, list):
            return []
        return [str(v).strip() for v in value if not _is_null(v) and not isinstance(v, (dict, list))]

    def _life_area(self, node: Dict[str, Any]) -> str:
        code = self._text(node, "lifeWheelAreaId", DEFAULT_LIFE_AREA).lower()
        return code if code in LIFE_AREAS else DEFAULT_LIFE_AREA

    def _quadrant(self, node: Dict[str, Any]) -> str:
        code = self._text(node, "eisenhowerQuadrantId", DEFAULT_QUADRANT).lower()
        return code if code in PRIORITY_QUADRANTS else DEFAULT_QUADRANT
