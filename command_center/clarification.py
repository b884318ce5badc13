# command_center/clarification.py
"""
Bounded question/answer exchange that completes an under-specified draft.

States: COLLECTING (fewer than the cap asked and a required question still open)
-> READY (all required questions answered, or the cap reached). The running draft
lives as the raw model node; each answer is written into it at the question's
target field and the variant is re-extracted, so defaults apply the same way
they do on first parse.
"""
import logging
from typing import Any, Dict, List, Tuple

from command_center.base_utils import BaseUtils
from command_center.drafts import (
    ClarificationFlow,
    ClarificationQuestion,
    DraftType,
    EnvelopeStatus,
    QuestionType,
)
from command_center.entities import ClarificationSession
from command_center.errors import DraftValidationError
from command_center.response_parser import ResponseParser

logger = logging.getLogger("command_center")

# draft attribute names (camelCase) -> the model's field names
_FIELD_ALIASES = {
    "lifeAreaCode": "lifeWheelAreaId",
    "priorityQuadrantCode": "eisenhowerQuadrantId",
    "effortPoints": "storyPoints",
    "epicRef": "suggestedEpicId",
    "sprintRef": "suggestedSprintId",
    "recurring": "isRecurring",
    "allDay": "isAllDay",
    "durationDays": "duration",
    "recurrenceFrequency": "recurrence",
}

_YES = {"yes", "true", "y", "1", "on"}
_NO = {"no", "false", "n", "0", "off"}


class ClarificationEngine(BaseUtils):

    def __init__(self, parser: ResponseParser, max_questions: int):
        self.parser = parser
        self.max_questions = max_questions

    # -----------------------
    # Opening a session
    # -----------------------

    def cap_flow(self, flow: ClarificationFlow) -> ClarificationFlow:
        """
        Truncates the model's question set to the hard cap, whatever maxQuestions it asked for.
        """
        limit = self.max_questions
        if flow.max_questions and flow.max_questions > 0:
            limit = min(limit, flow.max_questions)
        if len(flow.questions) > limit:
            logger.info(f"[Clarify] Truncating {len(flow.questions)} proposed questions to {limit}")
        return flow.model_copy(update={
            "questions": list(flow.questions[:limit]),
            "max_questions": limit,
        })

    # -----------------------
    # Reading a session
    # -----------------------

    def flow_of(self, row: ClarificationSession) -> ClarificationFlow:
        return ClarificationFlow.model_validate(row.flow)

    def current_draft(self, row: ClarificationSession):
        return self.parser.extract_draft(DraftType(row.intent), dict(row.draft_json or {}))

    def open_questions(self, row: ClarificationSession) -> List[ClarificationQuestion]:
        answered = row.answers or {}
        return [q for q in self.flow_of(row).questions if q.id not in answered]

    def remaining_flow(self, row: ClarificationSession) -> ClarificationFlow:
        flow = self.flow_of(row)
        return flow.model_copy(update={"questions": self.open_questions(row)})

    def question_budget(self, row: ClarificationSession) -> int:
        return min(self.max_questions, self.flow_of(row).max_questions or self.max_questions)

    def is_ready(self, row: ClarificationSession) -> bool:
        if row.kind == EnvelopeStatus.SUGGEST_ALTERNATIVE.value and row.alternative_accepted is None:
            return False
        if row.questions_asked >= self.question_budget(row):
            return True
        return not any(q.required for q in self.open_questions(row))

    # -----------------------
    # Advancing a session
    # -----------------------

    def apply_answers(self, row: ClarificationSession, answers: List[Tuple[str, Any]]) -> None:
        """
        Merges (question_id, value) pairs into the session. Unknown question ids are rejected
        before anything is written.
        """
        by_id = {q.id: q for q in self.flow_of(row).questions}
        unknown = [qid for qid, _ in answers if qid not in by_id]
        if unknown:
            raise DraftValidationError(f"Unknown clarification question: {', '.join(unknown)}")

        # JSON columns are reassigned as copies so the change is flushed with a version bump
        draft_json: Dict[str, Any] = dict(row.draft_json or {})
        merged: Dict[str, Any] = dict(row.answers or {})
        asked = row.questions_asked
        for qid, value in answers:
            question = by_id[qid]
            coerced = self.coerce_answer(question, value)
            self._set_field(draft_json, question.field_to_populate, coerced)
            if qid not in merged:
                asked += 1
            merged[qid] = coerced

        row.draft_json = draft_json
        row.answers = merged
        row.questions_asked = asked

        # answering the alternative's questions means going with it
        if row.kind == EnvelopeStatus.SUGGEST_ALTERNATIVE.value and row.alternative_accepted is None:
            row.alternative_accepted = True

    def accept_alternative(self, row: ClarificationSession) -> None:
        row.alternative_accepted = True

    def decline_alternative(self, row: ClarificationSession) -> None:
        """
        Drops the suggested type without asking the model again. The draft reverts to the
        type it replaced when the model named one, otherwise to a note of the original input.
        """
        row.alternative_accepted = False
        source = DraftType(row.intent)
        target = DraftType(row.original_intent) if row.original_intent else None

        if target is not None and target != source:
            node = self._remap_node(dict(row.draft_json or {}), source, target)
        else:
            target = DraftType.NOTE
            text = (row.original_input_text or row.voice_transcription or "").strip()
            node = {
                "title": text[:60] if text else "Quick Note",
                "content": text,
            }

        logger.info(f"[Clarify] Alternative {source.value} declined, reverting to {target.value}")
        row.intent = target.value
        row.draft_json = node
        # the remaining questions targeted the declined type
        row.flow = {**dict(row.flow or {}), "questions": []}

    def _remap_node(self, node: Dict[str, Any], source: DraftType, target: DraftType) -> Dict[str, Any]:
        if target == DraftType.CHALLENGE and not node.get("name"):
            node["name"] = node.get("title")
        elif source == DraftType.CHALLENGE and not node.get("title"):
            node["title"] = node.get("name")
        return node

    def coerce_answer(self, question: ClarificationQuestion, value: Any) -> Any:
        if value is None:
            if question.default_value is not None:
                value = question.default_value
            else:
                raise DraftValidationError(f"Answer for {question.id} is empty")

        if question.type == QuestionType.NUMBER_INPUT:
            if isinstance(value, bool):
                raise DraftValidationError(f"Answer for {question.id} must be a number")
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise DraftValidationError(f"Answer for {question.id} must be a number")
            return int(number) if number.is_integer() else number

        if question.type == QuestionType.YES_NO:
            if isinstance(value, bool):
                return value
            lowered = str(value).strip().lower()
            if lowered in _YES:
                return True
            if lowered in _NO:
                return False
            raise DraftValidationError(f"Answer for {question.id} must be yes or no")

        return str(value).strip()

    def _set_field(self, node: Dict[str, Any], path: str, value: Any) -> None:
        """
        Writes value at a dotted path (e.g. recurrencePattern.frequency), copying nested dicts.
        """
        keys = [_FIELD_ALIASES.get(k, k) for k in path.split(".") if k]
        if not keys:
            return
        target = node
        for key in keys[:-1]:
            child = target.get(key)
            child = dict(child) if isinstance(child, dict) else {}
            target[key] = child
            target = child
        target[keys[-1]] = value
