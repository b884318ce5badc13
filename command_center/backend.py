# command_center/backend.py

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Tuple

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from command_center import settings
from command_center.approval import ApprovalWorkflow
from command_center.base_utils import BaseUtils, utcnow
from command_center.clarification import ClarificationEngine
from command_center.connection import DbConnection
from command_center.drafts import (
    ClarificationFlow,
    DraftAction,
    DraftActionResponse,
    DraftStatus,
    DraftType,
    EnvelopeStatus,
    SmartInputResponse,
    draft_from_json,
    draft_type_of,
)
from command_center.entities import ClarificationSession, PendingDraft
from command_center.errors import (
    AIProcessingError,
    DraftNotFoundError,
    DraftValidationError,
    SessionConflictError,
)
from command_center.events import EventBus, QueueMessageRelay
from command_center.input_normalizer import AttachmentSummary, build_user_prompt, summarize_attachment
from command_center.llm_client import ChatLlmClient
from command_center.materializer import EntityServices, Materializer, QueueEntityServices
from command_center.pending_draft_recorder import (
    build_pending_draft,
    find_draft_for_user,
    list_active_drafts,
    record_pending_draft,
    sweep_expired_drafts,
)
from command_center.prompts import INTAKE_SYSTEM_PROMPT, OCR_PROMPT
from command_center.response_parser import ParsedResponse, ResponseParser
from command_center.session_store import ClarificationSessionStore

logger = logging.getLogger("command_center")


class Backend(BaseUtils):
    """
    Intake-to-approval pipeline:

        submit -> (model) -> parse -> READY draft | clarification session
        answer_clarification / confirm_alternative -> ... -> READY draft
        decide_draft -> APPROVED | MODIFIED | REJECTED | EXPIRED
    """

    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        llm=None,
        entity_services: EntityServices | None = None,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_questions: int = settings.CLARIFICATION_MAX_QUESTIONS,
    ):
        self.SessionFactory = session_factory or DbConnection().build_db_session_factory()
        self.clock = clock
        self._llm = llm

        self.high_threshold = settings.HIGH_CONFIDENCE_THRESHOLD
        self.medium_threshold = settings.MEDIUM_CONFIDENCE_THRESHOLD
        self.expiration_hours = settings.DRAFT_EXPIRATION_HOURS

        self.events = events or EventBus()
        if events is None and settings.NOTIFICATION_RECEIVER_ID:
            self.events.subscribe(QueueMessageRelay(
                self.SessionFactory,
                sender_id=settings.QUEUE_SENDER_ID,
                receiver_id=settings.NOTIFICATION_RECEIVER_ID,
            ))

        if entity_services is None:
            entity_services = QueueEntityServices(
                self.SessionFactory,
                sender_id=settings.QUEUE_SENDER_ID,
                receiver_id=settings.ENTITY_SERVICES_RECEIVER_ID,
            )

        self.parser = ResponseParser()
        self.clarification = ClarificationEngine(self.parser, max_questions=max_questions)
        self.sessions = ClarificationSessionStore(self.SessionFactory, idle_hours=settings.SESSION_IDLE_HOURS)
        self.approval = ApprovalWorkflow(
            self.SessionFactory,
            Materializer(entity_services),
            self.events,
            clock=self.clock,
        )

    # -----------------------
    # Model access
    # -----------------------

    def _get_llm(self):
        if self._llm is None:
            self._llm = ChatLlmClient(
                settings.COMMAND_CENTER_MODEL,
                vertex_project=settings.PROJECT_ID,
                vertex_region=settings.REGION,
                timeout=settings.LLM_TIMEOUT_SECONDS,
                retries=settings.LLM_RETRIES,
            )
        return self._llm

    def _invoke_model(self, system_prompt: str, user_prompt: str) -> str:
        try:
            llm = self._get_llm()
            raw = llm.invoke(system_prompt, user_prompt)
        except Exception as e:
            raise AIProcessingError(f"Model call failed: {e}") from e
        if isinstance(llm, ChatLlmClient):
            logger.debug(f"[Intake] accrued model cost ${llm.get_accrued_cost():.6f}")
        return raw

    def _extract_image_text(self, image_bytes: bytes, mime_type: str) -> str | None:
        return self._get_llm().extract_text_from_image(image_bytes, mime_type, OCR_PROMPT)

    def summarize_upload(self, name: str | None, mime_type: str | None, data: bytes) -> AttachmentSummary:
        return summarize_attachment(
            name=name or "attachment",
            mime_type=mime_type,
            data=data,
            ocr=self._extract_image_text,
        )

    # -----------------------
    # Intake
    # -----------------------

    def submit(
        self,
        user_id: str,
        text: str | None = None,
        attachments: Iterable[Dict[str, Any]] | None = None,
        voice_transcript: str | None = None,
    ) -> SmartInputResponse:
        now = self.clock()
        today = now.date()

        summaries: List[AttachmentSummary] = []
        for att in attachments or []:
            if isinstance(att, AttachmentSummary):
                summaries.append(att)
                continue
            summaries.append(summarize_attachment(
                name=att.get("name") or "attachment",
                mime_type=att.get("mime_type"),
                data_b64=att.get("data"),
                size_bytes=att.get("size_bytes"),
                extracted_text=att.get("extracted_text"),
                ocr=self._extract_image_text,
            ))

        user_prompt = build_user_prompt(text, summaries, voice_transcript, today)
        system_prompt = self.unsafe_string_format(
            INTAKE_SYSTEM_PROMPT,
            TOMORROW_DATE=(today + timedelta(days=1)).isoformat(),
        )
        logger.debug(f"[Intake] user={user_id} prompt:\n{user_prompt}")

        try:
            raw = self._invoke_model(system_prompt, user_prompt)
        except AIProcessingError as e:
            logger.warning(f"[Intake] {e}; falling back to note")
            raw = ""
        logger.debug(f"[Intake] raw model response:\n{raw}")

        parsed = self.parser.parse(raw)
        return self._route(
            user_id,
            parsed,
            original_input_text=text,
            voice_transcription=voice_transcript,
            attachment_count=len(summaries),
        )

    def _route(
        self,
        user_id: str,
        parsed: ParsedResponse,
        *,
        original_input_text: str | None,
        voice_transcription: str | None,
        attachment_count: int,
    ) -> SmartInputResponse:
        """
        READY when confident enough (or when there is nothing to ask), otherwise a session.
        Below the high threshold an alternative suggestion opens a session even without questions.
        """
        flow = self.clarification.cap_flow(parsed.clarification_flow) if parsed.clarification_flow else None
        origin = {
            "original_input_text": original_input_text,
            "voice_transcription": voice_transcription,
            "attachment_count": attachment_count,
        }

        alternative = parsed.status_hint == EnvelopeStatus.SUGGEST_ALTERNATIVE and not parsed.fallback
        if parsed.confidence >= self.high_threshold or (flow is None and not alternative):
            return self._ready(
                user_id,
                parsed.draft,
                confidence_score=parsed.confidence,
                reasoning=parsed.reasoning,
                suggestions=parsed.suggestions,
                **origin,
            )

        if alternative:
            return self._open_session(user_id, parsed, EnvelopeStatus.SUGGEST_ALTERNATIVE, flow, **origin)

        if parsed.confidence < self.medium_threshold:
            logger.info(f"[Intake] Low confidence {parsed.confidence:.2f}, asking {len(flow.questions)} question(s)")
        return self._open_session(user_id, parsed, EnvelopeStatus.NEEDS_CLARIFICATION, flow, **origin)

    def _ready(
        self,
        user_id: str,
        draft,
        *,
        confidence_score: float,
        reasoning: str,
        suggestions: List[str],
        original_input_text: str | None,
        voice_transcription: str | None,
        attachment_count: int,
    ) -> SmartInputResponse:
        pending = record_pending_draft(
            self.SessionFactory,
            user_id=user_id,
            draft=draft,
            confidence_score=confidence_score,
            ai_reasoning=reasoning,
            original_input_text=original_input_text,
            voice_transcription=voice_transcription,
            attachment_count=attachment_count,
            now=self.clock(),
            expiration_hours=self.expiration_hours,
        )
        logger.info(f"[Intake] Draft {pending.id} ({pending.draft_type}) pending approval for user {user_id}")
        return self._draft_envelope(pending, suggestions=suggestions)

    def _open_session(
        self,
        user_id: str,
        parsed: ParsedResponse,
        kind: EnvelopeStatus,
        flow: ClarificationFlow | None,
        *,
        original_input_text: str | None,
        voice_transcription: str | None,
        attachment_count: int,
    ) -> SmartInputResponse:
        flow = flow or ClarificationFlow(max_questions=self.clarification.max_questions)
        original_intent = parsed.original_intent if parsed.original_intent != parsed.intent else None

        db: Session = self.SessionFactory()
        try:
            row = self.sessions.create(
                db,
                self.clock(),
                user_id=str(user_id),
                kind=kind.value,
                intent=parsed.intent.value,
                original_intent=original_intent.value if original_intent else None,
                draft_json=dict(parsed.raw_draft),
                flow=flow.model_dump(by_alias=True, mode="json"),
                answers={},
                questions_asked=0,
                confidence_score=parsed.confidence,
                reasoning=parsed.reasoning,
                suggestions=list(parsed.suggestions),
                original_input_text=original_input_text,
                voice_transcription=voice_transcription,
                attachment_count=attachment_count,
            )
            db.commit()
            logger.info(f"[Clarify] Session {row.id} opened ({kind.value}, {len(flow.questions)} question(s))")
            return self._session_envelope(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # -----------------------
    # Clarification
    # -----------------------

    def answer_clarification(
        self,
        user_id: str,
        session_id: str,
        answers: Iterable[Tuple[str, Any]],
    ) -> SmartInputResponse:
        answers = list(answers)
        if not answers:
            raise DraftValidationError("At least one answer is required")

        def advance(row: ClarificationSession) -> None:
            self.clarification.apply_answers(row, answers)

        return self._advance_session(session_id, advance, user_id=user_id)

    def confirm_alternative(
        self,
        session_id: str,
        accepted: bool,
        user_id: str | None = None,
    ) -> SmartInputResponse:

        def advance(row: ClarificationSession) -> None:
            if row.kind != EnvelopeStatus.SUGGEST_ALTERNATIVE.value:
                raise DraftValidationError("Session has no alternative suggestion to confirm")
            if row.alternative_accepted is not None:
                raise DraftValidationError("Alternative suggestion was already answered")
            if accepted:
                self.clarification.accept_alternative(row)
            else:
                self.clarification.decline_alternative(row)

        return self._advance_session(session_id, advance, user_id=user_id)

    def _advance_session(
        self,
        session_id: str,
        advance: Callable[[ClarificationSession], None],
        user_id: str | None = None,
    ) -> SmartInputResponse:
        db: Session = self.SessionFactory()
        try:
            now = self.clock()
            row = self.sessions.load_active(db, session_id, now, user_id=user_id)
            advance(row)
            self.sessions.touch(row, now)

            if not self.clarification.is_ready(row):
                db.commit()
                return self._session_envelope(row)

            draft = self.clarification.current_draft(row)
            pending = build_pending_draft(
                user_id=row.user_id,
                draft=draft,
                confidence_score=row.confidence_score,
                ai_reasoning=row.reasoning,
                original_input_text=row.original_input_text,
                voice_transcription=row.voice_transcription,
                attachment_count=row.attachment_count,
                now=now,
                expiration_hours=self.expiration_hours,
            )
            suggestions = list(row.suggestions or [])
            db.add(pending)
            db.delete(row)
            db.commit()
            logger.info(f"[Clarify] Session {session_id} resolved into draft {pending.id} ({pending.draft_type})")
            return self._draft_envelope(pending, suggestions=suggestions)
        except StaleDataError as e:
            db.rollback()
            raise SessionConflictError(session_id) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # -----------------------
    # Approval
    # -----------------------

    def decide_draft(
        self,
        user_id: str,
        draft_id: str,
        action: DraftAction | str,
        modified_draft: Any = None,
    ) -> DraftActionResponse:
        return self.approval.decide(user_id, draft_id, action, modified_draft)

    def list_pending_drafts(self, user_id: str) -> List[SmartInputResponse]:
        rows = list_active_drafts(self.SessionFactory, user_id, self.clock())
        return [self._draft_envelope(row) for row in rows]

    def get_draft(self, user_id: str, draft_id: str) -> SmartInputResponse:
        db: Session = self.SessionFactory()
        try:
            row = find_draft_for_user(db, draft_id, user_id)
            if row is None:
                raise DraftNotFoundError(draft_id)
            return self._draft_envelope(row)
        finally:
            db.close()

    def sweep(self) -> Dict[str, int]:
        """
        Storage hygiene: expire stale drafts and drop idle sessions.
        """
        now = self.clock()
        expired = sweep_expired_drafts(self.SessionFactory, now)
        removed = self.sessions.sweep_idle(now)
        if expired or removed:
            logger.info(f"[Sweep] expired {expired} draft(s), removed {removed} idle session(s)")
        return {"expired_drafts": expired, "removed_sessions": removed}

    # -----------------------
    # Envelopes
    # -----------------------

    def _draft_envelope(self, row: PendingDraft, suggestions: List[str] | None = None) -> SmartInputResponse:
        draft = draft_from_json(row.draft_content)
        return SmartInputResponse(
            status=EnvelopeStatus.READY,
            intent_detected=draft_type_of(draft),
            confidence_score=row.confidence_score,
            draft=draft,
            reasoning=row.ai_reasoning or "",
            suggestions=list(suggestions or []),
            draft_id=row.id,
            draft_status=DraftStatus(row.status),
            original_input=row.original_input_text or row.voice_transcription,
            expires_at=row.expires_at,
        )

    def _session_envelope(self, row: ClarificationSession) -> SmartInputResponse:
        if row.kind == EnvelopeStatus.SUGGEST_ALTERNATIVE.value and row.alternative_accepted is None:
            status = EnvelopeStatus.SUGGEST_ALTERNATIVE
        else:
            status = EnvelopeStatus.NEEDS_CLARIFICATION

        return SmartInputResponse(
            status=status,
            intent_detected=DraftType(row.intent),
            confidence_score=row.confidence_score,
            draft=self.clarification.current_draft(row),
            reasoning=row.reasoning or "",
            suggestions=list(row.suggestions or []),
            clarification_flow=self.clarification.remaining_flow(row),
            session_id=row.id,
            original_input=row.original_input_text or row.voice_transcription,
            expires_at=self.sessions.expires_at(row),
        )
