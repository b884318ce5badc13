# command_center/approval.py
"""
Approve / modify / reject a pending draft.

Preconditions, in order: the draft exists and belongs to the caller, it is still
PENDING_APPROVAL, and it has not expired. An expired draft is flipped to EXPIRED
(and committed) even though the action fails.

The status change is a compare-and-set on the row, made in the same transaction as
the entity creation and the entity id write-back. Of two concurrent approvals only
one sees the row still pending; the other gets DraftAlreadyProcessedError.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from command_center.drafts import (
    DraftAction,
    DraftActionResponse,
    DraftStatus,
    DraftType,
    draft_from_json,
    draft_to_json,
    draft_type_of,
)
from command_center.entities import PendingDraft
from command_center.errors import (
    DraftAlreadyProcessedError,
    DraftExpiredError,
    DraftNotFoundError,
    DraftValidationError,
)
from command_center.events import DraftApproved, DraftExpired, DraftModified, DraftRejected, EventBus
from command_center.materializer import Materializer
from command_center.pending_draft_recorder import (
    claim_pending_draft,
    find_draft_for_user,
    mark_draft_expired,
)

logger = logging.getLogger("command_center")

_TARGET_STATUS = {
    DraftAction.APPROVE: DraftStatus.APPROVED,
    DraftAction.MODIFY: DraftStatus.MODIFIED,
    DraftAction.REJECT: DraftStatus.REJECTED,
}

_MESSAGES = {
    DraftAction.APPROVE: "Draft approved and entity created",
    DraftAction.MODIFY: "Draft modified and entity created",
    DraftAction.REJECT: "Draft rejected",
}


class ApprovalWorkflow:

    def __init__(
        self,
        session_factory: sessionmaker,
        materializer: Materializer,
        events: EventBus,
        clock: Callable[[], datetime],
    ):
        self.SessionFactory = session_factory
        self.materializer = materializer
        self.events = events
        self.clock = clock

    def decide(
        self,
        user_id: str,
        draft_id: str,
        action: DraftAction | str,
        modified_draft: Any = None,
    ) -> DraftActionResponse:
        action = self._parse_action(action)
        session: Session = self.SessionFactory()
        try:
            row = find_draft_for_user(session, draft_id, user_id)
            if row is None:
                raise DraftNotFoundError(draft_id)
            row_id = row.id

            if row.status != DraftStatus.PENDING_APPROVAL.value:
                raise DraftAlreadyProcessedError(draft_id, row.status)

            now = self.clock()
            if now >= row.expires_at:
                self._expire(session, row, now)
                raise DraftExpiredError(draft_id)

            replacement = None
            if action == DraftAction.MODIFY:
                replacement = self._replacement_draft(modified_draft)

            target = _TARGET_STATUS[action]
            if not claim_pending_draft(session, row_id, target, now):
                session.rollback()
                current = self._current_status(session, row_id)
                raise DraftAlreadyProcessedError(draft_id, current)

            draft = replacement if replacement is not None else draft_from_json(row.draft_content)
            entity_type = draft_type_of(draft)

            entity_id = None
            values: Dict[str, Any] = {}
            if action != DraftAction.REJECT:
                entity_id = self.materializer.materialize(str(user_id), draft, db=session)
                values["created_entity_id"] = entity_id
            if replacement is not None:
                values["draft_content"] = draft_to_json(replacement)
                values["draft_type"] = entity_type.value
            if values:
                session.execute(
                    update(PendingDraft)
                        .where(PendingDraft.id == row_id)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info(f"[Approval] Draft {draft_id} -> {target.value} (entity={entity_id})")
        self._publish(action, row_id, user_id, entity_type, entity_id, now)

        return DraftActionResponse(
            draft_id=str(draft_id),
            status=target,
            entity_type=entity_type,
            created_entity_id=entity_id,
            message=_MESSAGES[action],
        )

    def _parse_action(self, action: DraftAction | str) -> DraftAction:
        try:
            return DraftAction(str(getattr(action, "value", action)).upper())
        except ValueError:
            raise DraftValidationError(f"Unknown action: {action}")

    def _replacement_draft(self, modified_draft: Any):
        if modified_draft is None:
            raise DraftValidationError("Modified draft is required for MODIFY action")
        if isinstance(modified_draft, dict):
            try:
                return draft_from_json(modified_draft)
            except ValidationError as e:
                raise DraftValidationError(f"Invalid modified draft: {e}")
        return modified_draft

    def _expire(self, session: Session, row: PendingDraft, now: datetime) -> None:
        if mark_draft_expired(session, row.id, now):
            session.commit()
            logger.info(f"[Approval] Draft {row.id} expired at {row.expires_at.isoformat()}")
            self.events.publish(DraftExpired(
                draft_id=row.id,
                user_id=row.user_id,
                draft_type=row.draft_type,
                occurred_at=now,
            ))
        else:
            session.rollback()

    def _current_status(self, session: Session, draft_id: str) -> str:
        status = (
            session.query(PendingDraft.status)
                .filter(PendingDraft.id == draft_id)
                .scalar()
        )
        return status or "UNKNOWN"

    def _publish(
        self,
        action: DraftAction,
        draft_id: str,
        user_id: str,
        entity_type: DraftType,
        entity_id: str | None,
        now: datetime,
    ) -> None:
        base = {
            "draft_id": draft_id,
            "user_id": str(user_id),
            "draft_type": entity_type.value,
            "occurred_at": now,
        }
        if action == DraftAction.APPROVE:
            self.events.publish(DraftApproved(created_entity_id=entity_id, **base))
        elif action == DraftAction.MODIFY:
            self.events.publish(DraftModified(created_entity_id=entity_id, **base))
        else:
            self.events.publish(DraftRejected(**base))
