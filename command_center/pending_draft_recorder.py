# command_center/pending_draft_recorder.py

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from command_center.drafts import DraftStatus, draft_to_json, draft_type_of
from command_center.entities import PendingDraft


def build_pending_draft(
    *,
    user_id: str,
    draft,
    confidence_score: float,
    ai_reasoning: str | None,
    original_input_text: str | None,
    voice_transcription: str | None = None,
    attachment_count: int = 0,
    now: datetime,
    expiration_hours: int,
) -> PendingDraft:
    """
    Unsaved PendingDraft in state PENDING_APPROVAL, expiring `expiration_hours` after `now`.
    """
    return PendingDraft(
        user_id=str(user_id),
        draft_type=draft_type_of(draft).value,
        draft_content=draft_to_json(draft),
        confidence_score=float(confidence_score),
        ai_reasoning=ai_reasoning,
        original_input_text=original_input_text,
        voice_transcription=voice_transcription,
        attachment_count=int(attachment_count or 0),
        status=DraftStatus.PENDING_APPROVAL.value,
        created_at=now,
        expires_at=now + timedelta(hours=expiration_hours),
    )


def record_pending_draft(session_factory: sessionmaker, **fields) -> PendingDraft:
    """
    Create and commit a PendingDraft row. Takes the same keyword arguments as build_pending_draft.
    """
    session: Session = session_factory()
    try:
        pending = build_pending_draft(**fields)
        session.add(pending)
        session.commit()
        return pending
    finally:
        session.close()


def find_draft_for_user(session: Session, draft_id: str, user_id: str) -> Optional[PendingDraft]:
    # drafts owned by someone else read as missing
    return (
        session.query(PendingDraft)
            .filter(PendingDraft.id == str(draft_id), PendingDraft.user_id == str(user_id))
            .one_or_none()
    )


def list_active_drafts(session_factory: sessionmaker, user_id: str, now: datetime) -> List[PendingDraft]:
    session: Session = session_factory()
    try:
        return (
            session.query(PendingDraft)
                .filter(
                    PendingDraft.user_id == str(user_id),
                    PendingDraft.status == DraftStatus.PENDING_APPROVAL.value,
                    PendingDraft.expires_at > now,
                )
                .order_by(PendingDraft.created_at.desc())
                .all()
        )
    finally:
        session.close()


def claim_pending_draft(
    session: Session,
    draft_id: str,
    new_status: DraftStatus,
    now: datetime,
) -> bool:
    """
    Compare-and-set PENDING_APPROVAL -> new_status. Only one concurrent caller sees True.
    Does not commit; the caller commits together with whatever it did under the claim.
    """
    result = session.execute(
        update(PendingDraft)
            .where(
                PendingDraft.id == str(draft_id),
                PendingDraft.status == DraftStatus.PENDING_APPROVAL.value,
            )
            .values(status=new_status.value, decided_at=now)
            .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def mark_draft_expired(session: Session, draft_id: str, now: datetime) -> bool:
    return claim_pending_draft(session, draft_id, DraftStatus.EXPIRED, now)


def sweep_expired_drafts(session_factory: sessionmaker, now: datetime) -> int:
    """
    Storage hygiene only: flips every stale PENDING_APPROVAL row to EXPIRED.
    """
    session: Session = session_factory()
    try:
        result = session.execute(
            update(PendingDraft)
                .where(
                    PendingDraft.status == DraftStatus.PENDING_APPROVAL.value,
                    PendingDraft.expires_at <= now,
                )
                .values(status=DraftStatus.EXPIRED.value, decided_at=now)
                .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount or 0
    finally:
        session.close()
