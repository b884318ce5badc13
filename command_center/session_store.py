# command_center/session_store.py
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from command_center.entities import ClarificationSession
from command_center.errors import SessionExpiredError, SessionNotFoundError


class ClarificationSessionStore:
    """
    Persisted clarification sessions with:
    - sliding idle horizon (expires idle_hours after last activity)
    - optimistic versioning on every update (see ClarificationSession.version)
    - sweep for storage hygiene; never needed for correctness
    """

    def __init__(self, session_factory: sessionmaker, idle_hours: int):
        self.session_factory = session_factory
        self.idle_hours = idle_hours

    def _expires_at(self, row: ClarificationSession) -> datetime:
        return row.last_activity_at + timedelta(hours=self.idle_hours)

    def create(self, db: Session, now: datetime, **fields) -> ClarificationSession:
        row = ClarificationSession(created_at=now, last_activity_at=now, **fields)
        db.add(row)
        db.flush()
        return row

    def load_active(
        self,
        db: Session,
        session_id: str,
        now: datetime,
        user_id: str | None = None,
    ) -> ClarificationSession:
        """
        Returns the live session or raises. An idle session is deleted (and committed)
        before SessionExpiredError is raised; nothing it held is ever turned into a draft.
        """
        query = db.query(ClarificationSession).filter(ClarificationSession.id == str(session_id))
        if user_id is not None:
            query = query.filter(ClarificationSession.user_id == str(user_id))
        row = query.one_or_none()
        if row is None:
            raise SessionNotFoundError(session_id)

        if self._expires_at(row) <= now:
            db.delete(row)
            db.commit()
            raise SessionExpiredError(session_id)
        return row

    def touch(self, row: ClarificationSession, now: datetime) -> None:
        row.last_activity_at = now

    def expires_at(self, row: ClarificationSession) -> datetime:
        return self._expires_at(row)

    def sweep_idle(self, now: datetime) -> int:
        """
        Delete sessions idle past the horizon. Returns how many rows were removed.
        """
        cutoff = now - timedelta(hours=self.idle_hours)
        db: Session = self.session_factory()
        try:
            result = db.execute(
                delete(ClarificationSession)
                    .where(ClarificationSession.last_activity_at <= cutoff)
                    .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount or 0
        finally:
            db.close()
