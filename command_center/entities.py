# command_center/entities.py
from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from command_center.base_utils import utcnow

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (SQLite for local runs and tests)
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class QueueMessage(Base):
    __tablename__ = "queue_messages"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    sender_id = Column(String, nullable=False)
    receiver_id = Column(String, nullable=False)
    type = Column(String, nullable=False)
    payload = Column(JsonDocument, nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)


class PendingDraft(Base):
    """
    A parsed draft awaiting the user's decision.

    status: PENDING_APPROVAL -> APPROVED | MODIFIED | REJECTED | EXPIRED (all terminal).
    Rows are never deleted on rejection; they stay for audit.
    """
    __tablename__ = "pending_draft"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    draft_type: Mapped[str] = mapped_column(String(20), nullable=False)
    draft_content: Mapped[dict[str, object]] = mapped_column(JsonDocument, nullable=False)

    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    ai_reasoning: Mapped[str | None] = mapped_column(Text)

    original_input_text: Mapped[str | None] = mapped_column(Text)
    voice_transcription: Mapped[str | None] = mapped_column(Text)
    attachment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="PENDING_APPROVAL",
    )
    created_entity_id: Mapped[str | None] = mapped_column(String(128))

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_pending_draft_user_status", "user_id", "status"),
    )


class ClarificationSession(Base):
    """
    In-flight clarification exchange. Deleted once it resolves into a PendingDraft
    or goes idle past its horizon; `version` guards read-modify-write updates.
    """
    __tablename__ = "clarification_session"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # NEEDS_CLARIFICATION | SUGGEST_ALTERNATIVE
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    intent: Mapped[str] = mapped_column(String(20), nullable=False)
    original_intent: Mapped[str | None] = mapped_column(String(20))

    # raw model draft node; answers are written into it by field name
    draft_json: Mapped[dict[str, object]] = mapped_column(JsonDocument, nullable=False)
    flow: Mapped[dict[str, object]] = mapped_column(JsonDocument, nullable=False)
    answers: Mapped[dict[str, object]] = mapped_column(JsonDocument, nullable=False, default=dict)
    questions_asked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # None = not decided yet, True = accepted, False = declined
    alternative_accepted: Mapped[bool | None] = mapped_column(nullable=True)

    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    reasoning: Mapped[str | None] = mapped_column(Text)
    suggestions: Mapped[list[str]] = mapped_column(JsonDocument, nullable=False, default=list)

    original_input_text: Mapped[str | None] = mapped_column(Text)
    voice_transcription: Mapped[str | None] = mapped_column(Text)
    attachment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __mapper_args__ = {"version_id_col": version}
