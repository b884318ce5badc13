import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from command_center.backend import Backend
from command_center.drafts import DraftAction, DraftStatus, DraftType
from command_center.entities import Base, PendingDraft
from command_center.errors import (
    DraftAlreadyProcessedError,
    DraftExpiredError,
    DraftNotFoundError,
    DraftValidationError,
)
from command_center.events import DraftApproved, DraftExpired, DraftModified, DraftRejected
from command_center.pending_draft_recorder import claim_pending_draft

from tests.conftest import envelope


def ready_task(backend, llm, title="Call Mom", user_id="u1"):
    llm.queue(envelope("task", 0.95, {"title": title, "storyPoints": 1}))
    return backend.submit(user_id, text=title.lower())


def test_approve_creates_entity_once(backend, llm, entity_services, published):
    draft_id = ready_task(backend, llm).draft_id

    result = backend.decide_draft("u1", draft_id, DraftAction.APPROVE)
    assert result.status == DraftStatus.APPROVED
    assert result.entity_type == DraftType.TASK
    assert result.created_entity_id == "task-1"

    with pytest.raises(DraftAlreadyProcessedError) as exc:
        backend.decide_draft("u1", draft_id, "approve")
    assert exc.value.current_status == "APPROVED"
    assert exc.value.to_payload()["currentStatus"] == "APPROVED"

    assert len(entity_services.created) == 1
    assert [type(e) for e in published] == [DraftApproved]
    assert published[0].created_entity_id == "task-1"


def test_expired_draft_is_marked_and_not_materialized(backend, llm, entity_services, clock, published):
    draft_id = ready_task(backend, llm).draft_id
    clock.advance(hours=24)

    with pytest.raises(DraftExpiredError):
        backend.decide_draft("u1", draft_id, DraftAction.APPROVE)

    assert entity_services.created == []
    stored = backend.get_draft("u1", draft_id)
    assert stored.draft_status == DraftStatus.EXPIRED
    assert [type(e) for e in published] == [DraftExpired]

    with pytest.raises(DraftAlreadyProcessedError) as exc:
        backend.decide_draft("u1", draft_id, DraftAction.APPROVE)
    assert exc.value.current_status == "EXPIRED"


def test_modify_persists_replacement(backend, llm, entity_services, session_factory, published):
    original = ready_task(backend, llm)
    replacement = original.draft.model_dump(by_alias=True, mode="json")
    replacement.update({"title": "Call Mom and Dad", "effortPoints": 2})

    result = backend.decide_draft("u1", original.draft_id, DraftAction.MODIFY, replacement)

    assert result.status == DraftStatus.MODIFIED
    kind, user_id, request = entity_services.created[0]
    assert (kind, user_id, request.title) == ("task", "u1", "Call Mom and Dad")

    stored = backend.get_draft("u1", original.draft_id)
    assert stored.draft.title == "Call Mom and Dad"
    assert stored.draft.effort_points == 2
    assert stored.draft_status == DraftStatus.MODIFIED

    db = session_factory()
    try:
        row = db.get(PendingDraft, original.draft_id)
        assert row.created_entity_id == result.created_entity_id
        assert row.decided_at is not None
    finally:
        db.close()
    assert isinstance(published[0], DraftModified)


def test_modify_can_change_type(backend, llm, entity_services):
    original = ready_task(backend, llm)
    replacement = {"type": "note", "title": "Just a thought", "content": "call mom sometime"}

    result = backend.decide_draft("u1", original.draft_id, DraftAction.MODIFY, replacement)

    assert result.entity_type == DraftType.NOTE
    assert result.created_entity_id.startswith("note-")
    assert entity_services.created == []
    assert backend.get_draft("u1", original.draft_id).intent_detected == DraftType.NOTE


def test_modify_without_replacement_changes_nothing(backend, llm, entity_services):
    draft_id = ready_task(backend, llm).draft_id

    with pytest.raises(DraftValidationError):
        backend.decide_draft("u1", draft_id, DraftAction.MODIFY)
    with pytest.raises(DraftValidationError):
        backend.decide_draft("u1", draft_id, DraftAction.MODIFY, {"type": "task"})

    assert backend.get_draft("u1", draft_id).draft_status == DraftStatus.PENDING_APPROVAL
    assert entity_services.created == []


def test_reject_keeps_row_without_entity(backend, llm, entity_services, published):
    draft_id = ready_task(backend, llm).draft_id

    result = backend.decide_draft("u1", draft_id, DraftAction.REJECT)

    assert result.status == DraftStatus.REJECTED
    assert result.created_entity_id is None
    assert entity_services.created == []
    assert backend.get_draft("u1", draft_id).draft_status == DraftStatus.REJECTED
    assert isinstance(published[0], DraftRejected)


def test_other_users_draft_reads_as_missing(backend, llm):
    draft_id = ready_task(backend, llm).draft_id

    with pytest.raises(DraftNotFoundError):
        backend.decide_draft("intruder", draft_id, DraftAction.APPROVE)
    with pytest.raises(DraftNotFoundError):
        backend.get_draft("intruder", draft_id)


def test_unknown_action_is_a_validation_error(backend, llm):
    draft_id = ready_task(backend, llm).draft_id
    with pytest.raises(DraftValidationError):
        backend.decide_draft("u1", draft_id, "ARCHIVE")


def test_failed_materialization_leaves_draft_pending(backend, llm, entity_services):
    draft_id = ready_task(backend, llm).draft_id
    entity_services.fail_with = RuntimeError("task service down")

    with pytest.raises(RuntimeError):
        backend.decide_draft("u1", draft_id, DraftAction.APPROVE)
    assert backend.get_draft("u1", draft_id).draft_status == DraftStatus.PENDING_APPROVAL

    entity_services.fail_with = None
    assert backend.decide_draft("u1", draft_id, DraftAction.APPROVE).status == DraftStatus.APPROVED


def test_only_one_claim_wins(backend, llm, session_factory, clock):
    draft_id = ready_task(backend, llm).draft_id

    first, second = session_factory(), session_factory()
    try:
        assert claim_pending_draft(first, draft_id, DraftStatus.APPROVED, clock())
        first.commit()
        assert not claim_pending_draft(second, draft_id, DraftStatus.REJECTED, clock())
        second.rollback()
    finally:
        first.close()
        second.close()
    assert backend.get_draft("u1", draft_id).draft_status == DraftStatus.APPROVED


@pytest.fixture
def file_backend(tmp_path, llm, entity_services, events, clock):
    # separate connections per thread, so writers really contend for the row
    engine = create_engine(
        f"sqlite:///{tmp_path / 'drafts.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield Backend(
        session_factory=factory,
        llm=llm,
        entity_services=entity_services,
        events=events,
        clock=clock,
        max_questions=5,
    )
    engine.dispose()


def test_concurrent_approvals_create_one_entity(file_backend, llm, entity_services, published):
    draft_id = ready_task(file_backend, llm).draft_id
    barrier = threading.Barrier(2)
    outcomes = []

    def approve():
        barrier.wait()
        try:
            outcomes.append(file_backend.decide_draft("u1", draft_id, DraftAction.APPROVE))
        except DraftAlreadyProcessedError as e:
            outcomes.append(e)

    threads = [threading.Thread(target=approve) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    wins = [o for o in outcomes if not isinstance(o, Exception)]
    losses = [o for o in outcomes if isinstance(o, DraftAlreadyProcessedError)]
    assert len(wins) == 1
    assert len(losses) == 1
    assert losses[0].current_status == "APPROVED"
    assert len(entity_services.created) == 1
    assert [type(e) for e in published] == [DraftApproved]
    assert file_backend.get_draft("u1", draft_id).draft_status == DraftStatus.APPROVED


def test_pending_list_is_newest_first_and_active_only(backend, llm, clock):
    stale = ready_task(backend, llm, title="Old").draft_id
    clock.advance(hours=10)
    decided = ready_task(backend, llm, title="Decided").draft_id
    clock.advance(minutes=5)
    newest = ready_task(backend, llm, title="Newest").draft_id
    ready_task(backend, llm, title="Not mine", user_id="u2")

    backend.decide_draft("u1", decided, DraftAction.REJECT)
    assert [d.draft_id for d in backend.list_pending_drafts("u1")] == [newest, stale]

    clock.advance(hours=15)
    assert [d.draft_id for d in backend.list_pending_drafts("u1")] == [newest]
