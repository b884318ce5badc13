from decimal import Decimal

import pytest

from command_center.drafts import (
    BillDraft,
    ChallengeDraft,
    EpicDraft,
    EventDraft,
    NoteDraft,
    TaskDraft,
)
from command_center.entities import QueueMessage
from command_center.materializer import (
    ChallengeRecurrence,
    Materializer,
    MetricType,
    QueueEntityServices,
    map_metric_type,
    map_recurrence,
)

from tests.conftest import FakeEntityServices


@pytest.fixture
def services():
    return FakeEntityServices()


@pytest.fixture
def materializer(services):
    return Materializer(services)


@pytest.mark.parametrize("value,expected", [
    ("yesno", MetricType.YESNO),
    ("YES_NO", MetricType.YESNO),
    ("count", MetricType.COUNT),
    ("Duration", MetricType.TIME),
    ("time", MetricType.TIME),
    ("streak", MetricType.STREAK),
    ("completion", MetricType.COMPLETION),
    ("percentage", MetricType.YESNO),
    (None, MetricType.YESNO),
])
def test_metric_type_lookup(value, expected):
    assert map_metric_type(value) == expected


@pytest.mark.parametrize("value,expected", [
    ("daily", ChallengeRecurrence.DAILY),
    ("WEEKLY", ChallengeRecurrence.WEEKLY),
    ("biweekly", ChallengeRecurrence.BIWEEKLY),
    ("monthly", ChallengeRecurrence.MONTHLY),
    ("custom", ChallengeRecurrence.CUSTOM),
    ("every other tuesday", ChallengeRecurrence.DAILY),
])
def test_recurrence_lookup(value, expected):
    assert map_recurrence(value) == expected


def test_task_request_is_final_with_confidence_marker(materializer, services):
    entity_id = materializer.materialize("u1", TaskDraft(title="Call Mom", effort_points=1, sprint_ref="s-9"))

    assert entity_id == "task-1"
    kind, user_id, request = services.created[0]
    assert request.is_draft is False
    assert request.ai_confidence == 0.9
    assert request.sprint_ref == "s-9"
    assert request.effort_points == 1


def test_creation_log_names_the_life_area(materializer, caplog):
    with caplog.at_level("INFO", logger="command_center"):
        materializer.materialize("u1", TaskDraft(title="Pay rent", life_area_code="lw-3"))
        materializer.materialize("u1", TaskDraft(title="Odd one", life_area_code="lw-99"))

    messages = [r.getMessage() for r in caplog.records]
    assert "[Materialize] Task 'Pay rent' created in Finance & Money" in messages
    assert "[Materialize] Task 'Odd one' created in lw-99" in messages


def test_challenge_target_defaults_to_one(materializer, services):
    materializer.materialize("u1", ChallengeDraft(name="Read", metric_type="count", recurrence_frequency="weekly"))

    _, _, request = services.created[0]
    assert request.target_value == Decimal(1)
    assert request.metric_type == MetricType.COUNT
    assert request.recurrence == ChallengeRecurrence.WEEKLY


def test_epic_suggested_tasks_are_not_created(materializer, services):
    epic = EpicDraft(title="Marathon", suggested_tasks=[TaskDraft(title="Buy shoes"), TaskDraft(title="Plan route")])
    materializer.materialize("u1", epic)

    assert [kind for kind, _, _ in services.created] == ["epic"]


@pytest.mark.parametrize("draft,prefix", [
    (EventDraft(title="Dinner"), "event-"),
    (BillDraft(vendor_name="City Power"), "bill-"),
    (NoteDraft(title="Idea"), "note-"),
])
def test_stubbed_types_get_placeholder_ids(materializer, services, draft, prefix):
    entity_id = materializer.materialize("u1", draft)

    assert entity_id.startswith(prefix)
    assert len(entity_id) > len(prefix)
    assert services.created == []


def test_queue_services_post_create_requests(session_factory):
    services = QueueEntityServices(session_factory, sender_id="command_center", receiver_id="entity-worker")
    entity_id = Materializer(services).materialize("u1", TaskDraft(title="Call Mom"))

    db = session_factory()
    try:
        message = db.query(QueueMessage).one()
        assert message.receiver_id == "entity-worker"
        assert message.type == "create_task"
        assert message.payload["entity_id"] == entity_id
        assert message.payload["user_id"] == "u1"
        assert message.payload["request"]["title"] == "Call Mom"
    finally:
        db.close()


def test_queue_message_joins_callers_transaction(session_factory):
    services = QueueEntityServices(session_factory, sender_id="command_center", receiver_id="entity-worker")

    db = session_factory()
    try:
        Materializer(services).materialize("u1", TaskDraft(title="Call Mom"), db=db)
        db.rollback()
        assert db.query(QueueMessage).count() == 0
    finally:
        db.close()
