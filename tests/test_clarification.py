import pytest

from command_center.backend import Backend
from command_center.drafts import (
    ChallengeDraft,
    DraftStatus,
    DraftType,
    EnvelopeStatus,
    NoteDraft,
    TaskDraft,
)
from command_center.errors import DraftValidationError, SessionExpiredError, SessionNotFoundError

from tests.conftest import envelope, question

FITNESS_FLOW = {
    "flowId": "fitness-challenge",
    "title": "Let's set up your challenge",
    "questions": [
        question("q1", "duration", qtype="NUMBER_INPUT"),
        question("q2", "metricType", options=[{"value": "yesno", "label": "Did it"}, {"value": "count", "label": "Count"}]),
        question("q3", "reminderTime", qtype="TIME_PICKER", required=False),
    ],
    "maxQuestions": 3,
}


def suggest_challenge(original_intent="task"):
    return envelope(
        "challenge", 0.6,
        {"name": "Get Fit in 30 Days", "lifeWheelAreaId": "lw-1", "metricType": "yesno"},
        status="SUGGEST_ALTERNATIVE",
        original_intent=original_intent,
        flow=FITNESS_FLOW,
        reasoning="Building a habit fits a challenge better than a one-off task",
    )


def test_alternative_opens_session(backend, llm):
    llm.queue(suggest_challenge())
    resp = backend.submit("u1", text="I want to get fit")

    assert resp.status == EnvelopeStatus.SUGGEST_ALTERNATIVE
    assert resp.intent_detected == DraftType.CHALLENGE
    assert isinstance(resp.draft, ChallengeDraft)
    assert resp.session_id
    assert resp.draft_id is None
    assert len(resp.clarification_flow.questions) <= 3
    assert backend.list_pending_drafts("u1") == []


def test_confident_alternative_is_ready_without_session(backend, llm):
    llm.queue(envelope(
        "challenge", 0.95,
        {"name": "Get Fit in 30 Days", "lifeWheelAreaId": "lw-1"},
        status="SUGGEST_ALTERNATIVE",
        original_intent="task",
        flow=FITNESS_FLOW,
    ))
    resp = backend.submit("u1", text="I want to get fit")

    assert resp.status == EnvelopeStatus.READY
    assert resp.session_id is None
    assert resp.draft_id
    assert isinstance(resp.draft, ChallengeDraft)


def test_alternative_without_questions_still_asks_to_confirm(backend, llm):
    llm.queue(envelope(
        "challenge", 0.7, {"name": "Read every day"},
        status="SUGGEST_ALTERNATIVE", original_intent="task",
    ))
    resp = backend.submit("u1", text="read more")

    assert resp.status == EnvelopeStatus.SUGGEST_ALTERNATIVE
    assert resp.session_id
    assert resp.draft_id is None


def test_question_cap_truncates_model_questions(backend, llm):
    flow = {"questions": [question(f"q{i}", f"field{i}") for i in range(8)]}
    llm.queue(envelope("task", 0.6, {"title": "Plan trip"}, status="NEEDS_CLARIFICATION", flow=flow))

    resp = backend.submit("u1", text="plan something")

    assert resp.status == EnvelopeStatus.NEEDS_CLARIFICATION
    assert len(resp.clarification_flow.questions) == 5
    assert resp.clarification_flow.max_questions == 5


def test_configured_cap_is_respected(session_factory, llm, entity_services, events, clock):
    backend = Backend(
        session_factory=session_factory,
        llm=llm,
        entity_services=entity_services,
        events=events,
        clock=clock,
        max_questions=3,
    )
    flow = {"questions": [question(f"q{i}", f"field{i}") for i in range(8)], "maxQuestions": 8}
    llm.queue(envelope("task", 0.6, {"title": "Plan trip"}, flow=flow))

    resp = backend.submit("u1", text="plan something")
    assert len(resp.clarification_flow.questions) == 3


def test_decline_reverts_to_original_intent(backend, llm):
    llm.queue(suggest_challenge())
    session_id = backend.submit("u1", text="I want to get fit").session_id

    resp = backend.confirm_alternative(session_id, False, user_id="u1")

    assert resp.status == EnvelopeStatus.READY
    assert resp.intent_detected == DraftType.TASK
    assert isinstance(resp.draft, TaskDraft)
    assert resp.draft.title == "Get Fit in 30 Days"
    assert resp.draft.life_area_code == "lw-1"
    assert resp.draft_status == DraftStatus.PENDING_APPROVAL
    assert [d.draft_id for d in backend.list_pending_drafts("u1")] == [resp.draft_id]
    # no second model call
    assert len(llm.calls) == 1

    with pytest.raises(SessionNotFoundError):
        backend.confirm_alternative(session_id, False, user_id="u1")


def test_decline_without_original_intent_keeps_input_as_note(backend, llm):
    llm.queue(suggest_challenge(original_intent=None))
    session_id = backend.submit("u1", text="I want to get fit").session_id

    resp = backend.confirm_alternative(session_id, False)

    assert isinstance(resp.draft, NoteDraft)
    assert resp.draft.title == "I want to get fit"
    assert resp.draft.content == "I want to get fit"


def test_accept_then_answer_resolves_challenge(backend, llm):
    llm.queue(suggest_challenge())
    session_id = backend.submit("u1", text="I want to get fit").session_id

    resp = backend.confirm_alternative(session_id, True, user_id="u1")
    assert resp.status == EnvelopeStatus.NEEDS_CLARIFICATION
    assert [q.id for q in resp.clarification_flow.questions] == ["q1", "q2", "q3"]

    resp = backend.answer_clarification("u1", session_id, [("q1", "14")])
    assert resp.status == EnvelopeStatus.NEEDS_CLARIFICATION
    assert resp.draft.duration_days == 14
    assert [q.id for q in resp.clarification_flow.questions] == ["q2", "q3"]

    resp = backend.answer_clarification("u1", session_id, [("q2", "count")])
    assert resp.status == EnvelopeStatus.READY
    assert isinstance(resp.draft, ChallengeDraft)
    assert resp.draft.duration_days == 14
    assert resp.draft.metric_type == "count"
    assert resp.draft_id


def test_answering_alternative_questions_accepts_it(backend, llm):
    llm.queue(suggest_challenge())
    session_id = backend.submit("u1", text="I want to get fit").session_id

    resp = backend.answer_clarification("u1", session_id, [("q1", 21), ("q2", "yesno")])

    assert resp.status == EnvelopeStatus.READY
    assert resp.intent_detected == DraftType.CHALLENGE


def test_answers_are_applied_to_named_fields(backend, llm):
    flow = {"questions": [
        question("priority", "eisenhowerQuadrantId", options=["q1", "q2"]),
        question("repeat", "isRecurring", qtype="YES_NO"),
    ]}
    llm.queue(envelope("task", 0.65, {"title": "Renew passport"}, flow=flow))
    session_id = backend.submit("u1", text="passport").session_id

    resp = backend.answer_clarification("u1", session_id, [("priority", "q1"), ("repeat", "no")])

    assert resp.status == EnvelopeStatus.READY
    assert resp.draft.priority_quadrant_code == "q1"
    assert resp.draft.recurring is False


def test_all_optional_questions_resolve_on_first_answer(backend, llm):
    flow = {"questions": [
        question("when", "dueDate", qtype="DATE_PICKER", required=False),
        question("effort", "storyPoints", qtype="NUMBER_INPUT", required=False),
        question("repeat", "isRecurring", qtype="YES_NO", required=False),
    ]}
    llm.queue(envelope("task", 0.6, {"title": "Clean garage"}, flow=flow))
    session_id = backend.submit("u1", text="garage").session_id

    resp = backend.answer_clarification("u1", session_id, [("effort", 5)])

    assert resp.status == EnvelopeStatus.READY
    assert resp.draft_id
    assert resp.draft.effort_points == 5


def test_unknown_question_is_rejected(backend, llm):
    llm.queue(envelope("task", 0.6, {"title": "x"}, flow={"questions": [question("q1", "title")]}))
    session_id = backend.submit("u1", text="x").session_id

    with pytest.raises(DraftValidationError):
        backend.answer_clarification("u1", session_id, [("nope", "value")])

    # session untouched
    resp = backend.answer_clarification("u1", session_id, [("q1", "Real title")])
    assert resp.draft.title == "Real title"


def test_number_answer_must_be_numeric(backend, llm):
    llm.queue(suggest_challenge())
    session_id = backend.submit("u1", text="get fit").session_id

    with pytest.raises(DraftValidationError):
        backend.answer_clarification("u1", session_id, [("q1", "a lot")])


def test_confirm_on_plain_clarification_is_rejected(backend, llm):
    llm.queue(envelope("task", 0.6, {"title": "x"}, flow={"questions": [question("q1", "title")]}))
    session_id = backend.submit("u1", text="x").session_id

    with pytest.raises(DraftValidationError):
        backend.confirm_alternative(session_id, True)


def test_session_belongs_to_its_user(backend, llm):
    llm.queue(suggest_challenge())
    session_id = backend.submit("u1", text="get fit").session_id

    with pytest.raises(SessionNotFoundError):
        backend.answer_clarification("someone-else", session_id, [("q1", 10)])


def test_idle_session_expires_without_a_draft(backend, llm, clock):
    llm.queue(suggest_challenge())
    session_id = backend.submit("u1", text="get fit").session_id

    clock.advance(hours=25)
    with pytest.raises(SessionExpiredError):
        backend.answer_clarification("u1", session_id, [("q1", 10)])
    with pytest.raises(SessionNotFoundError):
        backend.answer_clarification("u1", session_id, [("q1", 10)])
    assert backend.list_pending_drafts("u1") == []


def test_activity_slides_the_idle_horizon(backend, llm, clock):
    flow = {"questions": [question("q1", "title"), question("q2", "description")]}
    llm.queue(envelope("task", 0.6, {"title": "x"}, flow=flow))
    session_id = backend.submit("u1", text="x").session_id

    clock.advance(hours=20)
    backend.answer_clarification("u1", session_id, [("q1", "First")])
    clock.advance(hours=20)
    resp = backend.answer_clarification("u1", session_id, [("q2", "Second")])
    assert resp.status == EnvelopeStatus.READY


def test_low_confidence_without_questions_is_ready_note(backend, llm):
    llm.queue(envelope("note", 0.3, {"title": "Hmm", "content": "something"}))
    resp = backend.submit("u1", text="something")

    assert resp.status == EnvelopeStatus.READY
    assert isinstance(resp.draft, NoteDraft)
    assert resp.draft_id


def test_model_failure_yields_fallback_note(backend, llm):
    llm.queue(TimeoutError("model timed out"))
    resp = backend.submit("u1", text="call the dentist")

    assert resp.status == EnvelopeStatus.READY
    assert resp.confidence_score == 0.3
    assert resp.draft.title == "Processing Error"
    assert resp.draft_id


def test_sweep_removes_idle_sessions_and_expires_drafts(backend, llm, clock):
    llm.queue(suggest_challenge())
    llm.queue(envelope("task", 0.95, {"title": "Call Mom"}))
    backend.submit("u1", text="get fit")
    draft_id = backend.submit("u1", text="call mom").draft_id

    clock.advance(hours=30)
    assert backend.sweep() == {"expired_drafts": 1, "removed_sessions": 1}
    assert backend.get_draft("u1", draft_id).draft_status == DraftStatus.EXPIRED
