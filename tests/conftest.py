import json
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from command_center.backend import Backend
from command_center.entities import Base
from command_center.events import EventBus
from command_center.materializer import EntityServices

NOW = datetime(2026, 10, 19, 9, 30)  # a Monday


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeLlm:
    """
    Stands in for ChatLlmClient. Queued replies are returned in order; an Exception
    in the queue is raised instead.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []
        self.ocr_calls = []
        self.ocr_text = None
        self.ocr_error = None

    def queue(self, reply) -> None:
        self.replies.append(reply)

    def invoke(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def extract_text_from_image(self, image_bytes: bytes, mime_type: str, prompt: str):
        self.ocr_calls.append((image_bytes, mime_type))
        if self.ocr_error is not None:
            raise self.ocr_error
        return self.ocr_text


class FakeEntityServices(EntityServices):

    def __init__(self):
        self.created = []
        self.fail_with = None

    def _create(self, kind, user_id, request):
        if self.fail_with is not None:
            raise self.fail_with
        entity_id = f"{kind}-{len(self.created) + 1}"
        self.created.append((kind, user_id, request))
        return {"id": entity_id}

    def create_task(self, user_id, request, db=None):
        return self._create("task", user_id, request)

    def create_epic(self, user_id, request, db=None):
        return self._create("epic", user_id, request)

    def create_challenge(self, user_id, request, db=None):
        return self._create("challenge", user_id, request)


def envelope(
    intent,
    confidence,
    draft,
    *,
    status=None,
    flow=None,
    original_intent=None,
    reasoning="",
    suggestions=None,
) -> str:
    body = {
        "intentDetected": intent,
        "confidenceScore": confidence,
        "draft": draft,
        "reasoning": reasoning,
        "suggestions": suggestions or [],
    }
    if status is not None:
        body["status"] = status
    if flow is not None:
        body["clarificationFlow"] = flow
    if original_intent is not None:
        body["originalIntent"] = original_intent
    return json.dumps(body)


def question(qid, field, *, qtype="SINGLE_CHOICE", required=True, options=None):
    return {
        "id": qid,
        "question": f"What about {field}?",
        "type": qtype,
        "options": options or [],
        "fieldToPopulate": field,
        "required": required,
    }


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def llm():
    return FakeLlm()


@pytest.fixture
def entity_services():
    return FakeEntityServices()


@pytest.fixture
def published():
    return []


@pytest.fixture
def events(published):
    bus = EventBus()
    bus.subscribe(published.append)
    return bus


@pytest.fixture
def backend(session_factory, llm, entity_services, events, clock):
    return Backend(
        session_factory=session_factory,
        llm=llm,
        entity_services=entity_services,
        events=events,
        clock=clock,
        max_questions=5,
    )
