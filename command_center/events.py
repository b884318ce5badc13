# command_center/events.py
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from command_center.entities import QueueMessage

logger = logging.getLogger("command_center")


class DraftEvent(BaseModel):
    draft_id: str
    user_id: str
    draft_type: str
    occurred_at: datetime

    @property
    def name(self) -> str:
        return type(self).__name__


class DraftApproved(DraftEvent):
    created_entity_id: str


class DraftModified(DraftEvent):
    created_entity_id: str


class DraftRejected(DraftEvent):
    pass


class DraftExpired(DraftEvent):
    pass


Subscriber = Callable[[DraftEvent], None]


class EventBus:
    """
    In-process publish/subscribe. Events are published after the draft update commits;
    a failing subscriber is logged and does not affect the others or the caller.
    """

    def __init__(self):
        self._subscribers: Dict[Optional[type], List[Subscriber]] = {}

    def subscribe(self, fn: Subscriber, event_type: type | None = None) -> None:
        # event_type=None receives everything
        self._subscribers.setdefault(event_type, []).append(fn)

    def publish(self, event: DraftEvent) -> None:
        targets = list(self._subscribers.get(None, []))
        for event_type, fns in self._subscribers.items():
            if event_type is not None and isinstance(event, event_type):
                targets.extend(fns)
        for fn in targets:
            try:
                fn(event)
            except Exception as e:
                logger.exception(f"[Events] Subscriber failed for {event.name} on draft {event.draft_id}: {e}")


class QueueMessageRelay:
    """
    Forwards draft events to the notification worker as queue messages.
    """

    def __init__(self, session_factory: sessionmaker, sender_id: str, receiver_id: str):
        self.SessionFactory = session_factory
        self.sender_id = sender_id
        self.receiver_id = receiver_id

    def __call__(self, event: DraftEvent) -> None:
        session = self.SessionFactory()
        try:
            session.add(
                QueueMessage(
                    sender_id=str(self.sender_id),
                    receiver_id=str(self.receiver_id),
                    type=event.name,
                    payload=event.model_dump(mode="json"),
                )
            )
            session.commit()
        finally:
            session.close()
