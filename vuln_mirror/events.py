"""
Events exchanged between the mirror and its downstream consumers.

IndexEvent       tells the search indexer that a vulnerability was created or
                 updated, or (COMMIT) that a batch of changes is complete
NistMirrorEvent  requests a mirror run; as a ChainableEvent it can carry
                 follow-up events for success and failure
"""

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

from .models import Vulnerability

logger = logging.getLogger(__name__)


class Event:
    """Marker base class for everything that can be dispatched"""


@dataclass
class ChainableEvent(Event):
    on_success_events: List[Event] = field(default_factory=list)
    on_failure_events: List[Event] = field(default_factory=list)

    def on_success(self, event: Event) -> 'ChainableEvent':
        self.on_success_events.append(event)
        return self

    def on_failure(self, event: Event) -> 'ChainableEvent':
        self.on_failure_events.append(event)
        return self


class IndexAction(Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    COMMIT = "COMMIT"


@dataclass
class IndexEvent(Event):
    action: IndexAction
    vulnerability: Optional[Vulnerability] = None
    entity: str = "Vulnerability"


@dataclass
class NistMirrorEvent(ChainableEvent):
    pass


Handler = Callable[[Event], Any]


class EventService:
    """In-process publish/subscribe; handlers may be plain or async callables"""

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type[Event], handler: Handler):
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: Type[Event], handler: Handler):
        if handler in self._subscribers.get(event_type, []):
            self._subscribers[event_type].remove(handler)

    def has_subscribers(self, event_type: Type[Event]) -> bool:
        return any(issubclass(event_type, t) and handlers
                   for t, handlers in self._subscribers.items())

    async def dispatch(self, event: Event) -> bool:
        """
        Deliver an event to every matching subscriber.

        A failing subscriber is logged and does not prevent delivery to the
        others. Returns True when every subscriber succeeded.
        """
        handlers = [handler
                    for event_type, registered in list(self._subscribers.items())
                    if isinstance(event, event_type)
                    for handler in registered]

        succeeded = True
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                succeeded = False
                logger.error(f"❌ Subscriber {getattr(handler, '__qualname__', handler)} "
                             f"failed for {type(event).__name__}: {e}", exc_info=True)

        if isinstance(event, ChainableEvent):
            follow_ups = event.on_success_events if succeeded else event.on_failure_events
            for follow_up in follow_ups:
                await self.dispatch(follow_up)

        return succeeded
