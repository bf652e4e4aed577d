"""Test fixtures for the NVD mirror."""
from typing import List

import pytest

from vuln_mirror.config.settings import Settings
from vuln_mirror.events import Event, EventService
from vuln_mirror.persistence.memory import MemoryStore


class EventRecorder:
    """Collects every dispatched event in order"""

    def __init__(self):
        self.events: List[Event] = []

    def __call__(self, event: Event):
        self.events.append(event)

    def of_type(self, event_type) -> List[Event]:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def event_service(recorder) -> EventService:
    service = EventService()
    service.subscribe(Event, recorder)
    return service


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the developer's environment and .env"""
    return Settings(
        _env_file=None,
        NVD_API_URL="https://services.nvd.nist.gov/rest/json/cves/2.0",
        NVD_API_KEY=None,
        MIRROR_QUEUE_MAX_SIZE=0,
    )
