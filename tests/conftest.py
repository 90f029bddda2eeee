"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import List, Tuple

from placements.logger import get_logger, reset_logger
from placements.models import Actor, Role, Stage
from placements.notifications import Notifier
from placements.service import PlacementService
from placements.storage import PlacementStore
from placements.transitions import PIPELINE


class RecordingNotifier(Notifier):
    """Keeps every dispatched (operation, placement id, stage)."""

    def __init__(self):
        self.sent: List[Tuple[str, str, str]] = []

    def notify(self, operation, placement):
        self.sent.append((operation, placement.id, placement.stage.value))


class TickingClock:
    """Deterministic clock that moves one minute per call."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture(autouse=True)
def quiet_logger():
    """Global logger without console or file output."""
    reset_logger()
    logger = get_logger(enable_file=False, enable_console=False)
    yield logger
    reset_logger()


@pytest.fixture
def store(tmp_path):
    s = PlacementStore(tmp_path / "placements.db")
    yield s
    s.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(store, notifier, quiet_logger) -> PlacementService:
    return PlacementService(store, notifier=notifier, clock=TickingClock(), logger=quiet_logger)


@pytest.fixture
def employer() -> Actor:
    return Actor(id="emp-1", role=Role.EMPLOYER)


@pytest.fixture
def candidate() -> Actor:
    return Actor(id="cand-1", role=Role.CANDIDATE)


@pytest.fixture
def other_candidate() -> Actor:
    return Actor(id="cand-2", role=Role.CANDIDATE)


@pytest.fixture
def scorer() -> Actor:
    return Actor(id="ai-scorer", role=Role.SYSTEM)


@pytest.fixture
def placement(service, employer):
    """Fresh placement at Shortlisted for cand-1."""
    return service.shortlist("job-1", "cand-1", "client-1", employer)


@pytest.fixture
def advance(service, employer):
    """Walk a placement forward stage by stage until it reaches ``target``."""
    def _advance(placement_id: str, target: Stage):
        current = service.get(placement_id)
        start = PIPELINE.index(current.stage)
        for stage in PIPELINE[start + 1:PIPELINE.index(target) + 1]:
            current = service.transition(placement_id, stage, employer)
        return current
    return _advance


@pytest.fixture
def offer_payload() -> dict:
    return {
        "salary": "12 LPA",
        "joining_date": "2024-05-01",
        "probation_period": "6 months",
        "custom_notes": "Hybrid, Bengaluru office",
    }


@pytest.fixture
def at_offer_letter(service, placement, advance, employer, offer_payload):
    """Placement at Offer Letter with an open offer."""
    advance(placement.id, Stage.CONFIRMATION)
    return service.send_offer(placement.id, offer_payload, employer)
