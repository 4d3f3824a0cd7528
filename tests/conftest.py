import os
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

# Set testing environment variable
os.environ["TESTING"] = "1"

from consult_queue.core.database import init_db, make_engine
from consult_queue.services.notifications import QueueNotifier
from consult_queue.services.queue_aggregate import Queue
from consult_queue.services.queue_service import QueueService
from consult_queue.services.repository import InMemoryQueueRepository

DOCTOR_ID = "doc-1"
DAY = date(2026, 10, 17)
T0 = datetime(2026, 10, 17, 9, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> datetime:
        self.now = self.now + timedelta(minutes=minutes)
        return self.now


class RecordingNotifier(QueueNotifier):
    def __init__(self):
        self.events = []

    def notify(self, appointment_id, event):
        self.events.append((appointment_id, event.value))


def make_queue(**overrides) -> Queue:
    fields = {"doctor_id": DOCTOR_ID, "day": DAY}
    fields.update(overrides)
    return Queue(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository():
    return InMemoryQueueRepository(
        default_avg_consultation_minutes=15,
        default_max_queue_size=50,
        default_auto_call_next=True,
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(repository, notifier, clock):
    return QueueService(repository, notifier=notifier, clock=clock)


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'queue.db'}")
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()
