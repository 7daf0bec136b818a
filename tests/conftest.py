from datetime import datetime, timedelta, timezone

import pytest

from app import create_app
from models import db
from models.profile import Profile
from services.notifications import NotificationDispatcher
from services.storage import InMemoryObjectStorage, StorageError

# seeded by create_sample_data
ADMIN = "00000000-0000-0000-0000-000000000001"
TALENT = "00000000-0000-0000-0000-000000000002"
COMPANY = "00000000-0000-0000-0000-000000000003"

# added per test
TALENT_2 = "00000000-0000-0000-0000-000000000004"
COMPANY_2 = "00000000-0000-0000-0000-000000000005"


class FakeClock:
    """Wall clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self, start: float = 0.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class CountingStorage(InMemoryObjectStorage):
    """In-memory storage that records every call made against it"""

    def __init__(self):
        super().__init__()
        self.calls = []

    def upload(self, bucket, path, content, content_type):
        self.calls.append(("upload", bucket, path))
        super().upload(bucket, path, content, content_type)

    def create_signed_url(self, bucket, path, ttl_seconds):
        self.calls.append(("sign", bucket, path))
        return super().create_signed_url(bucket, path, ttl_seconds)

    def remove(self, bucket, path):
        self.calls.append(("remove", bucket, path))
        super().remove(bucket, path)


class BrokenSigningStorage(CountingStorage):
    def create_signed_url(self, bucket, path, ttl_seconds):
        self.calls.append(("sign", bucket, path))
        raise StorageError("signing service unavailable")


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.events = []

    def dispatch(self, event):
        self.events.append(event)

    def of_type(self, event_type):
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def typing_clock():
    return FakeMonotonic()


@pytest.fixture
def storage():
    return CountingStorage()


@pytest.fixture
def notifier():
    return RecordingDispatcher()


@pytest.fixture
def app(storage, notifier, clock, typing_clock):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "SEED_SAMPLE_DATA": True,
            "TYPING_EXPIRY_SECONDS": 5.0,
            "TYPING_SWEEP_INTERVAL_SECONDS": 0,
            "LOG_LEVEL": "DEBUG",
        },
        storage=storage,
        notifier=notifier,
        clock=clock,
        typing_clock=typing_clock,
    )

    with app.app_context():
        db.session.add_all(
            [
                Profile(
                    user_id=TALENT_2,
                    full_name="Ana Ruiz",
                    email="ana.ruiz@example.com",
                    role="talent",
                ),
                Profile(
                    user_id=COMPANY_2,
                    full_name="Jordan Smith",
                    email="jordan@acmelabs.com",
                    role="company",
                    company_name="Acme Labs",
                ),
            ]
        )
        db.session.commit()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def services(app):
    """The wired messaging services, inside an app context"""
    with app.app_context():
        yield app.extensions["messaging"]


@pytest.fixture
def client(app):
    return app.test_client()


def as_user(user_id: str) -> dict:
    return {"X-User-Id": user_id}
