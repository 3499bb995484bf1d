from dataclasses import replace
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio

from checkin_gate.config import Settings
from checkin_gate.db import Base, make_engine, make_session_factory
from checkin_gate.main import create_app
from checkin_gate.models import AdminUser, Attendee, Event, PublicProfile
from checkin_gate.rate_limit import MemoryCounter
from tests.helpers import JWT_SECRET, NOW, SECRET


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _ts(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, timezone.utc)


def seed(SessionLocal) -> None:
    db = SessionLocal()
    try:
        db.add_all([
            Event(id="100", club_id="club-a", start_time=_ts(NOW + 3600)),
            Event(id="200", club_id=None, start_time=_ts(NOW + 7200)),
            Event(id="300", club_id="club-b", start_time=None),
            Attendee(id="501", user_id="user-1", event_id="100"),
            Attendee(id="502", user_id="user-2", event_id="100"),
            Attendee(id="503", user_id="user-1", event_id="200"),
            Attendee(id="504", user_id="user-1", event_id="300"),
            Attendee(id="601", user_id="user-3", event_id="300"),
            AdminUser(id="op-super", role="super_admin", club_id=None),
            AdminUser(id="op-a", role="club_admin", club_id="club-a"),
            AdminUser(id="op-b", role="club_admin", club_id="club-b"),
            AdminUser(id="op-vol-a", role="event_volunteer", club_id="club-a"),
            AdminUser(id="op-ro", role="read_only_analytics", club_id="club-a"),
            AdminUser(id="op-weird", role="owner", club_id="club-a"),
            PublicProfile(id="user-1", full_name="Ada Lovelace"),
            PublicProfile(id="user-2", full_name="Grace Hopper"),
        ])
        db.commit()
    finally:
        db.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'checkin.db'}")
    Base.metadata.create_all(bind=engine)
    SessionLocal = make_session_factory(engine)
    seed(SessionLocal)
    yield SessionLocal
    engine.dispose()


@pytest.fixture
def settings():
    return Settings(
        qr_token_secret=SECRET,
        supabase_jwt_secret=JWT_SECRET,
        rate_limit_ip_max=1000,
        rate_limit_user_max=1000,
    )


@pytest.fixture
def make_app(settings, session_factory, clock):
    def _make(counter=None, **overrides):
        return create_app(
            settings=replace(settings, **overrides),
            counter=counter or MemoryCounter(),
            clock=clock,
            session_factory=session_factory,
        )
    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest_asyncio.fixture(scope="function")
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test", timeout=10.0) as c:
        yield c
