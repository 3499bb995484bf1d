import pytest

from checkin_gate.config import Settings
from checkin_gate.main import create_app
from checkin_gate.rate_limit import MemoryCounter, RedisCounter


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("QR_TOKEN_SECRET", "  s3cret  ")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./other.db")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
    monkeypatch.setenv("CLOCK_SKEW_SECONDS", "5")
    monkeypatch.setenv("RATE_LIMIT_IP_MAX", "7")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.delenv("SUPABASE_URL", raising=False)

    s = Settings.from_env()
    assert s.qr_token_secret == "s3cret"
    assert s.database_url == "sqlite:///./other.db"
    assert s.redis_url == "redis://cache:6379/1"
    assert s.clock_skew_seconds == 5
    assert s.rate_limit_ip_max == 7
    assert s.log_level == "DEBUG"
    assert s.supabase_url is None


def test_defaults(monkeypatch):
    for name in ("QR_TOKEN_SECRET", "REDIS_URL", "LIVE_TOKEN_TTL_SECONDS", "CLOCK_SKEW_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    s = Settings.from_env()
    assert s.qr_token_secret == ""
    assert s.redis_url is None
    assert s.live_token_ttl_seconds == 30
    assert s.clock_skew_seconds == 3


def test_counter_follows_redis_setting(tmp_path):
    url = f"sqlite:///{tmp_path / 'c.db'}"
    assert isinstance(create_app(Settings(database_url=url)).state.counter, MemoryCounter)
    with_redis = create_app(Settings(database_url=url, redis_url="redis://localhost:6379/0"))
    assert isinstance(with_redis.state.counter, RedisCounter)


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "checkin-gate"}


@pytest.mark.asyncio
async def test_lifespan_creates_tables(tmp_path):
    from sqlalchemy import create_engine, inspect

    url = f"sqlite:///{tmp_path / 'fresh.db'}"
    app = create_app(Settings(database_url=url, qr_token_secret="x"))
    async with app.router.lifespan_context(app):
        tables = set(inspect(create_engine(url)).get_table_names())
    assert {"events", "attendees", "admin_users", "profiles_public", "audit_logs"} <= tables
