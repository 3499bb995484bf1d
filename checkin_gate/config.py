import os
from dataclasses import dataclass
from typing import Optional


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else default


def _opt_env(name: str) -> Optional[str]:
    val = os.environ.get(name, "").strip()
    return val or None


@dataclass(frozen=True)
class Settings:
    qr_token_secret: str = ""
    database_url: str = "sqlite:///./checkin.db"
    db_timeout_seconds: int = 5
    redis_url: Optional[str] = None

    supabase_jwt_secret: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_anon_key: str = ""
    auth_timeout_seconds: int = 5

    live_token_ttl_seconds: int = 30
    clock_skew_seconds: int = 3

    rate_limit_ip_max: int = 20
    rate_limit_user_max: int = 30
    rate_limit_window_seconds: int = 60

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            # Empty is allowed here; the endpoints answer server_not_configured.
            qr_token_secret=os.environ.get("QR_TOKEN_SECRET", "").strip(),
            database_url=os.environ.get("DATABASE_URL", cls.database_url),
            db_timeout_seconds=_int_env("DB_TIMEOUT_SECONDS", cls.db_timeout_seconds),
            redis_url=_opt_env("REDIS_URL"),
            supabase_jwt_secret=_opt_env("SUPABASE_JWT_SECRET"),
            supabase_url=_opt_env("SUPABASE_URL"),
            supabase_anon_key=os.environ.get("SUPABASE_ANON_KEY", ""),
            auth_timeout_seconds=_int_env("AUTH_TIMEOUT_SECONDS", cls.auth_timeout_seconds),
            live_token_ttl_seconds=_int_env("LIVE_TOKEN_TTL_SECONDS", cls.live_token_ttl_seconds),
            clock_skew_seconds=_int_env("CLOCK_SKEW_SECONDS", cls.clock_skew_seconds),
            rate_limit_ip_max=_int_env("RATE_LIMIT_IP_MAX", cls.rate_limit_ip_max),
            rate_limit_user_max=_int_env("RATE_LIMIT_USER_MAX", cls.rate_limit_user_max),
            rate_limit_window_seconds=_int_env("RATE_LIMIT_WINDOW_SECONDS", cls.rate_limit_window_seconds),
            log_level=os.environ.get("LOG_LEVEL", cls.log_level).upper(),
        )
