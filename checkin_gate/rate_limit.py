import logging
import math
import time
from dataclasses import dataclass
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class Counter(Protocol):
    async def increment(self, key: str, window_seconds: int) -> int: ...


class RedisCounter:
    """Fixed-window counter shared across workers through Redis."""

    def __init__(self, redis):
        self.redis = redis

    async def increment(self, key: str, window_seconds: int) -> int:
        pipe = self.redis.pipeline(transaction=True)
        pipe.incr(f"rl:{key}")
        # Keep the key for two windows so a late request still sees its window.
        pipe.expire(f"rl:{key}", window_seconds * 2)
        count, _ = await pipe.execute()
        return int(count)


class MemoryCounter:
    """In-process counter for development and tests; not shared between workers."""

    def __init__(self, clock=time.time):
        self.clock = clock
        self._entries: dict[str, tuple[int, float]] = {}
        self._next_sweep = 0.0

    async def increment(self, key: str, window_seconds: int) -> int:
        now = self.clock()
        # Keys carry their window index, so old windows are never revisited.
        if now >= self._next_sweep:
            self._entries = {k: e for k, e in self._entries.items() if e[1] > now}
            self._next_sweep = now + window_seconds
        value, expires_at = self._entries.get(key, (0, 0.0))
        if expires_at <= now:
            value, expires_at = 0, now + window_seconds * 2
        value += 1
        self._entries[key] = (value, expires_at)
        return value


@dataclass(frozen=True)
class Limit:
    max: int
    window_seconds: int


@dataclass(frozen=True)
class Decision:
    allowed: bool
    retry_after_seconds: int = 0


def _window_key(prefix: str, kind: str, ident: str, window_seconds: int, now: float) -> str:
    return f"{prefix}:{kind}:{ident}:{int(now // window_seconds)}"


def _retry_after(window_seconds: int, now: float) -> int:
    return max(0, math.ceil(window_seconds - (now % window_seconds)))


async def check_rate_limit(
    counter: Counter,
    prefix: str,
    ip: str,
    ip_limit: Limit,
    user_id: Optional[str] = None,
    user_limit: Optional[Limit] = None,
    now: Optional[float] = None,
) -> Decision:
    """Count this request against the IP window and, when known, the user window.

    Counter failures allow the request: a broken Redis must not stop a
    check-in line.
    """
    now = time.time() if now is None else now

    try:
        ip_count = await counter.increment(_window_key(prefix, "ip", ip, ip_limit.window_seconds, now), ip_limit.window_seconds)
    except Exception:
        logger.warning("rate limit store error (ip) prefix=%s", prefix, exc_info=True)
        return Decision(True)
    ip_exceeded = ip_count > ip_limit.max

    user_exceeded = False
    if user_id and user_limit is not None:
        try:
            user_count = await counter.increment(
                _window_key(prefix, "user", user_id, user_limit.window_seconds, now), user_limit.window_seconds
            )
        except Exception:
            logger.warning("rate limit store error (user) prefix=%s", prefix, exc_info=True)
            return Decision(True)
        user_exceeded = user_count > user_limit.max

    if not ip_exceeded and not user_exceeded:
        return Decision(True)

    retry = max(
        _retry_after(ip_limit.window_seconds, now) if ip_exceeded else 0,
        _retry_after(user_limit.window_seconds, now) if user_exceeded else 0,
    )
    logger.info("rate limited prefix=%s ip=%s user=%s retry_after=%s", prefix, ip, user_id, retry)
    return Decision(False, retry)


def client_ip(headers, peer: Optional[str]) -> str:
    xff = headers.get("x-forwarded-for")
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    for name in ("x-real-ip", "cf-connecting-ip", "true-client-ip"):
        val = headers.get(name)
        if val:
            return val
    return peer or "unknown"
