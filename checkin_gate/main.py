import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from redis.asyncio import Redis
from starlette.concurrency import run_in_threadpool

from . import security
from .auth import IdentityResolver, resolver_from_settings
from .config import Settings
from .db import Base, make_engine, make_session_factory
from .errors import BadRequest, GateError
from .rate_limit import Limit, MemoryCounter, RedisCounter, check_rate_limit, client_ip
from .service import DOWNLOAD, LIVE, MODES, AlreadyCheckedIn, CheckInService
from .store import CheckInStore

logger = logging.getLogger(__name__)

MAX_TOKEN_LENGTH = 4096
MAX_BODY_BYTES = 8192

SECURITY_HEADERS = {
    "Cache-Control": "no-store, must-revalidate",
    "Pragma": "no-cache",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Cross-Origin-Resource-Policy": "same-site",
    "Cross-Origin-Opener-Policy": "same-origin",
}


class CheckInReq(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=MAX_TOKEN_LENGTH)


def _rate_limited(retry_after: int) -> JSONResponse:
    return JSONResponse(
        {"ok": False, "error": "rate_limited", "retryAfterSeconds": retry_after},
        status_code=429,
        headers={"Retry-After": str(retry_after)},
    )


def create_app(
    settings: Optional[Settings] = None,
    counter=None,
    identity: Optional[IdentityResolver] = None,
    clock=None,
    session_factory=None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    engine = None
    if session_factory is None:
        engine = make_engine(settings.database_url, settings.db_timeout_seconds)
        session_factory = make_session_factory(engine)

    redis = None
    if counter is None:
        if settings.redis_url:
            redis = Redis.from_url(settings.redis_url, socket_timeout=settings.db_timeout_seconds)
            counter = RedisCounter(redis)
        else:
            logger.warning("REDIS_URL not set; rate limits are per-process")
            counter = MemoryCounter()

    clock = clock or time.time
    service = CheckInService(
        CheckInStore(session_factory),
        settings.qr_token_secret,
        live_ttl_seconds=settings.live_token_ttl_seconds,
        clock_skew_seconds=settings.clock_skew_seconds,
        clock=clock,
    )
    resolve_caller = identity or resolver_from_settings(settings)

    ip_limit = Limit(settings.rate_limit_ip_max, settings.rate_limit_window_seconds)
    user_limit = Limit(settings.rate_limit_user_max, settings.rate_limit_window_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            Base.metadata.create_all(bind=engine)
        yield
        if redis is not None:
            await redis.aclose()
        if engine is not None:
            engine.dispose()

    app = FastAPI(title="Campus Check-in Gate", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.service = service
    app.state.counter = counter

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        return response

    @app.exception_handler(GateError)
    async def gate_error_handler(request: Request, exc: GateError):
        headers = {}
        decision_id = getattr(exc, "decision_id", None)
        if decision_id:
            headers["X-Decision-Id"] = decision_id
        return JSONResponse({"error": exc.code}, status_code=exc.status_code, headers=headers)

    @app.get("/api/ticket/qr")
    async def issue_ticket(request: Request):
        caller = await resolve_caller(request)
        service.require_caller(caller)

        event_id = (request.query_params.get("eventId") or "").strip()
        mode = (request.query_params.get("mode") or LIVE).strip()
        if not event_id:
            raise BadRequest("missing_eventId")
        if not security.is_valid_id(event_id):
            raise BadRequest("invalid_eventId")
        if mode not in MODES:
            raise BadRequest("invalid_mode")

        rl = await check_rate_limit(
            counter,
            "api:ticket:download" if mode == DOWNLOAD else "api:ticket:qr",
            client_ip(request.headers, request.client.host if request.client else None),
            ip_limit,
            user_id=caller.user_id,
            user_limit=user_limit,
            now=clock(),
        )
        if not rl.allowed:
            return _rate_limited(rl.retry_after_seconds)

        issued = await run_in_threadpool(service.issue_ticket, caller, event_id, mode)
        return {"token": issued.token, "expiresAt": issued.expires_at}

    @app.post("/api/checkin/qr")
    async def check_in(request: Request):
        caller = await resolve_caller(request)
        ip = client_ip(request.headers, request.client.host if request.client else None)

        rl = await check_rate_limit(
            counter,
            "api:checkin:qr",
            ip,
            ip_limit,
            user_id=caller.user_id if caller else None,
            user_limit=user_limit,
            now=clock(),
        )
        if not rl.allowed:
            return _rate_limited(rl.retry_after_seconds)

        service.require_caller(caller)

        raw = await request.body()
        if len(raw) > MAX_BODY_BYTES:
            raise BadRequest("invalid_json")
        try:
            body = json.loads(raw)
        except (ValueError, RecursionError):
            raise BadRequest("invalid_json") from None
        try:
            req = CheckInReq.model_validate(body)
        except ValidationError:
            raise BadRequest("missing_token") from None

        result = await run_in_threadpool(
            service.verify_and_check_in, caller, req.token, ip, request.headers.get("user-agent", "")
        )
        headers = {"X-Decision-Id": result.decision_id}
        if isinstance(result, AlreadyCheckedIn):
            return JSONResponse(
                {
                    "ok": False,
                    "error": "already_checked_in",
                    "attendeeId": result.attendee_id,
                    "attendeeName": result.attendee_name,
                },
                status_code=409 if result.lost_race else 200,
                headers=headers,
            )
        return JSONResponse(
            {
                "ok": True,
                "attendeeId": result.attendee_id,
                "checkedInAt": result.checked_in_at,
                "attendeeName": result.attendee_name,
            },
            headers=headers,
        )

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "checkin-gate"}

    return app


app = create_app()
