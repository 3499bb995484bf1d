"""Ticket issuing and check-in, independent of HTTP.

``issue_ticket`` runs for the attendee holding a reservation;
``verify_and_check_in`` runs for the operator scanning the attendee's QR code.
Both take the caller identity explicitly and never look at request state.
Gate failures raise ``GateError`` subclasses; a duplicate scan is a normal
result, not an error.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from . import security
from .auth import CallerIdentity
from .errors import (
    AttendeeNotFound,
    BadRequest,
    DependencyFailed,
    EventNotFound,
    Forbidden,
    GateError,
    InvalidSignature,
    InvalidToken,
    NotAttending,
    ServerMisconfigured,
    StoreError,
    TokenError,
    TokenExpired,
    Unauthorized,
)
from .scope import is_authorized
from .store import CheckInStore

logger = logging.getLogger(__name__)

LIVE = "live"
DOWNLOAD = "download"
MODES = (LIVE, DOWNLOAD)

DOWNLOAD_VALIDITY = timedelta(hours=24)

_TOKEN_ERRORS = {
    "invalid_token": InvalidToken,
    "invalid_signature": InvalidSignature,
    "token_expired": TokenExpired,
}


@dataclass(frozen=True)
class IssuedTicket:
    token: str
    expires_at: int


@dataclass(frozen=True)
class CheckedIn:
    attendee_id: str
    checked_in_at: str
    attendee_name: str
    decision_id: str = ""


@dataclass(frozen=True)
class AlreadyCheckedIn:
    attendee_id: str
    attendee_name: str
    # True when the duplicate was only noticed because the conditional update lost.
    lost_race: bool = False
    decision_id: str = ""


CheckInResult = Union[CheckedIn, AlreadyCheckedIn]


def iso_utc(at: datetime) -> str:
    return at.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CheckInService:
    def __init__(
        self,
        store: CheckInStore,
        secret: str,
        live_ttl_seconds: int = 30,
        clock_skew_seconds: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.secret = secret
        self.live_ttl_seconds = live_ttl_seconds
        self.clock_skew_seconds = clock_skew_seconds
        self.clock = clock

    def require_caller(self, caller: Optional[CallerIdentity]) -> CallerIdentity:
        if caller is None or not caller.user_id:
            raise Unauthorized()
        if not self.secret:
            logger.error("QR_TOKEN_SECRET is not configured")
            raise ServerMisconfigured()
        return caller

    # ------------------------------------------------------------------
    # Issuer
    # ------------------------------------------------------------------
    def issue_ticket(self, caller: Optional[CallerIdentity], event_id: str, mode: str = LIVE) -> IssuedTicket:
        """Mint a ticket for the caller's reservation at ``event_id``.

        Live tickets are short ``v1`` tickets meant to be re-minted as the QR
        code refreshes. Download tickets are ``v2dl`` tickets valid until one
        day after the event starts.
        """
        caller = self.require_caller(caller)
        if not security.is_valid_id(event_id):
            raise BadRequest("invalid_eventId")
        if mode not in MODES:
            raise BadRequest("invalid_mode")

        try:
            attendance = self.store.find_reservation(caller.user_id, event_id)
        except StoreError as e:
            logger.exception("reservation lookup failed event_id=%s", event_id)
            raise DependencyFailed("db_error") from e
        if attendance is None:
            raise NotAttending()

        now = int(self.clock())
        try:
            if mode == LIVE:
                token, exp = security.mint_live(attendance.id, event_id, self.secret, now, self.live_ttl_seconds)
            else:
                exp = self._download_expiry(event_id, now)
                token, exp = security.mint_download(attendance.id, event_id, self.secret, now, exp)
        except RuntimeError as e:
            logger.exception("ticket signing self-check failed")
            raise GateError("sign_failed", 500) from e
        return IssuedTicket(token=token, expires_at=exp)

    def _download_expiry(self, event_id: str, now: int) -> int:
        try:
            event = self.store.get_event(event_id)
        except StoreError as e:
            logger.exception("event lookup failed event_id=%s", event_id)
            raise DependencyFailed("db_error") from e
        if event is None or event.start_time is None:
            raise GateError("event_time_missing", 500)
        exp = int((_as_utc(event.start_time) + DOWNLOAD_VALIDITY).timestamp())
        if exp <= now:
            raise BadRequest("ticket_expired")
        return exp

    # ------------------------------------------------------------------
    # Verifier
    # ------------------------------------------------------------------
    def verify_and_check_in(
        self,
        caller: Optional[CallerIdentity],
        token: str,
        ip: str = "unknown",
        user_agent: str = "",
    ) -> CheckInResult:
        """Validate a scanned ticket and check its attendee in exactly once.

        Every decision after authentication is written to the audit log under
        a fresh decision id, which is also attached to the result or error.
        """
        decision_id = str(uuid.uuid4())
        seen: dict = {}
        try:
            result = self._verify(caller, token, seen)
        except GateError as e:
            e.decision_id = decision_id
            if caller is not None:
                self._audit(decision_id, e.code, caller, seen, ip, user_agent)
            raise

        outcome = "already_checked_in" if isinstance(result, AlreadyCheckedIn) else "checked_in"
        self._audit(decision_id, outcome, caller, seen, ip, user_agent)
        return _with_decision(result, decision_id)

    def _verify(self, caller: Optional[CallerIdentity], token: str, seen: dict) -> CheckInResult:
        caller = self.require_caller(caller)

        now = int(self.clock())
        try:
            ticket = security.verify_qr_token(token, self.secret, now, self.clock_skew_seconds)
        except TokenError as e:
            raise _TOKEN_ERRORS.get(e.code, InvalidToken)() from e
        seen["event_id"] = ticket.event_id
        seen["attendee_id"] = ticket.attendee_id

        operator = self._lookup("admin_lookup_failed", self.store.get_operator, caller.user_id)
        if operator is None:
            raise Forbidden()
        event = self._lookup("event_lookup_failed", self.store.get_event, ticket.event_id)
        if event is None:
            raise EventNotFound()
        if not is_authorized(operator.role, operator.club_id, event.club_id):
            raise Forbidden()

        attendee = self._lookup("attendee_lookup_failed", self.store.find_attendee, ticket.attendee_id, ticket.event_id)
        if attendee is None:
            raise AttendeeNotFound()

        if attendee.checked_in:
            return AlreadyCheckedIn(attendee.id, self.store.display_name(attendee.user_id))

        at = datetime.fromtimestamp(self.clock(), timezone.utc)
        try:
            won = self.store.mark_checked_in(attendee.id, caller.user_id, at)
        except StoreError as e:
            logger.exception("check-in update failed attendee_id=%s", attendee.id)
            raise DependencyFailed("checkin_failed") from e

        name = self.store.display_name(attendee.user_id)
        if not won:
            return AlreadyCheckedIn(attendee.id, name, lost_race=True)
        logger.info("checked in attendee_id=%s event_id=%s by=%s", attendee.id, ticket.event_id, caller.user_id)
        return CheckedIn(attendee.id, iso_utc(at), name)

    def _lookup(self, failure_code: str, fn, *args):
        try:
            return fn(*args)
        except StoreError as e:
            logger.exception("%s args=%s", failure_code, args)
            raise DependencyFailed(failure_code) from e

    def _audit(self, decision_id, outcome, caller, seen, ip, user_agent) -> None:
        self.store.record_decision(
            decision_id,
            outcome,
            ip,
            user_agent,
            operator_id=caller.user_id if caller else None,
            event_id=seen.get("event_id"),
            attendee_id=seen.get("attendee_id"),
        )


def _with_decision(result: CheckInResult, decision_id: str) -> CheckInResult:
    if isinstance(result, CheckedIn):
        return CheckedIn(result.attendee_id, result.checked_in_at, result.attendee_name, decision_id)
    return AlreadyCheckedIn(result.attendee_id, result.attendee_name, result.lost_race, decision_id)
