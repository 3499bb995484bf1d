"""Check-in ticket codec.

Wire formats (ASCII, dot-delimited, signature always last):

    legacy    version.attendeeId.eventId.exp.sig                (5 segments)
    extended  version.attendeeId.eventId.iat.exp.nonce.sig      (7 segments)

``sig`` is base64url (no padding) of HMAC-SHA256 over the canonical payload,
i.e. every preceding segment re-joined with ``.``. Decoding rebuilds that
payload from the parsed fields rather than reusing the input text.
"""
import base64
import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass
from typing import ClassVar, Optional, Union

from .errors import TokenError

DELIMITER = "."

LEGACY_VERSIONS = frozenset({"v1", "v1dl"})
EXTENDED_VERSIONS = frozenset({"v2dl"})
VERSIONS = LEGACY_VERSIONS | EXTENDED_VERSIONS

LIVE_VERSION = "v1"
DOWNLOAD_VERSION = "v2dl"

NONCE_MIN_LEN = 8
NONCE_MAX_LEN = 128

_NUMERIC_ID = re.compile(r"[0-9]+")
_UUID_ID = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")
_TIMESTAMP = re.compile(r"[1-9][0-9]*")
_NONCE = re.compile(r"[A-Za-z0-9_-]+")


def is_valid_id(value: str) -> bool:
    """Identifiers are either all digits or a hyphenated UUID."""
    return bool(_NUMERIC_ID.fullmatch(value) or _UUID_ID.fullmatch(value))


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def sign(secret: str, payload: str) -> str:
    if not secret:
        raise ValueError("signing secret is empty")
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return _b64url(digest)


def safe_eq(a: str, b: str) -> bool:
    aa = a.encode("utf-8")
    bb = b.encode("utf-8")
    if len(aa) != len(bb):
        return False
    return hmac.compare_digest(aa, bb)


def new_nonce() -> str:
    return secrets.token_hex(16)


def _parse_id(value: str) -> str:
    if not is_valid_id(value):
        raise TokenError("invalid_token")
    return value


def _parse_timestamp(value: str) -> int:
    if not _TIMESTAMP.fullmatch(value):
        raise TokenError("invalid_token")
    ts = int(value)
    if ts <= 0:
        raise TokenError("invalid_token")
    return ts


@dataclass(frozen=True)
class LegacyTicket:
    segments: ClassVar[int] = 5
    versions: ClassVar[frozenset] = LEGACY_VERSIONS

    version: str
    attendee_id: str
    event_id: str
    expires_at: int
    signature: str = ""

    @property
    def issued_at(self) -> Optional[int]:
        return None

    @property
    def nonce(self) -> Optional[str]:
        return None

    def payload(self) -> str:
        return DELIMITER.join([self.version, self.attendee_id, self.event_id, str(self.expires_at)])

    @classmethod
    def from_parts(cls, parts: list) -> "LegacyTicket":
        version, attendee_id, event_id, exp, sig = parts
        if version not in cls.versions:
            raise TokenError("invalid_token")
        return cls(
            version=version,
            attendee_id=_parse_id(attendee_id),
            event_id=_parse_id(event_id),
            expires_at=_parse_timestamp(exp),
            signature=sig,
        )


@dataclass(frozen=True)
class ExtendedTicket:
    segments: ClassVar[int] = 7
    versions: ClassVar[frozenset] = EXTENDED_VERSIONS

    version: str
    attendee_id: str
    event_id: str
    issued_at: int
    expires_at: int
    nonce: str
    signature: str = ""

    def payload(self) -> str:
        return DELIMITER.join([
            self.version,
            self.attendee_id,
            self.event_id,
            str(self.issued_at),
            str(self.expires_at),
            self.nonce,
        ])

    @classmethod
    def from_parts(cls, parts: list) -> "ExtendedTicket":
        version, attendee_id, event_id, iat, exp, nonce, sig = parts
        if version not in cls.versions:
            raise TokenError("invalid_token")
        issued_at = _parse_timestamp(iat)
        expires_at = _parse_timestamp(exp)
        if issued_at >= expires_at:
            raise TokenError("invalid_token")
        if not (NONCE_MIN_LEN <= len(nonce) <= NONCE_MAX_LEN) or not _NONCE.fullmatch(nonce):
            raise TokenError("invalid_token")
        return cls(
            version=version,
            attendee_id=_parse_id(attendee_id),
            event_id=_parse_id(event_id),
            issued_at=issued_at,
            expires_at=expires_at,
            nonce=nonce,
            signature=sig,
        )


Ticket = Union[LegacyTicket, ExtendedTicket]

_BY_SEGMENTS = {cls.segments: cls for cls in (LegacyTicket, ExtendedTicket)}


def encode(ticket: Ticket, secret: str) -> str:
    """Sign ``ticket`` and return the wire string.

    The signature is recomputed and compared before returning; a mismatch
    means the HMAC implementation is broken and raises ``RuntimeError``.
    """
    payload = ticket.payload()
    sig = sign(secret, payload)
    if not safe_eq(sig, sign(secret, payload)):
        raise RuntimeError("sign_failed")
    return f"{payload}{DELIMITER}{sig}"


def decode(token: str) -> Ticket:
    """Parse a wire string into a ticket without checking its signature.

    Raises ``TokenError("invalid_token")`` on any malformation.
    """
    if not isinstance(token, str) or not token.isascii():
        raise TokenError("invalid_token")
    parts = token.split(DELIMITER)
    cls = _BY_SEGMENTS.get(len(parts))
    if cls is None:
        raise TokenError("invalid_token")
    return cls.from_parts(parts)


def signature_matches(ticket: Ticket, secret: str) -> bool:
    return safe_eq(ticket.signature, sign(secret, ticket.payload()))


def verify_qr_token(token: str, secret: str, now: int, skew_seconds: int = 3) -> Ticket:
    """Decode, authenticate and freshness-check a ticket.

    Reason codes: ``invalid_token``, ``invalid_signature``, ``token_expired``.
    Expiry is inclusive of the skew window: ``expires_at == now - skew`` passes.
    """
    ticket = decode(token)
    if not signature_matches(ticket, secret):
        raise TokenError("invalid_signature")
    if ticket.expires_at < now - skew_seconds:
        raise TokenError("token_expired")
    return ticket


def mint_live(attendee_id: str, event_id: str, secret: str, now: int, ttl_seconds: int = 30) -> tuple[str, int]:
    exp = now + ttl_seconds
    ticket = LegacyTicket(LIVE_VERSION, attendee_id, event_id, exp)
    return encode(ticket, secret), exp


def mint_download(attendee_id: str, event_id: str, secret: str, now: int, expires_at: int) -> tuple[str, int]:
    ticket = ExtendedTicket(DOWNLOAD_VERSION, attendee_id, event_id, now, expires_at, new_nonce())
    return encode(ticket, secret), expires_at
