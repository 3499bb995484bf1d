"""Session verification against the external auth provider.

The gate trusts only what the provider vouches for: a bearer access token
from the ``Authorization`` header or the ``sb-access-token`` cookie, checked
either locally (HS256 shared secret) or by asking the provider's
``/auth/v1/user`` endpoint.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request
from jose import jwt
from jose.exceptions import JWTError

from .errors import DependencyFailed

logger = logging.getLogger(__name__)

SESSION_COOKIE = "sb-access-token"
AUDIENCE = "authenticated"


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    email: Optional[str] = None


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        if token:
            return token
    cookie = request.cookies.get(SESSION_COOKIE, "").strip()
    return cookie or None


class JWTIdentityVerifier:
    def __init__(self, secret: str, audience: str = AUDIENCE):
        self.secret = secret
        self.audience = audience

    async def verify(self, token: str) -> Optional[CallerIdentity]:
        try:
            claims = jwt.decode(token, self.secret, algorithms=["HS256"], audience=self.audience)
        except JWTError:
            return None
        sub = claims.get("sub")
        if not sub:
            return None
        return CallerIdentity(user_id=str(sub), email=claims.get("email"))


class RemoteIdentityVerifier:
    def __init__(self, base_url: str, anon_key: str = "", timeout: float = 5.0, transport=None):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self.transport = transport

    async def verify(self, token: str) -> Optional[CallerIdentity]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.get(
                f"{self.base_url}/auth/v1/user",
                headers={"apikey": self.anon_key, "Authorization": f"Bearer {token}"},
            )
        if r.status_code != 200:
            return None
        data = r.json()
        if not isinstance(data, dict):
            raise ValueError(f"unexpected identity payload: {type(data).__name__}")
        user_id = data.get("id")
        if not user_id:
            return None
        return CallerIdentity(user_id=str(user_id), email=data.get("email"))


class IdentityResolver:
    """Turns a request into a ``CallerIdentity`` or ``None``.

    A provider outage or an unreadable reply raises
    ``DependencyFailed("auth_lookup_failed")`` (500) rather than masquerading
    as an anonymous caller.
    """

    def __init__(self, verifier=None):
        self.verifier = verifier

    async def __call__(self, request: Request) -> Optional[CallerIdentity]:
        token = bearer_token(request)
        if not token or self.verifier is None:
            return None
        try:
            return await self.verifier.verify(token)
        except (httpx.HTTPError, ValueError) as e:
            logger.exception("identity provider call failed")
            raise DependencyFailed("auth_lookup_failed") from e


def resolver_from_settings(settings) -> IdentityResolver:
    if settings.supabase_jwt_secret:
        return IdentityResolver(JWTIdentityVerifier(settings.supabase_jwt_secret))
    if settings.supabase_url:
        return IdentityResolver(
            RemoteIdentityVerifier(settings.supabase_url, settings.supabase_anon_key, settings.auth_timeout_seconds)
        )
    logger.warning("no identity provider configured; every request is anonymous")
    return IdentityResolver(None)
