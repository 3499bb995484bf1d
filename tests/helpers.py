import time

import httpx
from jose import jwt

from checkin_gate.security import LegacyTicket, encode

SECRET = "test-qr-secret"
JWT_SECRET = "test-jwt-secret"
NOW = 1_700_000_000


def auth_headers(user_id: str, secret: str = JWT_SECRET) -> dict:
    claims = {"sub": user_id, "aud": "authenticated", "exp": int(time.time()) + 3600, "email": f"{user_id}@campus.test"}
    return {"Authorization": f"Bearer {jwt.encode(claims, secret, algorithm='HS256')}"}


def legacy_token(attendee_id="501", event_id="100", exp=NOW + 30, secret=SECRET, version="v1") -> str:
    return encode(LegacyTicket(version, attendee_id, event_id, exp), secret)


async def fetch_ticket(client: httpx.AsyncClient, user_id: str, event_id: str, mode: str = "live") -> dict:
    r = await client.get("/api/ticket/qr", params={"eventId": event_id, "mode": mode}, headers=auth_headers(user_id))
    assert r.status_code == 200, r.text
    return r.json()


async def scan(client: httpx.AsyncClient, operator_id: str, token: str) -> httpx.Response:
    return await client.post("/api/checkin/qr", json={"token": token}, headers=auth_headers(operator_id))
