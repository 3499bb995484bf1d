import httpx
import pytest

from checkin_gate.errors import StoreError
from checkin_gate.security import ExtendedTicket, LegacyTicket, decode, verify_qr_token
from tests.helpers import NOW, SECRET, auth_headers, fetch_ticket

pytestmark = pytest.mark.asyncio


async def test_live_ticket_for_reservation(client):
    data = await fetch_ticket(client, "user-1", "100")
    ticket = verify_qr_token(data["token"], SECRET, NOW)
    assert isinstance(ticket, LegacyTicket)
    assert (ticket.version, ticket.attendee_id, ticket.event_id) == ("v1", "501", "100")
    assert data["expiresAt"] == ticket.expires_at == NOW + 30


async def test_reminting_is_stateless(client, clock):
    first = await fetch_ticket(client, "user-1", "100")
    clock.advance(20)
    second = await fetch_ticket(client, "user-1", "100")
    assert first["token"] != second["token"]
    assert second["expiresAt"] == first["expiresAt"] + 20


async def test_response_is_not_cacheable(client):
    r = await client.get("/api/ticket/qr", params={"eventId": "100"}, headers=auth_headers("user-1"))
    assert r.headers["Cache-Control"] == "no-store, must-revalidate"
    assert r.headers["X-Content-Type-Options"] == "nosniff"


async def test_download_ticket_valid_until_day_after_start(client):
    data = await fetch_ticket(client, "user-1", "100", mode="download")
    ticket = verify_qr_token(data["token"], SECRET, NOW)
    assert isinstance(ticket, ExtendedTicket)
    assert ticket.version == "v2dl"
    assert ticket.issued_at == NOW
    assert ticket.expires_at == data["expiresAt"] == NOW + 3600 + 86400
    assert len(ticket.nonce) == 32


async def test_download_without_start_time(client):
    r = await client.get("/api/ticket/qr", params={"eventId": "300", "mode": "download"}, headers=auth_headers("user-1"))
    assert r.status_code == 500
    assert r.json() == {"error": "event_time_missing"}


async def test_download_after_validity_window(client, clock):
    clock.advance(3600 + 86400)
    r = await client.get("/api/ticket/qr", params={"eventId": "100", "mode": "download"}, headers=auth_headers("user-1"))
    assert r.status_code == 400
    assert r.json() == {"error": "ticket_expired"}


async def test_unauthenticated(client):
    r = await client.get("/api/ticket/qr", params={"eventId": "100"})
    assert r.status_code == 401
    assert r.json() == {"error": "unauthorized"}


async def test_forged_session_is_unauthenticated(client):
    r = await client.get("/api/ticket/qr", params={"eventId": "100"}, headers=auth_headers("user-1", secret="nope"))
    assert r.status_code == 401


@pytest.mark.parametrize("params,error", [
    ({}, "missing_eventId"),
    ({"eventId": "  "}, "missing_eventId"),
    ({"eventId": "E100"}, "invalid_eventId"),
    ({"eventId": "100.1"}, "invalid_eventId"),
    ({"eventId": "100", "mode": "forever"}, "invalid_mode"),
])
async def test_bad_query(client, params, error):
    r = await client.get("/api/ticket/qr", params=params, headers=auth_headers("user-1"))
    assert r.status_code == 400
    assert r.json() == {"error": error}


async def test_not_attending(client):
    r = await client.get("/api/ticket/qr", params={"eventId": "100"}, headers=auth_headers("user-3"))
    assert r.status_code == 404
    assert r.json() == {"error": "not_attending"}


async def test_unconfigured_secret(make_app):
    app = make_app(qr_token_secret="")
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        r = await c.get("/api/ticket/qr", params={"eventId": "100"}, headers=auth_headers("user-1"))
        anon = await c.get("/api/ticket/qr", params={"eventId": "100"})
    assert r.status_code == 500
    assert r.json() == {"error": "server_not_configured"}
    # Authentication is still checked first.
    assert anon.status_code == 401


async def test_store_failure_is_db_error(app, client, monkeypatch):
    def boom(*args):
        raise StoreError("connection refused")

    monkeypatch.setattr(app.state.service.store, "find_reservation", boom)
    r = await client.get("/api/ticket/qr", params={"eventId": "100"}, headers=auth_headers("user-1"))
    assert r.status_code == 500
    assert r.json() == {"error": "db_error"}


async def test_minted_ticket_names_only_its_own_reservation(client):
    a = decode((await fetch_ticket(client, "user-1", "100"))["token"])
    b = decode((await fetch_ticket(client, "user-2", "100"))["token"])
    assert (a.attendee_id, b.attendee_id) == ("501", "502")
