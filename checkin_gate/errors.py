"""Error tags returned by the ticket and check-in endpoints.

Each ``GateError`` carries the wire tag and the HTTP status it maps to; the
app's exception handler renders it as ``{"error": tag}``.
"""


class TokenError(ValueError):
    """Raised by the ticket codec. ``str(e)`` is the reason code."""

    def __init__(self, code: str = "invalid_token"):
        super().__init__(code)
        self.code = code


class StoreError(Exception):
    """A datastore call failed (connection, timeout, driver error)."""


class GateError(Exception):
    code = "internal_error"
    status_code = 500

    def __init__(self, code: str | None = None, status_code: int | None = None):
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.code)


class Unauthorized(GateError):
    code = "unauthorized"
    status_code = 401


class Forbidden(GateError):
    code = "forbidden"
    status_code = 403


class ServerMisconfigured(GateError):
    code = "server_not_configured"
    status_code = 500


class BadRequest(GateError):
    code = "bad_request"
    status_code = 400


class InvalidToken(BadRequest):
    code = "invalid_token"


class InvalidSignature(BadRequest):
    code = "invalid_signature"


class TokenExpired(BadRequest):
    code = "token_expired"


class NotFound(GateError):
    code = "not_found"
    status_code = 404


class NotAttending(NotFound):
    code = "not_attending"


class EventNotFound(NotFound):
    code = "event_not_found"


class AttendeeNotFound(NotFound):
    code = "attendee_not_found"


class DependencyFailed(GateError):
    """500-class failure of the datastore; ``code`` names the failed step."""

    code = "db_error"
    status_code = 500
