# phrames/core/errors.py
"""
Hata taksonomisi (auth + webhook çekirdeği).

Every error carries the HTTP status it is rendered with; `main.py` registers a
handler that turns them into `{"detail": ...}` responses like `HTTPException`.
"""
from typing import Optional


class PhramesError(Exception):
    status_code = 500
    detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None, *, status_code: Optional[int] = None):
        super().__init__(detail or self.detail)
        if detail is not None:
            self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class Unauthenticated(PhramesError):
    """No valid credential was found on the request."""
    status_code = 401
    detail = "Not authenticated"


class Unauthorized(PhramesError):
    """Credential present but not good enough for the action."""
    status_code = 403
    detail = "Not authorized"


class InvalidSignature(PhramesError):
    # Same body for a forged signature, missing headers and a missing secret.
    status_code = 401
    detail = "Invalid webhook"


class DuplicateEvent(PhramesError):
    """Webhook event was already applied. Benign: acknowledged with 200."""
    status_code = 200
    detail = "Duplicate event"

    def __init__(self, event_id: str):
        super().__init__(f"Event already processed: {event_id}")
        self.event_id = event_id


class UpstreamUnavailable(PhramesError):
    status_code = 503
    detail = "Upstream service unavailable"


class BadRequest(PhramesError):
    status_code = 400
    detail = "Bad request"


class InvalidToken(Exception):
    """Identity provider rejected the token (malformed, expired, revoked, disabled)."""
