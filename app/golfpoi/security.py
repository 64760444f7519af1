import hmac
import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
_SAFE_METHODS = ("GET", "HEAD", "OPTIONS")


def ensure_csrf_token() -> str:
    """Return the session's CSRF token, minting one on first use."""
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def submitted_csrf_token(req: Request) -> str | None:
    token = req.headers.get(CSRF_HEADER) or req.form.get("csrf_token")
    if not token and req.is_json:
        body = req.get_json(silent=True) or {}
        if isinstance(body, dict):
            token = body.get("csrf_token")
    return token or None


def csrf_required(req: Request) -> bool:
    if req.method in _SAFE_METHODS:
        return False
    # Login/logout run before a session token can exist.
    return not (req.endpoint or "").startswith("auth.")


def validate_csrf(req: Request) -> bool:
    token = submitted_csrf_token(req)
    expected = session.get(CSRF_SESSION_KEY)
    return bool(token and expected and hmac.compare_digest(str(token), str(expected)))
