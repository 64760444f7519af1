"""
Session login for course editors and admins.

Identity is the user id stored in the signed Flask session; ``load_current_user``
turns it back into ``g.current_user`` on every request.
"""
from __future__ import annotations

import threading
import uuid
from collections import defaultdict, deque
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, redirect, request, session, url_for
from werkzeug.security import check_password_hash

from app.golfpoi.audit import record_event
from app.golfpoi.db import db_session
from app.golfpoi.forms import payload_from_request
from app.golfpoi.models import User
from app.golfpoi.rbac import resolve_identity

bp = Blueprint("auth", __name__)


class LoginThrottle:
    """Sliding-window limit on login attempts per client address."""

    def __init__(self, limit: int = 5, window_seconds: int = 300):
        self.limit = limit
        self.window = timedelta(seconds=window_seconds)
        self._attempts: dict[str, deque[datetime]] = defaultdict(deque)
        self._lock = threading.Lock()

    def blocked(self, key: str) -> bool:
        cutoff = datetime.utcnow() - self.window
        with self._lock:
            attempts = self._attempts[key]
            while attempts and attempts[0] <= cutoff:
                attempts.popleft()
            return len(attempts) >= self.limit

    def hit(self, key: str) -> None:
        with self._lock:
            self._attempts[key].append(datetime.utcnow())

    def reset(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)


def _throttle() -> LoginThrottle:
    throttle = current_app.extensions.get("login_throttle")
    if throttle is None:
        throttle = current_app.extensions["login_throttle"] = LoginThrottle()
    return throttle


def _safe_next(nxt: str | None) -> str | None:
    # Local paths only; anything else would be an open redirect.
    nxt = (nxt or "").strip()
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def load_current_user() -> None:
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user_id = session.get("user_id")
    if not user_id:
        return

    user = resolve_identity(db_session(), user_id)
    if user and user.is_active:
        g.current_user = user
    else:
        session.pop("user_id", None)


@bp.get("/login")
def login_get():
    return jsonify(
        login_required=True,
        next=_safe_next(request.args.get("next")),
        error=request.args.get("error"),
    ), 401


@bp.post("/login")
def login_post():
    payload = payload_from_request("email", "password", "next")
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"
    throttle = _throttle()

    if throttle.blocked(ip):
        current_app.logger.warning("Login throttled for %s", ip)
        return jsonify(error="rate_limited", message="Too many login attempts. Please wait 5 minutes."), 429
    throttle.hit(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        return redirect(url_for("auth.login_get", error="invalid"))

    session["user_id"] = user.id
    session.permanent = True
    throttle.reset(ip)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return redirect(_safe_next(payload.get("next")) or url_for("courses.courses_list"))


@bp.get("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.clear()
    return redirect(url_for("routes.index"))
