"""
Authorization gate.

Identity is the integer user id carried in the signed session. Course actions
need only a resolvable, active user; category management and user listing also
need the ``admin_user`` flag.
"""
from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for
from sqlalchemy.orm import Session

from app.golfpoi.errors import Unauthorized
from app.golfpoi.models import User


def resolve_identity(s: Session, identity: int | str | None) -> User | None:
    if identity is None or identity == "":
        return None
    try:
        user_id = int(identity)
    except (TypeError, ValueError):
        return None
    return s.get(User, user_id)


def require_user(s: Session, identity: int | str | None) -> User:
    user = resolve_identity(s, identity)
    if not user or not user.is_active:
        raise Unauthorized("Identity does not resolve to an active user.")
    return user


def require_admin(s: Session, identity: int | str | None) -> User:
    user = require_user(s, identity)
    if not user.admin_user:
        raise Unauthorized("User is not authorised.")
    return user


def _login_redirect():
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _login_redirect()
        return fn(*args, **kwargs)

    return wrapped


def admin_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        # Unauthenticated → redirect to login (UX + reduces confusion).
        if not user or not user.is_active:
            return _login_redirect()
        # Authenticated but not an admin → 403
        if not user.admin_user:
            g.gate_refused = request.endpoint
            abort(403)
        return fn(*args, **kwargs)

    return wrapped
