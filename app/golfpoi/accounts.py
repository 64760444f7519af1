"""User directory helpers: admin-only user listing and display serialisation."""
from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from app.golfpoi.models import User
from app.golfpoi.rbac import require_admin


def user_to_dict(user: User | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {"id": user.id, "name": user.display_name, "email": user.email}


def list_users(s: Session, identity: int | str | None) -> list[User]:
    """All non-admin accounts, for the admin's user management view."""
    require_admin(s, identity)
    return (
        s.query(User)
        .filter(User.admin_user.is_(False))
        .order_by(User.email.asc())
        .all()
    )
