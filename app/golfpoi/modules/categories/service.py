from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.golfpoi.accounts import user_to_dict
from app.golfpoi.audit import record_event
from app.golfpoi.errors import NotFound, UnknownProvince, ValidationError
from app.golfpoi.rbac import require_admin

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.golfpoi.models import User
    from app.golfpoi.modules.categories.models import Category

logger = logging.getLogger(__name__)


def normalize_province(province: str | None) -> str:
    return (province or "").strip()


def parse_counties(raw: str | None) -> list[str]:
    """Split a whitespace-delimited county list into a sorted, de-duplicated list."""
    return sorted(set((raw or "").split()))


def validate_category_payload(payload: dict) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not normalize_province(payload.get("province")):
        errors["province"] = "Province is required."
    return errors


def get_category(s: "Session", category_id: int) -> "Category":
    from app.golfpoi.modules.categories.models import Category

    category = s.get(Category, category_id)
    if not category:
        raise NotFound(f"Category {category_id} not found.")
    return category


def resolve_by_province(s: "Session", province: str | None) -> "Category":
    """Exact-match lookup; the oldest category wins if legacy duplicates exist."""
    from app.golfpoi.modules.categories.models import Category

    wanted = normalize_province(province)
    category = (
        s.query(Category)
        .filter(Category.province == wanted)
        .order_by(Category.id.asc())
        .first()
    ) if wanted else None
    if not category:
        raise UnknownProvince(wanted)
    return category


def create_category(s: "Session", identity: int | str | None, payload: dict) -> "Category":
    from app.golfpoi.modules.categories.models import Category

    user = require_admin(s, identity)

    errors = validate_category_payload(payload)
    province = normalize_province(payload.get("province"))
    if not errors and s.query(Category.id).filter(Category.province == province).first():
        errors["province"] = f"A category for {province} already exists."
    if errors:
        raise ValidationError(errors)

    category = Category(
        province=province,
        valid_counties=parse_counties(payload.get("valid_counties")),
        created_at=datetime.utcnow(),
        last_updated_by_user_id=user.id,
    )
    s.add(category)
    s.flush()

    record_event(
        s,
        actor=user,
        action="category.create",
        entity_type="Category",
        entity_id=str(category.id),
        metadata={"province": category.province, "valid_counties": category.valid_counties},
    )
    return category


def delete_category(s: "Session", identity: int | str | None, category_id: int) -> None:
    """Delete a category. Courses keep their (now dangling) category id."""
    from app.golfpoi.modules.courses.models import Course

    user = require_admin(s, identity)
    category = get_category(s, category_id)

    dangling = s.query(Course).filter(Course.category_id == category.id).count()
    if dangling:
        logger.warning(
            "Deleting category %s (%s) still referenced by %s course(s)",
            category.id,
            category.province,
            dangling,
        )

    s.delete(category)
    record_event(
        s,
        actor=user,
        action="category.delete",
        entity_type="Category",
        entity_id=str(category_id),
        metadata={"province": category.province, "dangling_courses": dangling},
    )
    s.flush()


def category_to_dict(category: "Category", author: "User | None" = None) -> dict[str, Any]:
    return {
        "id": category.id,
        "province": category.province,
        "valid_counties": list(category.valid_counties or []),
        "last_updated_by": user_to_dict(author),
    }


def list_categories(s: "Session") -> list[dict[str, Any]]:
    from app.golfpoi.models import User
    from app.golfpoi.modules.categories.models import Category

    rows = (
        s.query(Category, User)
        .outerjoin(User, User.id == Category.last_updated_by_user_id)
        .order_by(Category.id.asc())
        .all()
    )
    return [category_to_dict(category, author) for category, author in rows]


def province_choices(s: "Session") -> list[str]:
    from app.golfpoi.modules.categories.models import Category

    return [p for (p,) in s.query(Category.province).order_by(Category.id.asc()).all()]
