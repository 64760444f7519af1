from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.golfpoi.accounts import user_to_dict
from app.golfpoi.audit import record_event
from app.golfpoi.errors import NotFound, ValidationError
from app.golfpoi.modules.categories.service import (
    category_to_dict,
    normalize_province,
    province_choices,
    resolve_by_province,
)
from app.golfpoi.modules.courses.gallery import reconcile_gallery
from app.golfpoi.rbac import require_user

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.golfpoi.models import User
    from app.golfpoi.modules.categories.models import Category
    from app.golfpoi.modules.courses.models import Course
    from app.golfpoi.storage import Storage
    from app.golfpoi.weather import WeatherClient

logger = logging.getLogger(__name__)


def _parse_coordinate(raw: Any, low: float, high: float) -> tuple[float | None, str | None]:
    if isinstance(raw, str):
        raw = raw.strip()
    if raw is None or raw == "":
        return None, None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None, "Must be a number."
    if not (low <= value <= high):
        return None, f"Must be between {low:g} and {high:g}."
    return value, None


def parse_location(payload: dict) -> tuple[tuple[float, float] | None, dict[str, str]]:
    """Return ((longitude, latitude) or None, field errors). Both or neither."""
    errors: dict[str, str] = {}
    lon, lon_err = _parse_coordinate(payload.get("longitude"), -180.0, 180.0)
    lat, lat_err = _parse_coordinate(payload.get("latitude"), -90.0, 90.0)
    if lon_err:
        errors["longitude"] = lon_err
    if lat_err:
        errors["latitude"] = lat_err
    if errors:
        return None, errors
    if lon is None and lat is None:
        return None, {}
    if lon is None:
        return None, {"longitude": "Longitude is required when latitude is given."}
    if lat is None:
        return None, {"latitude": "Latitude is required when longitude is given."}
    return (lon, lat), {}


def validate_course_payload(payload: dict) -> dict[str, str]:
    """Field-level errors for a create/update payload (empty dict when valid)."""
    errors: dict[str, str] = {}
    if not (payload.get("name") or "").strip():
        errors["name"] = "Name is required."
    if not (payload.get("description") or "").strip():
        errors["description"] = "Description is required."
    if not normalize_province(payload.get("province")):
        errors["province"] = "Province is required."
    _, loc_errors = parse_location(payload)
    errors.update(loc_errors)
    return errors


def get_course(s: "Session", course_id: int) -> "Course":
    from app.golfpoi.modules.courses.models import Course

    course = s.get(Course, course_id)
    if not course:
        raise NotFound(f"Course {course_id} not found.")
    return course


def current_category(s: "Session", course: "Course") -> "Category | None":
    """The course's category, or None when unset or the id is dangling."""
    from app.golfpoi.modules.categories.models import Category

    if course.category_id is None:
        return None
    return s.get(Category, course.category_id)


def create_course(s: "Session", identity: int | str | None, payload: dict) -> "Course":
    from app.golfpoi.modules.courses.models import Course

    user = require_user(s, identity)
    errors = validate_course_payload(payload)
    if errors:
        raise ValidationError(errors)

    category = resolve_by_province(s, payload.get("province"))
    location, _ = parse_location(payload)

    now = datetime.utcnow()
    course = Course(
        name=payload["name"].strip(),
        description=payload["description"].strip(),
        longitude=location[0] if location else None,
        latitude=location[1] if location else None,
        category_id=category.id,
        created_at=now,
        updated_at=now,
        last_updated_by_user_id=user.id,
    )
    s.add(course)
    s.flush()

    record_event(
        s,
        actor=user,
        action="course.create",
        entity_type="Course",
        entity_id=str(course.id),
        metadata={"name": course.name, "province": category.province},
    )
    return course


def update_course(s: "Session", identity: int | str | None, course_id: int, payload: dict) -> "Course":
    """
    Overwrite a course's editable fields.

    The category is looked up again only when the submitted province differs
    from the current category's, or the course has no (live) category.
    Any failure happens before the first field is touched.
    """
    user = require_user(s, identity)
    course = get_course(s, course_id)
    errors = validate_course_payload(payload)
    if errors:
        raise ValidationError(errors)

    province = normalize_province(payload.get("province"))
    category = current_category(s, course)
    if category is None or category.province != province:
        category = resolve_by_province(s, province)
    location, _ = parse_location(payload)

    changes: dict[str, dict[str, Any]] = {}

    def _set(attr: str, value: Any) -> None:
        old = getattr(course, attr)
        if old != value:
            changes[attr] = {"old": old, "new": value}
            setattr(course, attr, value)

    _set("name", payload["name"].strip())
    _set("description", payload["description"].strip())
    _set("longitude", location[0] if location else None)
    _set("latitude", location[1] if location else None)
    _set("category_id", category.id)

    course.updated_at = datetime.utcnow()
    course.last_updated_by_user_id = user.id

    record_event(
        s,
        actor=user,
        action="course.edit",
        entity_type="Course",
        entity_id=str(course.id),
        metadata={"name": course.name, "changes": changes},
    )
    s.flush()
    return course


def delete_course(s: "Session", identity: int | str | None, course_id: int) -> None:
    """Remove a course. Its stored images are left in the blob store."""
    user = require_user(s, identity)
    course = get_course(s, course_id)
    orphaned = course.related_images
    if orphaned:
        logger.info("Course %s deleted; %s image(s) left in store: %s", course.id, len(orphaned), orphaned)

    s.delete(course)
    record_event(
        s,
        actor=user,
        action="course.delete",
        entity_type="Course",
        entity_id=str(course_id),
        metadata={"name": course.name, "orphaned_images": orphaned},
    )
    s.flush()


def course_to_dict(
    course: "Course",
    *,
    author: "User | None" = None,
    category: "Category | None" = None,
) -> dict[str, Any]:
    location = course.location
    return {
        "id": course.id,
        "name": course.name,
        "description": course.description,
        "location": {"longitude": location[0], "latitude": location[1]} if location else None,
        "category_id": course.category_id,
        "category": category_to_dict(category) if category else None,
        "last_updated_by": user_to_dict(author),
        "related_images": course.related_images,
        "updated_at": course.updated_at.isoformat() if course.updated_at else None,
    }


def list_courses(s: "Session") -> list[dict[str, Any]]:
    """Every course with its last editor and category (None when dangling)."""
    from app.golfpoi.models import User
    from app.golfpoi.modules.categories.models import Category
    from app.golfpoi.modules.courses.models import Course

    rows = (
        s.query(Course, User, Category)
        .outerjoin(User, User.id == Course.last_updated_by_user_id)
        .outerjoin(Category, Category.id == Course.category_id)
        .order_by(Course.id.asc())
        .all()
    )
    return [course_to_dict(course, author=author, category=category) for course, author, category in rows]


def count_courses(s: "Session") -> int:
    from app.golfpoi.modules.courses.models import Course

    return s.query(Course).count()


def get_course_detail(
    s: "Session",
    store: "Storage",
    course_id: int,
    *,
    weather: "WeatherClient | None" = None,
) -> dict[str, Any]:
    from app.golfpoi.models import User

    course = get_course(s, course_id)
    category = current_category(s, course)
    author = s.get(User, course.last_updated_by_user_id) if course.last_updated_by_user_id else None
    gallery = reconcile_gallery(s, store, course)

    detail = course_to_dict(course, author=author, category=category)
    detail["current_province"] = category.province if category else None
    detail["gallery"] = [img.to_dict() for img in gallery]
    detail["provinces"] = province_choices(s)
    detail["weather"] = None
    if weather is not None and course.location:
        report = weather.fetch(*course.location)
        detail["weather"] = report.to_dict() if report else None
    return detail
