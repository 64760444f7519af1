"""
Course image gallery.

A course's ``related_images`` are opaque keys into the blob store, one
``CourseImage`` row each. Attach inserts a row after the upload succeeds; detach
deletes the stored object first and then the row. The gallery view prunes rows
whose objects have disappeared from the store.
"""
from __future__ import annotations

import io
import logging
import uuid
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Iterable

from PIL import Image
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from app.golfpoi.audit import record_event
from app.golfpoi.errors import ExternalServiceFailure, NotFound, ValidationError
from app.golfpoi.rbac import require_user
from app.golfpoi.storage import StorageError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.golfpoi.modules.courses.models import Course
    from app.golfpoi.storage import Storage

logger = logging.getLogger(__name__)

IMAGE_FORMATS = {"JPEG": "jpg", "PNG": "png", "GIF": "gif", "WEBP": "webp"}


@dataclass(frozen=True)
class GalleryImage:
    image_id: str
    course_id: int | None
    url: str
    width: int | None
    height: int | None
    content_type: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def inspect_image(data: bytes) -> tuple[int, int, str]:
    """Return (width, height, format) or raise ValidationError for non-images."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            fmt = (img.format or "").upper()
    except (OSError, Image.DecompressionBombError) as e:
        raise ValidationError({"imagefile": "Upload is not a readable image."}) from e
    if fmt not in IMAGE_FORMATS:
        raise ValidationError({"imagefile": f"Unsupported image format: {fmt or 'unknown'}."})
    return width, height, fmt


def build_image_key(course_id: int, fmt: str) -> str:
    return f"courses/{course_id}/{uuid.uuid4().hex}.{IMAGE_FORMATS[fmt]}"


def _int_or_none(raw: str | None) -> int | None:
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


def materialize(
    store: "Storage",
    image_ids: Iterable[str] | None,
    *,
    course_id: int | None = None,
) -> list[GalleryImage]:
    """Display records for the ids still present in the store, in the given order."""
    if not image_ids:
        return []
    out: list[GalleryImage] = []
    for image_id in image_ids:
        try:
            obj = store.head(image_id)
            if obj is None:
                logger.warning("Image %s for course %s missing from store", image_id, course_id)
                continue
            url = store.url_for(image_id)
        except StorageError as e:
            raise ExternalServiceFailure(f"Image store unavailable: {e}") from e
        out.append(
            GalleryImage(
                image_id=image_id,
                course_id=course_id,
                url=url,
                width=_int_or_none(obj.metadata.get("width")),
                height=_int_or_none(obj.metadata.get("height")),
                content_type=obj.content_type,
            )
        )
    return out


def reconcile_gallery(s: "Session", store: "Storage", course: "Course") -> list[GalleryImage]:
    """Materialize the gallery and drop references to objects no longer in the store."""
    from app.golfpoi.modules.courses.models import CourseImage

    ids = course.related_images
    gallery = materialize(store, ids, course_id=course.id)
    present = {img.image_id for img in gallery}
    stale = [i for i in ids if i not in present]
    if stale:
        logger.warning("Pruning %s stale image reference(s) from course %s: %s", len(stale), course.id, stale)
        (
            s.query(CourseImage)
            .filter(CourseImage.course_id == course.id)
            .filter(CourseImage.image_id.in_(stale))
            .delete(synchronize_session=False)
        )
        s.expire(course, ["images"])
    return gallery


def attach_image(
    s: "Session",
    store: "Storage",
    identity: int | str | None,
    course_id: int,
    data: bytes | None,
    *,
    filename: str | None = None,
    max_bytes: int | None = None,
) -> "Course":
    from app.golfpoi.modules.courses.models import CourseImage
    from app.golfpoi.modules.courses.service import get_course

    user = require_user(s, identity)
    course = get_course(s, course_id)

    if not data:
        logger.info("Empty upload for course %s ignored", course.id)
        return course
    if max_bytes and len(data) > max_bytes:
        raise ValidationError({"imagefile": f"Image exceeds {max_bytes} bytes."})

    width, height, fmt = inspect_image(data)
    image_id = build_image_key(course.id, fmt)
    try:
        store.put_bytes(
            image_id,
            data,
            content_type=Image.MIME.get(fmt),
            metadata={
                "width": str(width),
                "height": str(height),
                "course_id": str(course.id),
                "filename": secure_filename(filename or "") or "image",
            },
        )
    except StorageError as e:
        raise ExternalServiceFailure(f"Image upload failed: {e}") from e

    try:
        s.add(CourseImage(course_id=course.id, image_id=image_id, added_by_user_id=user.id))
        s.flush()
    except SQLAlchemyError:
        logger.error("Image %s stored but not attached to course %s; it is orphaned in the store", image_id, course.id)
        raise
    s.expire(course, ["images"])

    record_event(
        s,
        actor=user,
        action="course.image_attach",
        entity_type="Course",
        entity_id=str(course.id),
        metadata={"image_id": image_id, "width": width, "height": height},
    )
    return course


def detach_image(
    s: "Session",
    store: "Storage",
    identity: int | str | None,
    course_id: int,
    image_id: str,
) -> "Course":
    from app.golfpoi.modules.courses.models import CourseImage
    from app.golfpoi.modules.courses.service import get_course

    user = require_user(s, identity)
    course = get_course(s, course_id)

    row = (
        s.query(CourseImage)
        .filter(CourseImage.course_id == course.id)
        .filter(CourseImage.image_id == image_id)
        .order_by(CourseImage.id.asc())
        .first()
    )
    if row is None:
        raise NotFound(f"Image {image_id} is not attached to course {course.id}.")

    try:
        store.delete(image_id)
    except StorageError as e:
        raise ExternalServiceFailure(f"Image delete failed: {e}") from e

    s.delete(row)
    s.flush()
    s.expire(course, ["images"])

    record_event(
        s,
        actor=user,
        action="course.image_detach",
        entity_type="Course",
        entity_id=str(course.id),
        metadata={"image_id": image_id},
    )
    return course
