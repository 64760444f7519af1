from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, redirect, request, url_for

from app.golfpoi.db import db_session
from app.golfpoi.forms import payload_from_request
from app.golfpoi.modules.courses.gallery import attach_image, detach_image
from app.golfpoi.modules.courses.service import (
    count_courses,
    create_course,
    delete_course,
    get_course_detail,
    list_courses,
    update_course,
)
from app.golfpoi.rbac import login_required

bp = Blueprint("courses", __name__)

COURSE_FIELDS = ("name", "description", "province", "longitude", "latitude")


def _identity() -> int:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u.id


def _store():
    return current_app.extensions["image_store"]


# ---------- List ----------
@bp.get("/courses")
@login_required
def courses_list():
    s = db_session()
    return jsonify(
        courses=list_courses(s),
        course_count=count_courses(s),
        admin_user=bool(g.current_user.admin_user),
    )


# ---------- New ----------
@bp.post("/courses/new")
@login_required
def courses_new_post():
    s = db_session()
    course = create_course(s, _identity(), payload_from_request(*COURSE_FIELDS))
    s.commit()
    current_app.logger.info("Course %s created by user %s", course.id, _identity())
    return redirect(url_for("courses.courses_list"))


# ---------- Detail ----------
@bp.get("/courses/<int:course_id>")
@login_required
def course_detail(course_id: int):
    s = db_session()
    detail = get_course_detail(
        s,
        _store(),
        course_id,
        weather=current_app.extensions.get("weather_client"),
    )
    # The gallery view may have pruned stale image references.
    s.commit()
    return jsonify(detail)


# ---------- Edit ----------
@bp.post("/courses/<int:course_id>/edit")
@login_required
def course_edit_post(course_id: int):
    s = db_session()
    update_course(s, _identity(), course_id, payload_from_request(*COURSE_FIELDS))
    s.commit()
    return redirect(url_for("courses.courses_list"))


# ---------- Delete ----------
@bp.post("/courses/<int:course_id>/delete")
@login_required
def course_delete_post(course_id: int):
    s = db_session()
    delete_course(s, _identity(), course_id)
    s.commit()
    return redirect(url_for("courses.courses_list"))


# ---------- Images ----------
@bp.post("/courses/<int:course_id>/images")
@login_required
def course_image_upload(course_id: int):
    s = db_session()
    f = request.files.get("imagefile")
    data = f.read() if f else b""
    attach_image(
        s,
        _store(),
        _identity(),
        course_id,
        data,
        filename=f.filename if f else None,
        max_bytes=current_app.config.get("MAX_IMAGE_BYTES"),
    )
    s.commit()
    return redirect(url_for("courses.course_detail", course_id=course_id))


@bp.post("/courses/<int:course_id>/images/<path:image_id>/delete")
@login_required
def course_image_delete(course_id: int, image_id: str):
    s = db_session()
    detach_image(s, _store(), _identity(), course_id, image_id)
    s.commit()
    return redirect(url_for("courses.course_detail", course_id=course_id))
