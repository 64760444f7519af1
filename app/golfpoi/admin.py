from flask import Blueprint, current_app, g, jsonify

from app.golfpoi.accounts import list_users, user_to_dict
from app.golfpoi.db import db_session
from app.golfpoi.modules.categories.models import Category
from app.golfpoi.modules.courses.service import count_courses
from app.golfpoi.rbac import admin_required

bp = Blueprint("admin", __name__)


@bp.get("/")
@admin_required
def index():
    s = db_session()
    return jsonify(
        course_count=count_courses(s),
        category_count=s.query(Category).count(),
        storage_backend=current_app.config.get("STORAGE_BACKEND"),
        weather_enabled=current_app.extensions.get("weather_client") is not None,
    )


# ============================================================================
# ACCOUNT MANAGEMENT (Admin Only)
# ============================================================================

@bp.get("/users")
@admin_required
def users_list():
    s = db_session()
    users = list_users(s, g.current_user.id)
    return jsonify(users=[dict(user_to_dict(u), is_active=u.is_active) for u in users])
