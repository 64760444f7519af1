from __future__ import annotations

from flask import Blueprint, g, jsonify, redirect, url_for

from app.golfpoi.db import db_session
from app.golfpoi.forms import payload_from_request
from app.golfpoi.modules.categories.service import create_category, delete_category, list_categories
from app.golfpoi.rbac import admin_required

bp = Blueprint("categories", __name__)


@bp.get("/categories")
@admin_required
def categories_list():
    s = db_session()
    return jsonify(categories=list_categories(s))


@bp.post("/categories/new")
@admin_required
def categories_new_post():
    s = db_session()
    create_category(s, g.current_user.id, payload_from_request("province", "valid_counties"))
    s.commit()
    return redirect(url_for("categories.categories_list"))


@bp.post("/categories/<int:category_id>/delete")
@admin_required
def category_delete_post(category_id: int):
    s = db_session()
    delete_category(s, g.current_user.id, category_id)
    s.commit()
    return redirect(url_for("categories.categories_list"))
