from flask import Blueprint, abort, current_app, send_file

from app.golfpoi.storage import LocalStorage, StorageError

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {"name": "GolfPOI", "courses": "/courses", "login": "/auth/login"}


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/images/<path:key>")
def image_file(key: str):
    """Serve images for the local storage backend (S3 hands out presigned URLs)."""
    store = current_app.extensions["image_store"]
    if not isinstance(store, LocalStorage):
        abort(404)
    try:
        obj = store.head(key)
    except StorageError:
        current_app.logger.warning("Refused image key %r", key)
        abort(404)
    if obj is None:
        abort(404)
    return send_file(store.open(key), mimetype=obj.content_type or "application/octet-stream")
