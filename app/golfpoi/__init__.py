import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from sqlalchemy import inspect as sa_inspect

from app.golfpoi.admin import bp as admin_bp
from app.golfpoi.auth import LoginThrottle, bp as auth_bp, load_current_user
from app.golfpoi.config import load_config
from app.golfpoi.db import init_db, teardown_db_session
from app.golfpoi.errors import GolfPOIError
from app.golfpoi.modules.categories.admin import bp as categories_bp
from app.golfpoi.modules.courses.admin import bp as courses_bp
from app.golfpoi.routes import bp as routes_bp
from app.golfpoi.storage import S3Storage, StorageError, storage_from_config
from app.golfpoi.weather import weather_client_from_config

REQUIRED_TABLES = ("users", "audit_events", "categories", "courses", "course_images")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.config.setdefault("CSRF_ENABLED", True)

    logging.getLogger("app.golfpoi").setLevel(app.config["LOG_LEVEL"])
    app.logger.setLevel(app.config["LOG_LEVEL"])

    from app.golfpoi.security import csrf_required, ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz", "/images/")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if app.config.get("CSRF_ENABLED") and csrf_required(request) and not validate_csrf(request):
            return jsonify(error="csrf", message="CSRF token missing or invalid."), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    # External collaborators are built once from explicit config; domain code never reads the environment.
    app.extensions["image_store"] = storage_from_config(app.config)
    app.extensions["weather_client"] = weather_client_from_config(app.config)
    if app.extensions["weather_client"] is None:
        app.logger.info("WEATHER_API_KEY not set; course pages will not show weather")
    app.extensions["login_throttle"] = LoginThrottle()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            storage = app.extensions["image_store"]
            if isinstance(storage, S3Storage):
                try:
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
                except Exception as e:
                    app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(categories_bp, url_prefix="/admin")
    app.register_blueprint(courses_bp)

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    # Schema health (lean): log loudly if migrations have not been applied.
    def _run_schema_health_check() -> None:
        engine = app.extensions["sqlalchemy_engine"]
        try:
            existing = set(sa_inspect(engine).get_table_names())
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
            return
        missing = [t for t in REQUIRED_TABLES if t not in existing]
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.errorhandler(GolfPOIError)
    def _domain_error(e: GolfPOIError):
        level = logging.ERROR if e.status_code >= 500 else logging.INFO
        app.logger.log(level, "%s on %s (request_id=%s): %s", type(e).__name__, request.path, getattr(g, "request_id", None), e)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(StorageError)
    def _storage_error(e: StorageError):
        app.logger.error("Storage error on %s: %s", request.path, e)
        return jsonify(error="external_service_failure", message="Image store unavailable."), 502

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        refused = getattr(g, "gate_refused", None)
        if refused:
            app.logger.warning("Forbidden: admin gate refused endpoint=%s request_id=%s", refused, getattr(g, "request_id", None))
        return jsonify(error="unauthorized"), 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify(error="not_found", message="Not found."), 404

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify(error="validation_error", message="Upload too large."), 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify(error="server_error"), 500

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete (env=%s pid=%s)", env or "development", os.getpid())

    return app
