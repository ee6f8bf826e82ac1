import logging
import os
import time

from dotenv import load_dotenv
from flask import Flask, g, request

from app.workhub.auth import bp as auth_bp, load_current_user
from app.workhub.config import load_config
from app.workhub.db import init_db, teardown_db_session
from app.workhub.errors import register_error_handlers
from app.workhub.mongo import init_mongo
from app.workhub.routes import bp as routes_bp
from app.workhub.modules.departments.api import bp as departments_bp
from app.workhub.modules.groups.api import bp as groups_bp
from app.workhub.modules.locations.api import bp as locations_bp
from app.workhub.modules.organizations.api import bp as organizations_bp
from app.workhub.modules.projects.api import bp as projects_bp
from app.workhub.modules.roles.api import bp as roles_bp
from app.workhub.modules.statistics.api import bp as statistics_bp
from app.workhub.modules.tasks.api import bp as tasks_bp
from app.workhub.modules.users.api import bp as users_bp


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    app.logger.setLevel(level)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.json.sort_keys = False
    app.url_map.strict_slashes = False
    _configure_logging(app)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("JWT_SECRET") or str(app.config["JWT_SECRET"]) in ("", "change-me"):
            raise RuntimeError("JWT_SECRET must be set to a strong value in production (not default).")

    init_db(app)
    init_mongo(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    prefix = app.config["API_PREFIX"]
    um = f"{prefix}/user-management"
    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix=f"{prefix}/auth")
    app.register_blueprint(organizations_bp, url_prefix=f"{um}/organizations")
    app.register_blueprint(departments_bp, url_prefix=f"{um}/departments")
    app.register_blueprint(groups_bp, url_prefix=f"{um}/groups")
    app.register_blueprint(locations_bp, url_prefix=f"{um}/locations")
    app.register_blueprint(roles_bp, url_prefix=f"{um}/roles")
    app.register_blueprint(users_bp, url_prefix=f"{um}/users")
    app.register_blueprint(statistics_bp, url_prefix=f"{um}/statistics")
    app.register_blueprint(projects_bp, url_prefix=f"{prefix}/projects")
    app.register_blueprint(tasks_bp, url_prefix=f"{prefix}/tasks")

    register_error_handlers(app)
    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.after_request
    def _log_request(response):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-ID"] = rid
        if request.path in ("/health", "/healthz"):
            return response
        started = getattr(g, "request_started", None)
        elapsed_ms = (time.perf_counter() - started) * 1000 if started else 0.0
        user = getattr(g, "current_user", None)
        app.logger.info(
            "%s %s -> %s (%.1fms user_id=%s request_id=%s)",
            request.method,
            request.path,
            response.status_code,
            elapsed_ms,
            user["_id"] if user else None,
            rid,
        )
        return response

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")
    return app
