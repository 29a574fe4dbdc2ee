import logging
from datetime import timedelta

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv

from app.crm.config import load_config
from app.crm.db import init_db, teardown_db_session
from app.crm.errors import CrmError
from app.crm.routes import bp as routes_bp
from app.crm.auth import bp as auth_bp, load_current_user
from app.crm.modules.accounts.admin import bp as accounts_bp
from app.crm.modules.affiliations.admin import bp as affiliations_bp
from app.crm.modules.analytics.admin import bp as analytics_bp
from app.crm.modules.customers.admin import bp as customers_bp
from app.crm.modules.exports.admin import bp as exports_bp

_UNAUTHENTICATED_PATHS = ("/static/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=app.config["SESSION_LIFETIME_DAYS"])
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    # Customer names and labels are Chinese; keep them readable in JSON.
    app.json.ensure_ascii = False
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # CSRF protection (minimal)
    from app.crm.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNAUTHENTICATED_PATHS):
            return None
        if not app.config.get("CSRF_ENABLED"):
            return None
        ensure_csrf_token()
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login/register/logout are reachable before a token exists.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "csrf", "message": "CSRF token missing or invalid."}), 400
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

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(customers_bp)
    app.register_blueprint(affiliations_bp)
    app.register_blueprint(analytics_bp, url_prefix="/api")
    app.register_blueprint(accounts_bp, url_prefix="/admin")
    app.register_blueprint(exports_bp, url_prefix="/exports")

    def _load_user_wrapper():
        if request.path.startswith(_UNAUTHENTICATED_PATHS):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(CrmError)
    def _crm_error(e: CrmError):
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        app.logger.warning(
            "%s on %s %s: %s (request_id=%s)",
            type(e).__name__,
            request.method,
            request.path,
            e.message,
            getattr(g, "request_id", None),
        )
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return jsonify({"error": "not_found", "message": "Not found"}), 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return jsonify({"error": "method_not_allowed", "message": "Method not allowed"}), 405

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return jsonify({"error": "internal", "message": "Internal server error", "request_id": rid}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
