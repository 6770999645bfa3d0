import logging
import os

from flask import Flask, g, render_template, request
from dotenv import load_dotenv

from app.portal.config import load_config
from app.portal.db import check_connection, init_db, teardown_db_session
from app.portal.routes import bp as routes_bp
from app.portal.auth import bp as auth_bp, load_current_user
from app.portal.admin import bp as admin_bp
from app.portal.sessions import DatabaseSessionInterface


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.logger.setLevel(app.config["LOG_LEVEL"])
    app.session_interface = DatabaseSessionInterface()
    app.before_request(load_current_user)

    from app.portal.constants import ROLE_ADMIN
    from app.portal.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_globals() -> dict:
        user = getattr(g, "current_user", None)
        return {
            # Called from forms only, so pages without one never write to the session.
            "csrf_token": ensure_csrf_token,
            "current_user": user,
            "authenticated": user is not None,
            "is_admin": bool(user and user.role == ROLE_ADMIN),
        }

    @app.before_request
    def _csrf_guard():
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login/signup are reachable before any session exists.
            # Unrouted requests fall through to the 404/405 handlers.
            if request.endpoint is None or request.endpoint.startswith("auth."):
                return None
            if not validate_csrf(request):
                app.logger.warning("CSRF check failed path=%s request_id=%s", request.path, getattr(g, "request_id", None))
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("Database must be Postgres in production (set DATABASE_URL or DATABASE_HOST).")
        for key in ("SECRET_KEY", "SESSION_STORE_SECRET"):
            if str(app.config.get(key) or "") in ("", "change-me"):
                raise RuntimeError(f"{key} must be set to a strong value in production (not default).")

    init_db(app)
    check_connection(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)

    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        return render_template("errors/403.html", missing_role=getattr(g, "missing_role", None)), 403

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
