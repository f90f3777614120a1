import os
from flask import Flask, jsonify

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=False)


from .config import get_config
from .extensions import db, migrate, csrf, login_manager, limiter, mail
from .security import init_security
from .observability import init_logging, init_request_logging, init_sentry


def _error(message: str, code: int, headers=None):
    body = {"ok": False, "error": message, "code": code}
    if headers:
        return jsonify(body), code, headers
    return jsonify(body), code


def create_app(config_object=None):
    app = Flask(__name__)

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    app.config.from_object(config_object or get_config())

    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        _require("SECRET_KEY")
        _require("DATABASE_URL")

    init_logging(app)
    init_sentry(app)
    init_request_logging(app)

    # HTTPS, HSTS & CSP only in staging/production
    if app_env in ("staging", "production"):
        init_security(app)

    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)
    mail.init_app(app)

    # registers the user_loader
    from . import models  # noqa: F401

    from .blueprints.main import bp as main_bp
    from .blueprints.auth import bp as auth_bp
    from .blueprints.orgs import bp as orgs_bp
    from .blueprints.users import bp as users_bp
    from .blueprints.profile import bp as profile_bp
    from .blueprints.assessments import bp as assessments_bp
    from .blueprints.support import bp as support_bp
    from .blueprints.dashboard import bp as dashboard_bp

    app.register_blueprint(main_bp)                         # "/healthz", "/readyz"
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(orgs_bp, url_prefix="/orgs")
    app.register_blueprint(users_bp, url_prefix="/users")
    app.register_blueprint(profile_bp, url_prefix="/profile")
    app.register_blueprint(assessments_bp, url_prefix="/assessments")
    app.register_blueprint(support_bp, url_prefix="/support")
    app.register_blueprint(dashboard_bp, url_prefix="/dash")

    _register_error_handlers(app)

    from .cli import register_cli
    register_cli(app)

    return app


def _register_error_handlers(app):
    from flask_wtf.csrf import CSRFError
    from .services.errors import ServiceError

    @app.errorhandler(ServiceError)
    def handle_service_error(e):
        if e.status_code >= 500:
            app.logger.error("service_error", extra={"event": "service_error"}, exc_info=e)
        return _error(e.message, e.status_code)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return _error(f"CSRF validation failed: {e.description}", 400)

    @app.errorhandler(400)
    def bad_request(e):
        return _error("bad_request", 400)

    @app.errorhandler(401)
    def unauthorized(e):
        return _error("unauthorized", 401)

    @app.errorhandler(403)
    def forbidden(e):
        return _error("forbidden", 403)

    @app.errorhandler(404)
    def not_found(e):
        return _error("not_found", 404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return _error("method_not_allowed", 405)

    @app.errorhandler(413)
    def too_large(e):
        return _error("File is too large.", 413)

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
        return _error("rate_limited", 429, headers)

    @app.errorhandler(500)
    def server_error(e):
        return _error("Internal Server Error", 500)
