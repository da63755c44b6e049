import logging
import os

from flask import Flask, jsonify, request
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

from .services.export import ExportError


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        logging.warning("invalid %s=%r; using %s", name, os.getenv(name), default)
        return default


def create_app():
    app = Flask(__name__, template_folder="templates")
    app.secret_key = os.getenv("SECRET_KEY", "dev")
    app.config["PREFERRED_URL_SCHEME"] = "https"

    DB_USER = os.getenv("DB_USER", "certcat")
    DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
    DB_HOST = os.getenv("DB_HOST", "db")
    DB_NAME = os.getenv("DB_NAME", "certcat")
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}/{DB_NAME}",
    )

    app.config["SQLALCHEMY_DATABASE_URI"] = DATABASE_URL
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["MAX_CONTENT_LENGTH"] = 25 * 1024 * 1024

    site_root = os.getenv("SITE_ROOT", "/srv")
    app.config["SITE_ROOT"] = site_root
    app.config["FONT_CACHE_DIR"] = os.getenv(
        "FONT_CACHE_DIR", os.path.join(site_root, "fonts")
    )
    app.config["APP_BASE_URL"] = os.getenv("APP_BASE_URL", "http://localhost:5000").rstrip("/")
    app.config["EMAIL_DAILY_LIMIT"] = int(_float_env("EMAIL_DAILY_LIMIT", 500))
    app.config["EMAIL_SEND_DELAY"] = _float_env("EMAIL_SEND_DELAY", 0.2)
    app.config["FONT_READY_TIMEOUT"] = _float_env("FONT_READY_TIMEOUT", 3.0)
    app.config["FETCH_TIMEOUT"] = _float_env("FETCH_TIMEOUT", 10)
    app.config["ADMIN_EMAILS"] = {
        e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()
    }

    db.init_app(app)

    from . import models  # noqa: F401  registers tables on db.metadata

    @app.get("/health")
    def health():  # pragma: no cover - simple healthcheck
        return "OK", 200

    @app.errorhandler(ValueError)
    def bad_request(exc):
        current = request.path or ""
        app.logger.info("[BAD-REQUEST] path=%s error=%s", current, exc)
        return jsonify({"success": False, "error": str(exc)}), 400

    @app.errorhandler(ExportError)
    def export_failed(exc):
        return jsonify({"success": False, "error": str(exc), "retryable": True}), 500

    from .routes.templates import bp as templates_bp
    from .routes.generate import bp as generate_bp
    from .routes.verify import bp as verify_bp
    from .routes.admin import bp as admin_bp
    from .routes.status import bp as status_bp

    app.register_blueprint(templates_bp)
    app.register_blueprint(generate_bp)
    app.register_blueprint(verify_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(status_bp)

    return app
