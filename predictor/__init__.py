import logging
import os

import redis
from flask import Flask, jsonify, request
from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

from config import config

logger = logging.getLogger(__name__)

db = SQLAlchemy()
cache = Cache()
migrate = Migrate()


def get_real_ip():
    """
    Get the real client IP address, accounting for reverse proxies.
    Checks X-Forwarded-For, X-Real-IP, and falls back to remote_addr.
    """
    if request.headers.get("X-Forwarded-For"):
        return request.headers.get("X-Forwarded-For").split(",")[0].strip()
    if request.headers.get("X-Real-IP"):
        return request.headers.get("X-Real-IP")
    return get_remote_address()


# Use Redis for shared rate limiting across workers when it is reachable
limiter_storage_uri = "memory://"
redis_url = os.environ.get("REDIS_URL") or os.environ.get("CACHE_REDIS_URL")
if redis_url and os.environ.get("FLASK_CONFIG") != "testing":
    try:
        redis_client = redis.Redis.from_url(redis_url)
        redis_client.ping()
        limiter_storage_uri = redis_url
    except redis.exceptions.ConnectionError as e:
        logger.warning(f"Redis not available for rate limiter, using memory storage: {e}")

limiter = Limiter(
    key_func=get_real_ip,
    default_limits=["10000 per day", "1000 per hour"],
    storage_uri=limiter_storage_uri,
)


def create_app(config_name=None):
    app = Flask(__name__)

    if config_name is None:
        config_name = os.environ.get("FLASK_CONFIG", "default")

    app.config.from_object(config[config_name]())

    # Initialize extensions
    db.init_app(app)
    cache.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # Leaderboard engine: cache tiers, lock and services live on app.extensions
    from predictor.services import init_app as init_services

    init_services(app)

    from predictor.routes.api import bp as api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    register_error_handlers(app)

    from predictor.utils.logging_config import setup_logging

    setup_logging(app)

    show_config_warnings(app)

    with app.app_context():
        db.create_all()

    if not app.config.get("TESTING", False):
        from predictor.services.scheduler_service import scheduler_service

        scheduler_service.init_app(app)

    return app


def show_config_warnings(app):
    """Log configuration status"""
    config_name = os.environ.get("FLASK_CONFIG", "default")

    logger.info(f"Score Predictor starting with '{config_name}' configuration")

    if config_name == "production" and app.config.get("DEBUG"):
        logger.warning("DEBUG mode is enabled in production!")

    db_url = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if "sqlite" in db_url:
        if "memory" in db_url:
            logger.info("Using SQLite database (in-memory)")
        else:
            logger.info("Using SQLite database (app.db file)")
    elif "postgresql" in db_url:
        logger.info("Using PostgreSQL database")
    else:
        logger.info(
            f"Using database: {db_url.split('://')[0] if '://' in db_url else 'Unknown'}"
        )

    logger.info(f"Shared cache backend: {app.config.get('CACHE_TYPE')}")


def register_error_handlers(app):
    """Register global JSON error handlers"""

    @app.after_request
    def after_request(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if not app.config.get("DEBUG"):
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({"error": "Resource not found"}), 404

    @app.errorhandler(400)
    def bad_request_error(error):
        app.logger.warning(
            f"400 Bad Request: {str(error)} - Path: {request.path} - Method: {request.method}"
        )
        return jsonify({"error": "Bad request"}), 400

    @app.errorhandler(429)
    def too_many_requests_error(error):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500


from predictor import models  # noqa: F401, E402 - imported for model registration
