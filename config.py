import os
import warnings

import redis
from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, ".env"))


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY") or "dev-only-secret"

    # Database configuration
    def __init__(self):
        """Initialize configuration with dynamic database URI"""
        self.SQLALCHEMY_DATABASE_URI = self._build_database_uri()

    def _build_database_uri(self):
        """Build database URI from environment variables"""
        database_url = os.environ.get("DATABASE_URL")

        if database_url:
            return database_url

        db_type = os.environ.get("DB_TYPE", "sqlite")

        if db_type.lower() == "postgresql":
            db_host = os.environ.get("DB_HOST") or "localhost"
            db_port = os.environ.get("DB_PORT") or "5432"
            db_name = os.environ.get("DB_NAME") or "predictor_db"
            db_user = os.environ.get("DB_USER") or "predictor"
            db_password = os.environ.get("DB_PASSWORD") or "predictor_password"

            return f"postgresql+psycopg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"
        else:
            # Default to SQLite for development
            return "sqlite:///" + os.path.join(basedir, "app.db")

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shared cache tier (also holds recalculation locks)
    CACHE_TYPE = os.environ.get("CACHE_TYPE", "RedisCache")
    CACHE_DEFAULT_TIMEOUT = int(os.environ.get("CACHE_DEFAULT_TIMEOUT", 300))
    CACHE_REDIS_URL = os.environ.get("CACHE_REDIS_URL", "redis://localhost:6379/0")
    CACHE_KEY_PREFIX = "predictor:"

    # Leaderboard engine tuning (seconds)
    LEADERBOARD_LOCAL_TTL = int(os.environ.get("LEADERBOARD_LOCAL_TTL", 300))
    LEADERBOARD_SHARED_TTL = int(os.environ.get("LEADERBOARD_SHARED_TTL", 6 * 3600))
    LEADERBOARD_META_TTL = int(os.environ.get("LEADERBOARD_META_TTL", 6 * 3600))
    LEADERBOARD_STALE_AFTER = int(os.environ.get("LEADERBOARD_STALE_AFTER", 300))
    LEADERBOARD_LOCK_TTL = int(os.environ.get("LEADERBOARD_LOCK_TTL", 120))
    INTEGRITY_THRESHOLD = int(os.environ.get("INTEGRITY_THRESHOLD", 0))
    REPAIR_LOOKBACK_DAYS = int(os.environ.get("REPAIR_LOOKBACK_DAYS", 7))

    # Scheduler configuration
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "True").lower() == "true"
    # Only the scheduler and CLI read this; the engine always takes an explicit season
    CURRENT_SEASON = os.environ.get("CURRENT_SEASON", "2025-26")

    # Logging configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_TO_CONSOLE = os.environ.get("LOG_TO_CONSOLE", "True").lower() == "true"
    LOG_TO_FILE = os.environ.get("LOG_TO_FILE", "True").lower() == "true"
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    SLOW_FUNCTION_THRESHOLD = float(os.environ.get("SLOW_FUNCTION_THRESHOLD", "1.0"))

    # Display timezone for kickoff times in API responses
    TIMEZONE = os.environ.get("TIMEZONE", "UTC")

    # Environment detection
    FLASK_ENV = os.environ.get("FLASK_ENV", "development")
    DEBUG = FLASK_ENV == "development"
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration with helpful defaults"""

    DEBUG = True
    SQLALCHEMY_ECHO = os.environ.get("SQLALCHEMY_ECHO", "False").lower() == "true"

    def __init__(self):
        super().__init__()
        # Fallback to SimpleCache if Redis isn't available in development
        try:
            redis_client = redis.Redis.from_url(self.CACHE_REDIS_URL)
            redis_client.ping()
        except redis.exceptions.ConnectionError:
            self.CACHE_TYPE = "SimpleCache"
            warnings.warn(
                "Redis not available, falling back to SimpleCache for development. "
                "Recalculation locks will only be exclusive within this process.",
                UserWarning,
            )


class ProductionConfig(Config):
    """Production configuration"""

    DEBUG = False

    def __init__(self):
        super().__init__()

        if not os.environ.get("SECRET_KEY"):
            warnings.warn(
                "PRODUCTION WARNING: SECRET_KEY not explicitly set!",
                UserWarning,
            )
        if self.CACHE_TYPE != "RedisCache":
            warnings.warn(
                "PRODUCTION WARNING: shared cache is not Redis; recalculation "
                "locks do not span processes.",
                UserWarning,
            )


class TestingConfig(Config):
    """Testing configuration"""

    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    CACHE_TYPE = "SimpleCache"
    SCHEDULER_ENABLED = False
    LOG_TO_FILE = False
    LOG_TO_CONSOLE = False
    RATELIMIT_ENABLED = False

    def __init__(self):
        # Keep the in-memory URI instead of building one from the environment
        pass


# Configuration mapping
config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
