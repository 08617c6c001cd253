"""
Environment-aware configuration.
Values come from the environment (a .env file is read if present); the
config class is chosen by APP_ENV (dev/prod/test).
"""
import os
from dotenv import load_dotenv
from datetime import timedelta

load_dotenv()  # Read .env if present

DEV_JWT_SECRET = "dev-secret-change-me"


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")  # Set a strong key in production
    DEBUG = False
    TESTING = False
    # CORS: in dev we usually allow '*', in prod supply a comma-separated list in env
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    APP_ENV = os.getenv("APP_ENV", "dev")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # token signing: HS* uses JWT_SECRET, RS*/ES* use the PEM key pair
    JWT_SECRET = os.getenv("JWT_SECRET", DEV_JWT_SECRET)
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_PRIVATE_KEY = os.getenv("JWT_PRIVATE_KEY")
    JWT_PUBLIC_KEY = os.getenv("JWT_PUBLIC_KEY")
    JWT_ISSUER = os.getenv("JWT_ISSUER", "token-authority")

    ACCESS_TOKEN_EXPIRES = timedelta(seconds=int(os.getenv("ACCESS_TOKEN_EXPIRES_SECONDS", "900")))
    REFRESH_TOKEN_EXPIRES = timedelta(seconds=int(os.getenv("REFRESH_TOKEN_EXPIRES_SECONDS", "604800")))
    AUTH_CODE_EXPIRES = timedelta(seconds=int(os.getenv("AUTH_CODE_EXPIRES_SECONDS", "600")))

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///token-authority.db")
    FAST_STORE = os.getenv("FAST_STORE", "redis")
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "0.5"))

    # Existing access tokens of a revoked client stay valid until expiry unless enabled
    REVOKE_ACCESS_TOKENS_ON_CLIENT_REVOCATION = _flag("REVOKE_ACCESS_TOKENS_ON_CLIENT_REVOCATION")

    RATE_LIMIT_ENABLED = _flag("RATE_LIMIT_ENABLED", "true")
    # fail_open: admit requests of that class when the fast store is down
    RATE_LIMITS = {
        "global": {"limit": 1000, "window_seconds": 3600, "fail_open": True},
        "auth": {"limit": 100, "window_seconds": 900, "fail_open": False},
        "token": {"limit": 50, "window_seconds": 3600, "fail_open": False},
        "verify": {"limit": 1000, "window_seconds": 3600, "fail_open": True},
        "revoke": {"limit": 100, "window_seconds": 3600, "fail_open": False},
        "management": {"limit": 200, "window_seconds": 3600, "fail_open": True},
    }


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    # In dev, propagate exceptions so our error handler has full context
    PROPAGATE_EXCEPTIONS = True
    FAST_STORE = os.getenv("FAST_STORE", "memory")


class TestingConfig(BaseConfig):
    TESTING = True
    DATABASE_URL = "sqlite://"
    FAST_STORE = "memory"
    JWT_SECRET = "test-secret-with-at-least-thirty-two-bytes"
    LOG_LEVEL = "WARNING"


class ProductionConfig(BaseConfig):
    DEBUG = False


def get_config(name: str | None):
    """
    Select config class.
    - If name is provided, choose by name.
    - Else choose based on APP_ENV (dev/prod/test).
    """
    if name:
        name = name.lower()
    env = (name or os.getenv("APP_ENV", "dev")).lower()
    if env in ["prod", "production"]:
        return ProductionConfig
    if env in ["test", "testing"]:
        return TestingConfig
    return DevelopmentConfig


def validate_config(config) -> None:
    """Refuse to run production with development signing material."""
    algorithm = config.get("JWT_ALGORITHM", "HS256")
    if algorithm.startswith("HS"):
        if not config.get("DEBUG") and not config.get("TESTING") and config.get("JWT_SECRET") == DEV_JWT_SECRET:
            raise RuntimeError("JWT_SECRET must be set to a strong secret outside development")
    elif not (config.get("JWT_PRIVATE_KEY") and config.get("JWT_PUBLIC_KEY")):
        raise RuntimeError(f"{algorithm} needs JWT_PRIVATE_KEY and JWT_PUBLIC_KEY")
