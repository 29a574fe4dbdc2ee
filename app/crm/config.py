import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str
    csrf_enabled: bool
    session_lifetime_days: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name, "1" if default else "0").lower()
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///crm.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        csrf_enabled=_getenv_bool("CSRF_ENABLED", True),
        session_lifetime_days=int(_getenv("SESSION_LIFETIME_DAYS", "30")),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "CSRF_ENABLED": s.csrf_enabled,
        "SESSION_LIFETIME_DAYS": s.session_lifetime_days,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
    }
