import os
from dataclasses import dataclass

from sqlalchemy.engine import URL


@dataclass(frozen=True)
class Settings:
    secret_key: str
    session_store_secret: str
    session_ttl_seconds: int
    env: str
    log_level: str

    database_url: str
    database_user: str
    database_password: str
    database_host: str
    database_name: str
    database_driver: str
    database_connect_timeout: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from e


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        session_store_secret=_getenv("SESSION_STORE_SECRET", "change-me"),
        session_ttl_seconds=_getint("SESSION_TTL_SECONDS", 60),
        env=_getenv("ENV", "development").lower(),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        database_url=_getenv("DATABASE_URL"),
        database_user=_getenv("DATABASE_USER"),
        database_password=os.environ.get("DATABASE_PASSWORD") or "",
        database_host=_getenv("DATABASE_HOST"),
        database_name=_getenv("DATABASE_NAME"),
        database_driver=_getenv("DATABASE_DRIVER", "postgresql+psycopg"),
        database_connect_timeout=_getint("DATABASE_CONNECT_TIMEOUT", 2),
    )


def build_database_url(s: Settings) -> str:
    """
    DATABASE_URL wins. Otherwise assemble one from the DATABASE_* parts
    (credentials are escaped by SQLAlchemy), falling back to a local SQLite file.
    """
    if s.database_url:
        return s.database_url
    if not s.database_host:
        return "sqlite:///portal.db"
    host, _, port = s.database_host.partition(":")
    url = URL.create(
        s.database_driver,
        username=s.database_user or None,
        password=s.database_password or None,
        host=host,
        port=int(port) if port else None,
        database=s.database_name or None,
    )
    return url.render_as_string(hide_password=False)


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "SESSION_STORE_SECRET": s.session_store_secret,
        "SESSION_TTL_SECONDS": s.session_ttl_seconds,
        "ENV": s.env,
        "LOG_LEVEL": s.log_level,
        "DATABASE_URL": build_database_url(s),
        "DATABASE_CONNECT_TIMEOUT": s.database_connect_timeout,
        # security defaults
        "SESSION_COOKIE_NAME": "portal_session",
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "SESSION_REFRESH_EACH_REQUEST": True,
    }
