from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column in this app stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_safe_next(nxt: str) -> bool:
    """Only allow local paths as post-login redirects (no open redirects)."""
    return nxt.startswith("/") and not nxt.startswith("//") and "\\" not in nxt
