from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, current_app, flash, g, redirect, request, url_for

from app.portal.models import User


def user_has_role(user: User | None, role: str) -> bool:
    if not user:
        return False
    return user.role == role


def _login_redirect():
    flash("Please login", "warning")
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    # Only GETs are worth returning to after login.
    if request.method != "GET":
        nxt = None
    return redirect(url_for("auth.login_get", next=nxt))


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not getattr(g, "current_user", None):
            return _login_redirect()
        return fn(*args, **kwargs)

    return wrapped


def require_role(role: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> redirect to login
            if not user:
                return _login_redirect()
            # Authenticated but wrong role -> 403
            if not user_has_role(user, role):
                g.missing_role = role
                current_app.logger.warning(
                    "Forbidden: user_id=%s lacks role=%s path=%s", user.id, role, request.path
                )
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
