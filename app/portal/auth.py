from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.portal.audit import record_event
from app.portal.constants import (
    LOGIN_RATE_LIMIT,
    LOGIN_RATE_WINDOW,
    ROLE_USER,
    SESSION_AUTHENTICATED,
    SESSION_USER_ID,
    SESSION_USERNAME,
)
from app.portal.db import db_session
from app.portal.models import User
from app.portal.security import hash_password, verify_password
from app.portal.utils import is_safe_next, utcnow
from app.portal.validation import is_valid_email, normalize_email, validate_signup

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)


def _check_rate_limit(ip: str) -> bool:
    cutoff = utcnow() - timedelta(seconds=LOGIN_RATE_WINDOW)
    recent = [t for t in _login_attempts.get(ip, ()) if t > cutoff]
    if recent:
        _login_attempts[ip] = recent
    else:
        _login_attempts.pop(ip, None)
    return len(recent) >= LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(utcnow())


def start_authenticated_session(user: User) -> None:
    # New id on every login so a cookie issued before it cannot ride along.
    session.regenerate()
    # The flag and the user reference are always written together.
    session[SESSION_AUTHENTICATED] = True
    session[SESSION_USER_ID] = user.id
    session[SESSION_USERNAME] = user.name


def drop_authentication() -> None:
    for key in (SESSION_AUTHENTICATED, SESSION_USER_ID, SESSION_USERNAME):
        session.pop(key, None)


def load_current_user() -> None:
    """
    Loads g.current_user from the server-side session.
    The role is read from the database each time, so promotions apply to open sessions.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user_id = session.get(SESSION_USER_ID)
    if not session.get(SESSION_AUTHENTICATED) or not user_id:
        if SESSION_AUTHENTICATED in session or SESSION_USER_ID in session:
            drop_authentication()
        return

    try:
        user = db_session().get(User, int(user_id))
    except (SQLAlchemyError, TypeError, ValueError) as e:
        current_app.logger.error("load_current_user failed (treating as anonymous): %s", e)
        return
    if user is None:
        drop_authentication()
        return
    g.current_user = user


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = normalize_email(request.form.get("email"))
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    if not is_valid_email(email):
        flash("Invalid input", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if user is None:
        flash("User not found", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    if not verify_password(user.password_hash, password):
        current_app.logger.info("Login failed (user_id=%s request_id=%s)", user.id, g.request_id)
        record_event(s, actor=None, action="auth.login_failed", entity_type="User", entity_id=str(user.id))
        s.commit()
        flash("Incorrect password", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    start_authenticated_session(user)
    _login_attempts.pop(ip, None)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    if is_safe_next(nxt):
        return redirect(nxt)
    return redirect(url_for("routes.members"))


@bp.get("/signup")
def signup_get():
    return render_template("auth/signup.html")


@bp.post("/signup")
def signup_post():
    form, errors = validate_signup(request.form)
    if form is None:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("auth.signup_get"))

    s = db_session()
    if s.query(User.id).filter(User.email == form.email).first() is not None:
        flash("An account with this email already exists.", "danger")
        return redirect(url_for("auth.signup_get"))

    user = User(
        name=form.name,
        email=form.email,
        password_hash=hash_password(form.password),
        role=ROLE_USER,
    )
    s.add(user)
    try:
        s.flush()
    except IntegrityError:
        # Lost a race with a concurrent signup for the same email.
        s.rollback()
        flash("An account with this email already exists.", "danger")
        return redirect(url_for("auth.signup_get"))

    record_event(s, actor=user, action="auth.signup", entity_type="User", entity_id=str(user.id))
    s.commit()
    start_authenticated_session(user)
    current_app.logger.info("User signed up (user_id=%s request_id=%s)", user.id, g.request_id)
    return redirect(url_for("routes.members"))


@bp.get("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    # Emptying the session makes the session store delete the row and the cookie.
    session.clear()
    return redirect(url_for("routes.index"))
