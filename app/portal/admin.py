from flask import Blueprint, flash, g, redirect, render_template, request, url_for
from sqlalchemy import update

from app.portal.audit import record_event
from app.portal.constants import ROLE_ADMIN, ROLE_USER
from app.portal.db import db_session
from app.portal.models import User
from app.portal.rbac import require_role

bp = Blueprint("admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _form_user_id() -> int | None:
    raw = (request.form.get("user_id") or "").strip()
    try:
        return int(raw)
    except ValueError:
        return None


def _set_role(role: str, action: str):
    u = _current_user()
    user_id = _form_user_id()
    if user_id is None:
        flash("Invalid user.", "danger")
        return redirect(url_for("admin.index"))
    if role != ROLE_ADMIN and user_id == u.id:
        flash("You cannot demote yourself.", "danger")
        return redirect(url_for("admin.index"))

    s = db_session()
    # Single-row conditional update; the store's row atomicity is all we need.
    result = s.execute(update(User).where(User.id == user_id).values(role=role))
    if not result.rowcount:
        s.rollback()
        flash("User not found.", "danger")
        return redirect(url_for("admin.index"))

    record_event(
        s,
        actor=u,
        action=action,
        entity_type="User",
        entity_id=str(user_id),
        metadata={"role": role},
    )
    s.commit()
    target = s.get(User, user_id)
    label = target.email if target else f"user {user_id}"
    flash(f"{label} is now {'an administrator' if role == ROLE_ADMIN else 'a regular user'}.", "success")
    return redirect(url_for("admin.index"))


@bp.get("/admin")
@require_role(ROLE_ADMIN)
def index():
    s = db_session()
    users = s.query(User).order_by(User.id.asc()).all()
    return render_template("admin/index.html", users=users, username=_current_user().name)


@bp.post("/promote")
@require_role(ROLE_ADMIN)
def promote():
    return _set_role(ROLE_ADMIN, "user.promote")


@bp.post("/demote")
@require_role(ROLE_ADMIN)
def demote():
    return _set_role(ROLE_USER, "user.demote")
