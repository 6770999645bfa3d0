import random

from flask import Blueprint, g, render_template

from app.portal.constants import MEMBER_NAMES
from app.portal.rbac import require_login

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return render_template("public/index.html")


@bp.get("/members")
@require_login
def members():
    return render_template("members.html", name=random.choice(MEMBER_NAMES), username=g.current_user.name)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """Fast liveness check for the container orchestrator. No DB access."""
    return "ok", 200
