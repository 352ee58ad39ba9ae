"""General routes."""

from __future__ import annotations

from flask import Blueprint, url_for
from flask_login import current_user


bp = Blueprint("main", __name__)


@bp.get("/")
def index():
    if not current_user.is_authenticated:
        return {"authenticated": False, "login_url": url_for("auth.login")}
    landing = "admin.list_entries" if current_user.is_admin else "employee.me_today"
    return {"authenticated": True, "landing_url": url_for(landing)}


@bp.get("/health")
def health():
    return {"status": "ok"}, 200
