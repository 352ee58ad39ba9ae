"""Authentication routes for the mobile client."""

from __future__ import annotations

from flask import Blueprint, current_app
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy import select

from fichaje.extensions import db
from fichaje.forms import LoginForm
from fichaje.models import User
from fichaje.security import normalize_email, verify_password


bp = Blueprint("auth", __name__)


def profile_payload(user: User) -> dict[str, object]:
    return {
        "id": str(user.id),
        "email": user.email,
        "full_name": user.display_name,
        "role": user.role.value,
    }


@bp.post("/login")
def login():
    form = LoginForm()
    if not form.validate_on_submit():
        return {"error": "invalid_form", "message": "Email o contraseña no válidos.", "fields": form.errors}, 400

    stmt = select(User).where(User.email == normalize_email(form.email.data))
    user = db.session.execute(stmt).scalar_one_or_none()
    if user is None or not verify_password(user.password_hash, form.password.data):
        current_app.logger.info("Failed login for %s", normalize_email(form.email.data))
        return {"error": "invalid_credentials", "message": "Credenciales incorrectas."}, 401

    if not user.is_active:
        return {"error": "inactive_user", "message": "El usuario está desactivado."}, 403

    login_user(user, remember=form.remember.data)
    return {"user": profile_payload(user)}


@bp.post("/logout")
@login_required
def logout():
    logout_user()
    return {"status": "signed_out"}


@bp.get("/me")
@login_required
def me():
    return {"user": profile_payload(current_user)}
