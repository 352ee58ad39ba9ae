"""Flask extension instances and shared listeners."""

from __future__ import annotations

import uuid

from flask import jsonify
from flask_login import LoginManager
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect


db = SQLAlchemy()
login_manager = LoginManager()
csrf = CSRFProtect()


@login_manager.unauthorized_handler
def handle_unauthorized():
    return jsonify({"error": "unauthorized", "message": "Debes iniciar sesión."}), 401


@login_manager.user_loader
def load_user(user_id: str):
    from fichaje.models import User

    try:
        parsed = uuid.UUID(user_id)
    except ValueError:
        return None
    return db.session.get(User, parsed)
