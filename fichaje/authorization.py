"""Role checks for the admin routes."""

from __future__ import annotations

import functools
from typing import Callable

from flask import abort
from flask_login import current_user

from fichaje.models import UserRole


def can_review_entries(role: UserRole) -> bool:
    return role == UserRole.ADMIN


def admin_required(view: Callable):
    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated or not can_review_entries(current_user.role):
            abort(403, description="Insufficient permissions: review_entries.")
        return view(*args, **kwargs)

    return wrapped
