from __future__ import annotations

import pytest

from fichaje.authorization import can_review_entries
from fichaje.models import UserRole
from fichaje.security import hash_password, normalize_email, verify_password


def test_hash_password_rejects_short_passwords():
    with pytest.raises(ValueError):
        hash_password("short")


def test_verify_password_round_trip():
    password_hash = hash_password("nueva-password-123")

    assert password_hash.startswith("pbkdf2:sha256")
    assert verify_password(password_hash, "nueva-password-123") is True
    assert verify_password(password_hash, "incorrecta123") is False
    assert verify_password(password_hash, "") is False


def test_normalize_email():
    assert normalize_email("  Ana@Example.COM ") == "ana@example.com"
    assert normalize_email(None) == ""


def test_only_admins_review_entries():
    assert can_review_entries(UserRole.ADMIN) is True
    assert can_review_entries(UserRole.USER) is False


def test_login_is_case_insensitive(client):
    response = client.post("/login", data={"email": "ANA@example.com", "password": "password123"})

    assert response.status_code == 200
    assert response.get_json()["user"]["full_name"] == "Ana Pérez"
