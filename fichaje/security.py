"""Password hashing and credential helpers."""

from __future__ import annotations

from werkzeug.security import check_password_hash, generate_password_hash


MIN_PASSWORD_LENGTH = 8


def normalize_email(raw_email: str | None) -> str:
    return (raw_email or "").strip().lower()


def hash_password(raw_password: str) -> str:
    if len(raw_password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"password must contain at least {MIN_PASSWORD_LENGTH} characters")
    return generate_password_hash(raw_password, method="pbkdf2:sha256", salt_length=16)


def verify_password(password_hash: str, raw_password: str) -> bool:
    if not password_hash or not raw_password:
        return False
    return check_password_hash(password_hash, raw_password)
