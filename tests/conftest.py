from __future__ import annotations

from typing import Iterator
import uuid

import pytest
from sqlalchemy.pool import StaticPool

from fichaje import create_app
from fichaje.config import Config
from fichaje.extensions import db
from fichaje.models import User, UserRole
from fichaje.security import hash_password


class TestConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = "sqlite+pysqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {"check_same_thread": False},
        "poolclass": StaticPool,
    }
    APP_TIMEZONE = "Europe/Madrid"
    REMINDER_TIME = "18:15"
    AUTO_CORRECT_FORGOTTEN_SHIFTS = True
    RESEND_API_KEY = ""


@pytest.fixture()
def app() -> Iterator:
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()

        employee = User(
            id=uuid.uuid4(),
            email="ana@example.com",
            full_name="Ana Pérez",
            password_hash=hash_password("password123"),
            role=UserRole.USER,
            is_active=True,
        )
        admin = User(
            id=uuid.uuid4(),
            email="admin@example.com",
            full_name="Admin Palacín",
            password_hash=hash_password("password123"),
            role=UserRole.ADMIN,
            is_active=True,
        )
        db.session.add_all([employee, admin])
        db.session.commit()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def employee(app) -> User:
    return db.session.query(User).filter_by(email="ana@example.com").one()


@pytest.fixture()
def admin_user(app) -> User:
    return db.session.query(User).filter_by(email="admin@example.com").one()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def employee_client(client):
    response = client.post("/login", data={"email": "ana@example.com", "password": "password123"})
    assert response.status_code == 200
    return client


@pytest.fixture()
def admin_client(app):
    client = app.test_client()
    response = client.post("/login", data={"email": "admin@example.com", "password": "password123"})
    assert response.status_code == 200
    return client
