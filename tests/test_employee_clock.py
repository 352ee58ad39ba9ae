from __future__ import annotations

import json

from sqlalchemy import func, select

from fichaje.changes import change_feed
from fichaje.extensions import db
from fichaje.models import ClockEvent, ClockEventSource, ClockEventType
from fichaje.store import EventStore


def _event_count() -> int:
    return db.session.execute(select(func.count()).select_from(ClockEvent)).scalar_one()


def test_routes_require_login(client):
    for path in ("/me", "/me/today", "/me/reminders", "/me/events"):
        response = client.get(path)
        assert response.status_code == 401
        assert response.get_json()["error"] == "unauthorized"

    assert client.post("/me/clock-in").status_code == 401
    assert _event_count() == 0


def test_login_rejects_bad_credentials(client):
    response = client.post("/login", data={"email": "ana@example.com", "password": "wrong-password"})

    assert response.status_code == 401
    assert response.get_json()["message"] == "Credenciales incorrectas."


def test_login_rejects_invalid_form(client):
    response = client.post("/login", data={"email": "not-an-email", "password": "short"})

    assert response.status_code == 400
    assert set(response.get_json()["fields"]) == {"email", "password"}


def test_login_rejects_inactive_user(client, employee):
    employee.is_active = False
    db.session.commit()

    response = client.post("/login", data={"email": "ana@example.com", "password": "password123"})

    assert response.status_code == 403


def test_me_returns_profile(employee_client):
    response = employee_client.get("/me")

    assert response.status_code == 200
    assert response.get_json()["user"]["email"] == "ana@example.com"
    assert response.get_json()["user"]["role"] == "USER"


def test_index_points_to_landing_page(client, employee_client):
    assert employee_client.get("/").get_json()["landing_url"] == "/me/today"
    employee_client.post("/logout")
    assert client.get("/").get_json() == {"authenticated": False, "login_url": "/login"}


def test_today_starts_clocked_out(employee_client):
    response = employee_client.get("/me/today")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["state"] == "OUT"
    assert payload["shifts"] == []
    assert payload["anomaly"] is None
    assert payload["location_timeout_ms"] == 15000


def test_clock_in_then_out(employee_client):
    clock_in = employee_client.post(
        "/me/clock-in",
        json={"latitude": 41.6176, "longitude": 0.62, "accuracy": 8, "device_type": "mobile"},
    )

    assert clock_in.status_code == 201
    body = clock_in.get_json()
    assert body["message"] == "Fichaje de entrada registrado correctamente"
    assert body["event"]["entry_type"] == "entrada"
    assert body["event"]["location"]["latitude"] == 41.6176
    assert body["dashboard"]["state"] == "IN"
    assert body["location_warning"] is None

    duplicate = employee_client.post("/me/clock-in", json={})
    assert duplicate.status_code == 409
    assert duplicate.get_json()["error"] == "action_rejected"
    assert _event_count() == 1

    clock_out = employee_client.post("/me/clock-out", json={})
    assert clock_out.status_code == 201
    assert clock_out.get_json()["message"] == "Fichaje de salida registrado correctamente"
    assert clock_out.get_json()["dashboard"]["state"] == "OUT"
    assert employee_client.get("/me/reminders").get_json() == {"reminders": []}

    events = employee_client.get("/me/events").get_json()["events"]
    assert [item["entry_type"] for item in events] == ["entrada", "salida"]


def test_clock_out_without_clock_in_is_rejected(employee_client):
    response = employee_client.post("/me/clock-out", json={})

    assert response.status_code == 409
    assert _event_count() == 0


def test_permission_denied_blocks_clock_in(employee_client):
    response = employee_client.post("/me/clock-in", json={"location_error": "PERMISSION_DENIED", "platform": "web"})

    assert response.status_code == 400
    assert response.get_json()["error"] == "PERMISSION_DENIED"
    assert "Permiso de ubicación denegado" in response.get_json()["message"]
    assert _event_count() == 0


def test_unavailable_location_records_with_warning(employee_client):
    response = employee_client.post("/me/clock-in", data={"location_error": "LOCATION_UNAVAILABLE", "device_type": "web"})

    assert response.status_code == 201
    body = response.get_json()
    assert body["event"]["location"] is None
    assert body["event"]["source"] == ClockEventSource.WEB.value
    assert body["location_warning"].startswith("No se pudo obtener tu ubicación")
    assert _event_count() == 1


def test_acknowledge_without_anomaly_is_conflict(employee_client):
    response = employee_client.post("/me/anomaly/acknowledge")

    assert response.status_code == 409


def test_events_history_is_limited_to_own_user(employee_client, admin_user):
    db.session.add(ClockEvent(user_id=admin_user.id, entry_type=ClockEventType.ENTRADA))
    db.session.commit()

    response = employee_client.get("/me/events")

    assert response.status_code == 200
    assert response.get_json()["events"] == []


def _sse_payload(chunk: bytes) -> dict:
    text = chunk.decode("utf-8")
    assert text.startswith("data: ") and text.endswith("\n\n")
    return json.loads(text[len("data: "):])


def test_stream_pushes_dashboard_after_each_change(employee_client, employee):
    subscribers = change_feed.subscriber_count
    response = employee_client.get("/me/stream")
    assert response.status_code == 200
    assert response.mimetype == "text/event-stream"
    assert response.headers["Cache-Control"] == "no-cache"
    stream = iter(response.response)

    assert _sse_payload(next(stream))["state"] == "OUT"
    assert change_feed.subscriber_count == subscribers + 1

    EventStore().insert(employee.id, ClockEventType.ENTRADA)
    pushed = _sse_payload(next(stream))
    assert pushed["state"] == "IN"
    assert pushed["is_currently_clocked_in"] is True

    response.close()
    assert change_feed.subscriber_count == subscribers
