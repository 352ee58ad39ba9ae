"""Employee self-service routes: today's dashboard and clock actions."""

from __future__ import annotations

import json
from datetime import date, timedelta

from flask import Blueprint, Response, current_app, request, stream_with_context
from flask_login import current_user, login_required

from fichaje.dashboard import (
    ActionResult,
    DashboardController,
    app_timezone,
    controller_for_user,
    snapshot_to_dict,
)
from fichaje.location import RequestLocationProvider
from fichaje.models import ClockEventSource, ClockEventType, now_utc
from fichaje.reconciler import day_bounds_utc, local_day
from fichaje.reminders import DatabaseNotificationScheduler
from fichaje.store import EventStore


bp = Blueprint("employee", __name__)

LOCATION_FIELDS = ("latitude", "longitude", "location_error")
SOURCE_MAP = {"mobile": ClockEventSource.MOBILE, "web": ClockEventSource.WEB}
SUCCESS_MESSAGES = {
    ClockEventType.ENTRADA: "Fichaje de entrada registrado correctamente",
    ClockEventType.SALIDA: "Fichaje de salida registrado correctamente",
}
MAX_HISTORY_DAYS = 31


def _controller() -> DashboardController:
    return controller_for_user(current_user.id, current_app.config)


def _payload() -> dict[str, object]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _location_provider(data: dict[str, object]) -> RequestLocationProvider | None:
    if not any(key in data for key in LOCATION_FIELDS):
        return None
    return RequestLocationProvider(data, timeout_seconds=current_app.config["LOCATION_TIMEOUT_SECONDS"])


def _source(data: dict[str, object]) -> ClockEventSource:
    return SOURCE_MAP.get(str(data.get("device_type") or "mobile").lower(), ClockEventSource.MOBILE)


def _dashboard_payload(controller: DashboardController, snapshot) -> dict[str, object]:
    payload = snapshot_to_dict(snapshot, controller.tz)
    payload["location_timeout_ms"] = current_app.config["LOCATION_TIMEOUT_SECONDS"] * 1000
    return payload


def _action_response(controller: DashboardController, result: ActionResult):
    entry_type = result.event.entry_type
    body = {
        "message": SUCCESS_MESSAGES[entry_type],
        "event": result.event.to_dict(),
        "dashboard": _dashboard_payload(controller, result.snapshot),
        "location_warning": result.location_warning,
    }
    return body, 201


def _safe_iso_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


@bp.get("/me/today")
@login_required
def me_today():
    controller = _controller()
    snapshot = controller.refresh()
    return _dashboard_payload(controller, snapshot)


@bp.post("/me/clock-in")
@login_required
def clock_in():
    data = _payload()
    controller = _controller()
    result = controller.clock_in(_location_provider(data), source=_source(data))
    return _action_response(controller, result)


@bp.post("/me/clock-out")
@login_required
def clock_out():
    data = _payload()
    controller = _controller()
    result = controller.clock_out(_location_provider(data), source=_source(data))
    return _action_response(controller, result)


@bp.post("/me/anomaly/acknowledge")
@login_required
def acknowledge_anomaly():
    controller = _controller()
    snapshot = controller.acknowledge_anomaly()
    return _dashboard_payload(controller, snapshot)


@bp.get("/me/reminders")
@login_required
def me_reminders():
    pending = DatabaseNotificationScheduler(current_user.id).pending()
    return {"reminders": [item.to_dict() for item in pending]}


@bp.get("/me/events")
@login_required
def me_events():
    tz = app_timezone(current_app.config)
    today_local = local_day(now_utc(), tz)
    end_day = _safe_iso_date(request.args.get("date_to")) or today_local
    start_day = _safe_iso_date(request.args.get("date_from")) or end_day
    start_day, end_day = sorted((start_day, end_day))
    if (end_day - start_day).days >= MAX_HISTORY_DAYS:
        start_day = end_day - timedelta(days=MAX_HISTORY_DAYS - 1)

    start, _ = day_bounds_utc(start_day, tz)
    _, end = day_bounds_utc(end_day, tz)
    events = EventStore().query_range(current_user.id, start, end)
    return {
        "date_from": start_day.isoformat(),
        "date_to": end_day.isoformat(),
        "events": [item.to_dict() for item in events],
    }


def _sse(payload: dict[str, object]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


@bp.get("/me/stream")
@login_required
def me_stream():
    """Server-sent events: today's dashboard now and after every clock change of this user."""
    controller = _controller()
    subscription = EventStore().subscribe(controller.user_id)

    @stream_with_context
    def generate():
        try:
            yield _sse(_dashboard_payload(controller, controller.refresh()))
            for snapshot in controller.watch(subscription):
                yield _sse(_dashboard_payload(controller, snapshot))
        finally:
            subscription.close()

    response = Response(generate(), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    response.call_on_close(subscription.close)
    return response
