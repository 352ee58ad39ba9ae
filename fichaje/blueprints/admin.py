"""Admin routes: review and export clock events."""

from __future__ import annotations

import uuid
from calendar import monthrange
from datetime import date
from urllib.parse import quote

from flask import Blueprint, Response, abort, current_app, request
from flask_login import login_required
from sqlalchemy import select

from fichaje.authorization import admin_required
from fichaje.dashboard import app_timezone
from fichaje.extensions import db
from fichaje.forms import MonthlyExportForm
from fichaje.models import User, now_utc
from fichaje.reconciler import day_bounds_utc, local_day
from fichaje.report_export import (
    MONTHLY_REPORT_HEADERS,
    entry_payload,
    entry_rows,
    monthly_report_filename,
    to_csv_bytes,
)
from fichaje.store import EventStore


bp = Blueprint("admin", __name__, url_prefix="/admin")


def _safe_iso_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _safe_uuid(value: str | None) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        abort(400, description="Invalid user_id.")


@bp.get("/users")
@login_required
@admin_required
def list_users():
    users = db.session.execute(select(User).order_by(User.full_name.asc(), User.email.asc())).scalars().all()
    return {
        "users": [
            {
                "id": str(user.id),
                "full_name": user.display_name,
                "email": user.email,
                "role": user.role.value,
                "is_active": user.is_active,
            }
            for user in users
        ]
    }


@bp.get("/entries")
@login_required
@admin_required
def list_entries():
    tz = app_timezone(current_app.config)
    today_local = local_day(now_utc(), tz)
    start_day = _safe_iso_date(request.args.get("date_from")) or today_local
    end_day = _safe_iso_date(request.args.get("date_to")) or start_day
    start_day, end_day = sorted((start_day, end_day))
    user_id = _safe_uuid(request.args.get("user_id"))

    start, _ = day_bounds_utc(start_day, tz)
    _, end = day_bounds_utc(end_day, tz)
    rows = EventStore().query_range_with_users(user_id, start, end)
    return {
        "date_from": start_day.isoformat(),
        "date_to": end_day.isoformat(),
        "entries": [entry_payload(clock_event, user, tz) for clock_event, user in rows],
    }


@bp.get("/entries/export.csv")
@login_required
@admin_required
def export_entries():
    form = MonthlyExportForm(request.args)
    if not form.validate():
        return {"error": "invalid_form", "message": "Selecciona empleado, mes y año.", "fields": form.errors}, 400

    user_id = _safe_uuid(form.user_id.data)
    user = db.session.get(User, user_id)
    if user is None:
        abort(404, description="User not found.")

    tz = app_timezone(current_app.config)
    year, month = form.year.data, form.month.data
    start, _ = day_bounds_utc(date(year, month, 1), tz)
    _, end = day_bounds_utc(date(year, month, monthrange(year, month)[1]), tz)
    rows = EventStore().query_range_with_users(user.id, start, end)
    current_app.logger.info("Exporting %d entries for %s (%04d-%02d)", len(rows), user.email, year, month)

    payload = to_csv_bytes(MONTHLY_REPORT_HEADERS, entry_rows(rows, tz), separator=form.separator.data or ";")
    filename = monthly_report_filename(user.full_name, year, month)
    return Response(
        payload,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )
