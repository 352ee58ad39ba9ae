"""Daily check that emails employees still clocked in.

Invoked by an external periodic task through ``flask check-missing-clockouts``.
The result mirrors what the task expects back:
``{"success", "usersNotified", "emailsSent", "results"}``.
"""

from __future__ import annotations

import html
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from zoneinfo import ZoneInfo

import requests

from fichaje.models import ClockEvent, User, as_utc, now_utc
from fichaje.reconciler import day_bounds_utc, local_day, reconcile
from fichaje.store import EventStore


logger = logging.getLogger(__name__)

REMINDER_SUBJECT = "⏰ Recordatorio: No has fichado tu salida"
NOTHING_PENDING_MESSAGE = "No hay usuarios pendientes de fichar salida"


@dataclass(frozen=True)
class PendingClockOut:
    user_id: str
    email: str
    name: str
    entry_time: str


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    html: str


class Mailer(Protocol):
    def send(self, message: MailMessage) -> dict[str, Any]: ...


class ResendMailer:
    def __init__(self, api_key: str, sender: str, api_url: str, timeout: int = 15) -> None:
        if not api_key:
            raise ValueError("RESEND_API_KEY no configurado")
        self.api_key = api_key
        self.sender = sender
        self.api_url = api_url
        self.timeout = timeout

    def send(self, message: MailMessage) -> dict[str, Any]:
        response = requests.post(
            self.api_url,
            json={"from": self.sender, "to": [message.to], "subject": message.subject, "html": message.html},
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text[:500]}
        return {"email": message.to, "success": response.ok, "result": body}


def find_pending_clockouts(
    rows: list[tuple[ClockEvent, User]],
    now: datetime,
    tz: ZoneInfo,
) -> list[PendingClockOut]:
    events_by_user: dict[Any, list[ClockEvent]] = defaultdict(list)
    users: dict[Any, User] = {}
    for clock_event, user in rows:
        events_by_user[user.id].append(clock_event)
        users[user.id] = user

    pending: list[PendingClockOut] = []
    for user_id, events in events_by_user.items():
        user = users[user_id]
        view, _ = reconcile(events, now, tz)
        if not view.is_currently_clocked_in or not user.email or not user.is_active:
            continue
        opened_at = view.shifts[-1].started_at.astimezone(tz)
        pending.append(
            PendingClockOut(
                user_id=str(user_id),
                email=user.email,
                name=user.display_name,
                entry_time=opened_at.strftime("%H:%M"),
            )
        )
    return pending


def reminder_email(pending: PendingClockOut, app_url: str) -> MailMessage:
    body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #1E3A8A;">Hola {html.escape(pending.name)},</h2>
  <p>Te recordamos que <strong>fichaste tu entrada a las {pending.entry_time}</strong> pero aún no has registrado tu salida.</p>
  <p>Por favor, accede a la aplicación y ficha tu salida para completar tu jornada de hoy.</p>
  <a href="{html.escape(app_url, quote=True)}"
     style="display: inline-block; background-color: #1E3A8A; color: white; padding: 12px 24px; text-decoration: none; border-radius: 8px; margin: 20px 0;">
    Fichar Ahora
  </a>
  <p style="color: #666; font-size: 14px; margin-top: 30px;">
    Este es un recordatorio automático del sistema de fichaje.
  </p>
</div>
"""
    return MailMessage(to=pending.email, subject=REMINDER_SUBJECT, html=body)


def check_missing_clockouts(
    store: EventStore,
    mailer: Mailer | None,
    tz: ZoneInfo,
    app_url: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Email every user with an open shift today. ``mailer=None`` is a dry run."""
    now = as_utc(now or now_utc())
    start, end = day_bounds_utc(local_day(now, tz), tz)
    pending = find_pending_clockouts(store.query_range_with_users(None, start, end), now, tz)

    if not pending:
        return {"success": True, "message": NOTHING_PENDING_MESSAGE, "usersNotified": 0}

    results: list[dict[str, Any]] = []
    for item in pending:
        if mailer is None:
            results.append({"email": item.email, "success": False, "dry_run": True})
            continue
        try:
            results.append(mailer.send(reminder_email(item, app_url)))
        except requests.RequestException as exc:
            logger.warning("Reminder email to %s failed", item.email, exc_info=True)
            results.append({"email": item.email, "success": False, "error": str(exc)})

    emails_sent = sum(1 for result in results if result.get("success"))
    logger.info("Missing clock-out check: %d pending, %d emails sent", len(pending), emails_sent)
    return {
        "success": True,
        "usersNotified": len(pending),
        "emailsSent": emails_sent,
        "results": results,
    }
