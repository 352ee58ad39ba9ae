"""Clock-out reminder scheduling.

At most one reminder is pending for a user while a shift is open, none
otherwise. Delivery is best effort: scheduler failures are logged and never
reach the clock action that triggered them.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import uuid
from datetime import datetime, time, timezone
from typing import Any, Iterator, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from fichaje.extensions import db
from fichaje.locks import SchedulingGuard
from fichaje.models import ScheduledNotification, as_utc, now_utc


logger = logging.getLogger(__name__)

REMINDER_KEY = "clock-out-reminder"
DEFAULT_REMINDER_TIME = time(18, 15)
REMINDER_TITLE = "⏰ Recordatorio de Salida"
REMINDER_BODY = "Aún no has fichado tu salida hoy. Por favor, hazlo ahora."
REMINDER_DATA = {"screen": "UserDashboard"}


class NotificationScheduler(Protocol):
    def schedule_at(self, key: str, trigger_at: datetime, payload: dict[str, Any]) -> None: ...

    def cancel_all(self) -> None: ...

    def pending(self) -> list[ScheduledNotification]: ...


class ReminderOutcome(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    SKIPPED_PAST = "SKIPPED_PAST"
    CANCELLED = "CANCELLED"
    COALESCED = "COALESCED"
    FAILED = "FAILED"


def parse_reminder_time(raw: str | None) -> time:
    if not raw:
        return DEFAULT_REMINDER_TIME
    try:
        hour_text, minute_text = raw.strip().split(":", 1)
        return time(int(hour_text), int(minute_text))
    except ValueError:
        logger.warning("Invalid REMINDER_TIME %r, using %s", raw, DEFAULT_REMINDER_TIME.strftime("%H:%M"))
        return DEFAULT_REMINDER_TIME


class DatabaseNotificationScheduler:
    """Pending reminders of one user, kept in ``scheduled_notifications``."""

    def __init__(self, user_id: uuid.UUID) -> None:
        self.user_id = user_id

    def schedule_at(self, key: str, trigger_at: datetime, payload: dict[str, Any]) -> None:
        stmt = select(ScheduledNotification).where(
            ScheduledNotification.user_id == self.user_id,
            ScheduledNotification.key == key,
        )
        try:
            notification = db.session.execute(stmt).scalar_one_or_none()
            if notification is None:
                notification = ScheduledNotification(user_id=self.user_id, key=key)
                db.session.add(notification)
            notification.trigger_at = as_utc(trigger_at)
            notification.title = payload.get("title", REMINDER_TITLE)
            notification.body = payload.get("body", REMINDER_BODY)
            notification.payload_json = dict(payload.get("data") or {})
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def cancel_all(self) -> None:
        try:
            db.session.execute(delete(ScheduledNotification).where(ScheduledNotification.user_id == self.user_id))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def pending(self) -> list[ScheduledNotification]:
        stmt = (
            select(ScheduledNotification)
            .where(ScheduledNotification.user_id == self.user_id)
            .order_by(ScheduledNotification.trigger_at.asc())
        )
        return list(db.session.execute(stmt).scalars().all())


class ReminderScheduler:
    def __init__(
        self,
        scheduler: NotificationScheduler,
        tz: ZoneInfo,
        reminder_time: time = DEFAULT_REMINDER_TIME,
        key: str = REMINDER_KEY,
        guard: SchedulingGuard | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.tz = tz
        self.reminder_time = reminder_time
        self.key = key
        self._guard = guard or SchedulingGuard()

    @contextlib.contextmanager
    def scheduling_guard(self) -> Iterator[bool]:
        """Yield True when this caller owns the scheduler, False if another call is in flight.

        Requests coalesced while the owner is inside the block are applied
        when it exits.
        """
        acquired = self._guard.acquire()
        try:
            yield acquired
        except BaseException:
            if acquired:
                self._guard.release()
            raise
        if acquired:
            self._drain()

    def trigger_for(self, now: datetime) -> datetime:
        local_now = as_utc(now).astimezone(self.tz)
        trigger_local = datetime.combine(local_now.date(), self.reminder_time, tzinfo=self.tz)
        return trigger_local.astimezone(timezone.utc)

    def ensure_reminder(self, has_open_shift: bool, now: datetime | None = None) -> ReminderOutcome:
        now = now or now_utc()
        if not self._guard.acquire((has_open_shift, now)):
            logger.debug("Reminder update already in progress, handing request over")
            return ReminderOutcome.COALESCED
        return self._drain()

    def _drain(self) -> ReminderOutcome | None:
        outcome = None
        try:
            request = self._guard.next_request()
            while request is not None:
                outcome = self._apply(*request)
                request = self._guard.next_request()
        except BaseException:
            self._guard.release()
            raise
        return outcome

    def _apply(self, has_open_shift: bool, now: datetime) -> ReminderOutcome:
        try:
            if not has_open_shift:
                self.scheduler.cancel_all()
                return ReminderOutcome.CANCELLED

            trigger_at = self.trigger_for(now)
            if as_utc(now) >= trigger_at:
                # No rollover to tomorrow: the shift is expected to end today.
                return ReminderOutcome.SKIPPED_PAST

            self.scheduler.schedule_at(
                self.key,
                trigger_at,
                {"title": REMINDER_TITLE, "body": REMINDER_BODY, "data": REMINDER_DATA},
            )
            logger.info("Clock-out reminder scheduled for %s", trigger_at.astimezone(self.tz).isoformat())
            return ReminderOutcome.SCHEDULED
        except Exception:
            logger.warning("Clock-out reminder update failed", exc_info=True)
            return ReminderOutcome.FAILED
