from __future__ import annotations

from datetime import datetime, time, timezone
import logging
import threading

from fichaje.extensions import db
from fichaje.models import ScheduledNotification
from fichaje.reminders import (
    REMINDER_KEY,
    DatabaseNotificationScheduler,
    ReminderOutcome,
    ReminderScheduler,
    parse_reminder_time,
)
from tests.helpers import MADRID, madrid


class FakeScheduler:
    def __init__(self) -> None:
        self.scheduled: dict[str, tuple[datetime, dict]] = {}
        self.schedule_calls = 0
        self.cancel_calls = 0

    def schedule_at(self, key, trigger_at, payload):
        self.schedule_calls += 1
        self.scheduled[key] = (trigger_at, payload)

    def cancel_all(self):
        self.cancel_calls += 1
        self.scheduled.clear()

    def pending(self):
        return list(self.scheduled.values())


class BrokenScheduler(FakeScheduler):
    def schedule_at(self, key, trigger_at, payload):
        raise RuntimeError("notification service unavailable")


def test_trigger_is_today_at_reminder_time_in_local_zone():
    reminders = ReminderScheduler(FakeScheduler(), MADRID)

    assert reminders.trigger_for(madrid(2026, 3, 10, 9)) == datetime(2026, 3, 10, 17, 15, tzinfo=timezone.utc)
    assert reminders.trigger_for(madrid(2026, 7, 10, 9)) == datetime(2026, 7, 10, 16, 15, tzinfo=timezone.utc)


def test_repeated_calls_leave_a_single_pending_reminder():
    scheduler = FakeScheduler()
    reminders = ReminderScheduler(scheduler, MADRID)

    assert reminders.ensure_reminder(True, madrid(2026, 3, 10, 9)) is ReminderOutcome.SCHEDULED
    assert reminders.ensure_reminder(True, madrid(2026, 3, 10, 11)) is ReminderOutcome.SCHEDULED

    assert list(scheduler.scheduled) == [REMINDER_KEY]
    trigger_at, payload = scheduler.scheduled[REMINDER_KEY]
    assert trigger_at.astimezone(MADRID).time() == time(18, 15)
    assert payload["data"] == {"screen": "UserDashboard"}


def test_closed_shift_cancels_pending_reminders():
    scheduler = FakeScheduler()
    reminders = ReminderScheduler(scheduler, MADRID)
    reminders.ensure_reminder(True, madrid(2026, 3, 10, 9))

    assert reminders.ensure_reminder(False, madrid(2026, 3, 10, 14)) is ReminderOutcome.CANCELLED
    assert scheduler.scheduled == {}


def test_no_reminder_once_trigger_time_has_passed():
    scheduler = FakeScheduler()
    reminders = ReminderScheduler(scheduler, MADRID)

    assert reminders.ensure_reminder(True, madrid(2026, 3, 10, 18, 15)) is ReminderOutcome.SKIPPED_PAST
    assert reminders.ensure_reminder(True, madrid(2026, 3, 10, 20)) is ReminderOutcome.SKIPPED_PAST
    assert scheduler.scheduled == {}


def test_overlapping_call_is_applied_when_the_owner_finishes():
    scheduler = FakeScheduler()
    reminders = ReminderScheduler(scheduler, MADRID)

    with reminders.scheduling_guard() as acquired:
        assert acquired is True
        assert reminders.ensure_reminder(True, madrid(2026, 3, 10, 9)) is ReminderOutcome.COALESCED
        assert scheduler.schedule_calls == 0

    assert scheduler.schedule_calls == 1
    assert list(scheduler.scheduled) == [REMINDER_KEY]


class BlockingScheduler(FakeScheduler):
    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.proceed = threading.Event()

    def schedule_at(self, key, trigger_at, payload):
        self.entered.set()
        assert self.proceed.wait(5)
        super().schedule_at(key, trigger_at, payload)


def test_cancel_made_during_a_schedule_is_not_lost():
    scheduler = BlockingScheduler()
    reminders = ReminderScheduler(scheduler, MADRID)
    outcomes = []
    worker = threading.Thread(target=lambda: outcomes.append(reminders.ensure_reminder(True, madrid(2026, 3, 10, 9))))
    worker.start()
    assert scheduler.entered.wait(5)

    assert reminders.ensure_reminder(False, madrid(2026, 3, 10, 9, 1)) is ReminderOutcome.COALESCED
    scheduler.proceed.set()
    worker.join(5)

    assert outcomes == [ReminderOutcome.CANCELLED]
    assert scheduler.schedule_calls == 1
    assert scheduler.cancel_calls == 1
    assert scheduler.scheduled == {}


def test_scheduler_failure_is_logged_and_releases_guard(caplog):
    reminders = ReminderScheduler(BrokenScheduler(), MADRID)

    with caplog.at_level(logging.WARNING, logger="fichaje.reminders"):
        assert reminders.ensure_reminder(True, madrid(2026, 3, 10, 9)) is ReminderOutcome.FAILED

    assert "Clock-out reminder update failed" in caplog.text
    with reminders.scheduling_guard() as acquired:
        assert acquired is True


def test_custom_reminder_time():
    scheduler = FakeScheduler()
    reminders = ReminderScheduler(scheduler, MADRID, reminder_time=parse_reminder_time("20:30"))

    assert reminders.ensure_reminder(True, madrid(2026, 3, 10, 19)) is ReminderOutcome.SCHEDULED
    assert scheduler.scheduled[REMINDER_KEY][0].astimezone(MADRID).time() == time(20, 30)


def test_parse_reminder_time_falls_back_to_default():
    assert parse_reminder_time(None) == time(18, 15)
    assert parse_reminder_time("bogus") == time(18, 15)
    assert parse_reminder_time(" 07:05 ") == time(7, 5)


def test_database_scheduler_upserts_by_key(employee):
    scheduler = DatabaseNotificationScheduler(employee.id)
    reminders = ReminderScheduler(scheduler, MADRID)

    reminders.ensure_reminder(True, madrid(2026, 3, 10, 9))
    reminders.ensure_reminder(True, madrid(2026, 3, 10, 10))

    rows = db.session.query(ScheduledNotification).filter_by(user_id=employee.id).all()
    assert len(rows) == 1
    assert rows[0].key == REMINDER_KEY
    assert rows[0].to_dict()["trigger_at"] == "2026-03-10T17:15:00+00:00"
    assert rows[0].to_dict()["data"] == {"screen": "UserDashboard"}

    reminders.ensure_reminder(False, madrid(2026, 3, 10, 15))
    assert scheduler.pending() == []
