"""Dashboard orchestration of a user's clock actions.

The controller never keeps shift state of its own: every action ends by
re-reading the store and reconciling again, and every change notification is
handled the same way.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Iterator, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fichaje.changes import ChangeNotification
from fichaje.errors import ClockActionRejected
from fichaje.location import Location, LocationError, LocationErrorCode, LocationProvider
from fichaje.locks import action_locks, reminder_guards
from fichaje.models import ClockEvent, ClockEventSource, ClockEventType, as_utc, now_utc
from fichaje.reconciler import (
    EXTENDED_ANOMALY_HOURS,
    DayShiftView,
    ForgottenShiftAnomaly,
    day_bounds_utc,
    local_day,
    reconcile,
)
from fichaje.reminders import DatabaseNotificationScheduler, ReminderOutcome, ReminderScheduler, parse_reminder_time
from fichaje.store import EventStore


logger = logging.getLogger(__name__)

ALREADY_IN_NOTICE = "Ya tienes un turno abierto. Ficha la salida antes de volver a fichar entrada."
ALREADY_OUT_NOTICE = "Debes fichar entrada antes de fichar salida."
BLOCKED_NOTICE = "Tienes un fichaje pendiente de corregir. Revisa el aviso antes de continuar."


class DashboardState(str, enum.Enum):
    OUT = "OUT"
    IN = "IN"
    BLOCKED_ANOMALY = "BLOCKED_ANOMALY"


@dataclass
class DashboardSnapshot:
    user_id: uuid.UUID
    now: datetime
    view: DayShiftView
    anomaly: ForgottenShiftAnomaly | None = None
    correction: ClockEvent | None = None
    reminder: ReminderOutcome | None = None
    notices: list[str] = field(default_factory=list)

    @property
    def state(self) -> DashboardState:
        if self.anomaly is not None and self.correction is None:
            return DashboardState.BLOCKED_ANOMALY
        if self.view.is_currently_clocked_in:
            return DashboardState.IN
        return DashboardState.OUT


@dataclass
class ActionResult:
    event: ClockEvent
    snapshot: DashboardSnapshot
    location_warning: str | None = None


def anomaly_notice(anomaly: ForgottenShiftAnomaly, tz: ZoneInfo, corrected: bool = True) -> str:
    opened_local = as_utc(anomaly.last_open_event.timestamp).astimezone(tz)
    closing_local = anomaly.corrective_timestamp.astimezone(tz)
    notice = f"No fichaste la salida el {opened_local.strftime('%d/%m/%Y')} (entrada a las {opened_local.strftime('%H:%M')})."
    if corrected:
        notice += f" Se ha registrado automáticamente a las {closing_local.strftime('%H:%M')}."
    else:
        notice += f" Confirma el aviso para cerrar la jornada a las {closing_local.strftime('%H:%M')}."
    if anomaly.needs_admin:
        notice += " Ha pasado demasiado tiempo desde la entrada: contacta con un administrador para revisar la jornada."
    return notice


class DashboardController:
    def __init__(
        self,
        user_id: uuid.UUID,
        store: EventStore,
        reminders: ReminderScheduler,
        tz: ZoneInfo,
        *,
        action_lock: threading.RLock | None = None,
        auto_correct: bool = True,
        extended_hours: float = EXTENDED_ANOMALY_HOURS,
    ) -> None:
        self.user_id = user_id
        self.store = store
        self.reminders = reminders
        self.tz = tz
        self.auto_correct = auto_correct
        self.extended_hours = extended_hours
        self._action_lock = action_lock or threading.RLock()

    @contextlib.contextmanager
    def action_lock(self) -> Iterator[None]:
        with self._action_lock:
            yield

    def _load_events(self, now: datetime) -> list[ClockEvent]:
        start, end = day_bounds_utc(local_day(now, self.tz), self.tz)
        events = self.store.query_range(self.user_id, start, end)
        latest = self.store.latest(self.user_id)
        if latest is not None and all(item.id != latest.id for item in events):
            events.append(latest)
        return events

    def _derive(self, now: datetime) -> tuple[DayShiftView, ForgottenShiftAnomaly | None]:
        return reconcile(self._load_events(now), now, self.tz, self.extended_hours)

    def refresh(self, now: datetime | None = None, *, sync_reminder: bool = True) -> DashboardSnapshot:
        now = now or now_utc()
        # Held from the read to the corrective insert so concurrent refreshes correct once.
        with self.action_lock():
            view, anomaly = self._derive(now)
            snapshot = DashboardSnapshot(user_id=self.user_id, now=now, view=view, anomaly=anomaly)

            if anomaly is not None:
                logger.info(
                    "Forgotten clock-out for user %s (%.1fh, %s)",
                    self.user_id,
                    anomaly.age_hours,
                    anomaly.severity.value,
                )
                if self.auto_correct:
                    self._correct(snapshot, anomaly, now)
                else:
                    snapshot.notices.append(anomaly_notice(anomaly, self.tz, corrected=False))

            if sync_reminder:
                snapshot.reminder = self.reminders.ensure_reminder(snapshot.state is DashboardState.IN, now)
        return snapshot

    def _correct(self, snapshot: DashboardSnapshot, anomaly: ForgottenShiftAnomaly, now: datetime) -> None:
        snapshot.correction = self.apply_correction(anomaly)
        snapshot.notices.append(anomaly_notice(anomaly, self.tz, corrected=True))
        snapshot.view, remaining = self._derive(now)
        if remaining is not None:
            logger.warning("Forgotten clock-out still present after correction for user %s", self.user_id)

    def apply_correction(self, anomaly: ForgottenShiftAnomaly) -> ClockEvent:
        return self.store.insert(
            self.user_id,
            ClockEventType.SALIDA,
            timestamp=anomaly.corrective_timestamp,
            source=ClockEventSource.AUTO_CORRECTION,
        )

    def acknowledge_anomaly(self, now: datetime | None = None) -> DashboardSnapshot:
        """Apply the pending corrective clock-out after the user confirmed the notice."""
        now = now or now_utc()
        with self.action_lock():
            view, anomaly = self._derive(now)
            if anomaly is None:
                raise ClockActionRejected("No hay ningún fichaje pendiente de corregir.")
            snapshot = DashboardSnapshot(user_id=self.user_id, now=now, view=view, anomaly=anomaly)
            self._correct(snapshot, anomaly, now)
            snapshot.reminder = self.reminders.ensure_reminder(snapshot.state is DashboardState.IN, now)
        return snapshot

    def _resolve_location(self, provider: LocationProvider | None) -> tuple[Location | None, str | None]:
        if provider is None:
            return None, None
        try:
            return provider.get_current_location(), None
        except LocationError as exc:
            if exc.location_code == LocationErrorCode.PERMISSION_DENIED:
                raise
            logger.info("Clocking user %s without coordinates: %s", self.user_id, exc.location_code.value)
            return None, exc.notice

    def _check_state(self, requested: ClockEventType, now: datetime) -> DashboardSnapshot:
        snapshot = self.refresh(now, sync_reminder=False)
        if snapshot.state is DashboardState.BLOCKED_ANOMALY:
            raise ClockActionRejected(BLOCKED_NOTICE)
        if requested == ClockEventType.ENTRADA and snapshot.state is DashboardState.IN:
            raise ClockActionRejected(ALREADY_IN_NOTICE)
        if requested == ClockEventType.SALIDA and snapshot.state is DashboardState.OUT:
            raise ClockActionRejected(ALREADY_OUT_NOTICE)
        return snapshot

    def _record(
        self,
        entry_type: ClockEventType,
        location_provider: LocationProvider | None,
        now: datetime | None,
        source: ClockEventSource,
    ) -> ActionResult:
        now = now or now_utc()
        with self.action_lock():
            before = self._check_state(entry_type, now)
            location, location_warning = self._resolve_location(location_provider)
            event = self.store.insert(self.user_id, entry_type, timestamp=now, location=location, source=source)
            snapshot = self.refresh(now)
        if before.correction is not None:
            # The forgotten shift was closed while validating this action; keep it visible.
            snapshot.anomaly = before.anomaly
            snapshot.correction = before.correction
            snapshot.notices = before.notices + snapshot.notices
        return ActionResult(event=event, snapshot=snapshot, location_warning=location_warning)

    def clock_in(
        self,
        location_provider: LocationProvider | None = None,
        now: datetime | None = None,
        source: ClockEventSource = ClockEventSource.MOBILE,
    ) -> ActionResult:
        return self._record(ClockEventType.ENTRADA, location_provider, now, source)

    def clock_out(
        self,
        location_provider: LocationProvider | None = None,
        now: datetime | None = None,
        source: ClockEventSource = ClockEventSource.MOBILE,
    ) -> ActionResult:
        return self._record(ClockEventType.SALIDA, location_provider, now, source)

    def watch(self, changes: Iterable[ChangeNotification], limit: int | None = None) -> Iterator[DashboardSnapshot]:
        """Recompute the dashboard once per change notification."""
        handled = 0
        for notification in changes:
            if notification.user_id != self.user_id:
                continue
            yield self.refresh()
            handled += 1
            if limit is not None and handled >= limit:
                return


def snapshot_to_dict(snapshot: DashboardSnapshot, tz: ZoneInfo) -> dict[str, Any]:
    def _local(ts: datetime | None) -> str | None:
        return as_utc(ts).astimezone(tz).isoformat() if ts is not None else None

    return {
        "day": snapshot.view.day.isoformat(),
        "state": snapshot.state.value,
        "is_currently_clocked_in": snapshot.view.is_currently_clocked_in,
        "worked_seconds": snapshot.view.worked_seconds(snapshot.now),
        "shifts": [
            {
                "clock_in": _local(shift.started_at),
                "clock_out": _local(shift.ended_at),
                "open": shift.is_open,
                "interrupted": shift.interrupted,
            }
            for shift in snapshot.view.shifts
        ],
        "anomaly": (
            {
                "opened_at": _local(snapshot.anomaly.last_open_event.timestamp),
                "age_hours": round(snapshot.anomaly.age_hours, 2),
                "severity": snapshot.anomaly.severity.value,
                "corrective_timestamp": _local(snapshot.anomaly.corrective_timestamp),
                "corrected": snapshot.correction is not None,
            }
            if snapshot.anomaly is not None
            else None
        ),
        "reminder": snapshot.reminder.value if snapshot.reminder is not None else None,
        "notices": list(snapshot.notices),
    }


def app_timezone(config: Mapping[str, Any]) -> ZoneInfo:
    tz_name = config.get("APP_TIMEZONE", "Europe/Madrid")
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        logger.warning("Unknown APP_TIMEZONE %r, falling back to UTC", tz_name)
        return ZoneInfo("UTC")


def controller_for_user(user_id: uuid.UUID, config: Mapping[str, Any], store: EventStore | None = None) -> DashboardController:
    tz = app_timezone(config)
    reminders = ReminderScheduler(
        DatabaseNotificationScheduler(user_id),
        tz,
        reminder_time=parse_reminder_time(config.get("REMINDER_TIME")),
        guard=reminder_guards.get(user_id),
    )
    return DashboardController(
        user_id,
        store or EventStore(),
        reminders,
        tz,
        action_lock=action_locks.get(user_id),
        auto_correct=bool(config.get("AUTO_CORRECT_FORGOTTEN_SHIFTS", True)),
        extended_hours=float(config.get("FORGOTTEN_SHIFT_EXTENDED_HOURS", EXTENDED_ANOMALY_HOURS)),
    )
