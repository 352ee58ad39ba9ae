"""Daily shift reconciliation.

Turns the raw sequence of entrada/salida events of one user into the shifts of
the current local day and flags a clock-out forgotten on a previous day.
Everything here is pure: no database access, no clock reads, no side effects.
Callers pass ``now`` and the timezone explicitly.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Protocol, Sequence
from zoneinfo import ZoneInfo

from fichaje.models import ClockEventType, as_utc


EXTENDED_ANOMALY_HOURS = 10.0
END_OF_DAY = time(23, 59, 59, 999000)


class ClockEventLike(Protocol):
    entry_type: ClockEventType
    timestamp: datetime


class AnomalySeverity(str, enum.Enum):
    NORMAL = "NORMAL"
    EXTENDED = "EXTENDED"


@dataclass(frozen=True)
class Shift:
    clock_in: ClockEventLike
    clock_out: ClockEventLike | None = None
    # Closed implicitly by a later clock-in without a clock-out in between.
    interrupted: bool = False

    @property
    def is_open(self) -> bool:
        return self.clock_out is None and not self.interrupted

    @property
    def started_at(self) -> datetime:
        return as_utc(self.clock_in.timestamp)

    @property
    def ended_at(self) -> datetime | None:
        if self.clock_out is None:
            return None
        return as_utc(self.clock_out.timestamp)

    def duration(self, now: datetime) -> timedelta:
        if self.ended_at is not None:
            return self.ended_at - self.started_at
        if self.interrupted:
            return timedelta(0)
        return max(timedelta(0), as_utc(now) - self.started_at)


@dataclass(frozen=True)
class DayShiftView:
    day: date
    shifts: tuple[Shift, ...] = ()
    is_currently_clocked_in: bool = False

    @property
    def open_shift(self) -> Shift | None:
        if self.shifts and self.shifts[-1].is_open:
            return self.shifts[-1]
        return None

    def worked_seconds(self, now: datetime) -> int:
        return int(sum((shift.duration(now) for shift in self.shifts), timedelta(0)).total_seconds())


@dataclass(frozen=True)
class ForgottenShiftAnomaly:
    last_open_event: ClockEventLike
    age_hours: float
    severity: AnomalySeverity
    corrective_timestamp: datetime

    @property
    def needs_admin(self) -> bool:
        return self.severity is AnomalySeverity.EXTENDED


def local_day(ts: datetime, tz: ZoneInfo) -> date:
    return as_utc(ts).astimezone(tz).date()


def day_bounds_utc(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start_local = datetime.combine(day, time.min, tzinfo=tz)
    end_local = datetime.combine(day, time.max, tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def corrective_clock_out_timestamp(open_ts: datetime, tz: ZoneInfo) -> datetime:
    """End of the local day the shift was opened on, in UTC.

    Never at or before the clock-in itself, otherwise the closing event would
    not pair with it.
    """
    day = local_day(open_ts, tz)
    end_of_day = datetime.combine(day, END_OF_DAY, tzinfo=tz).astimezone(timezone.utc)
    return max(end_of_day, as_utc(open_ts) + timedelta(microseconds=1))


def _ordered(events: Iterable[ClockEventLike]) -> list[ClockEventLike]:
    # sorted() is stable, so events sharing a timestamp keep the store order.
    return sorted(events, key=lambda item: as_utc(item.timestamp))


def _pair_shifts(events: Sequence[ClockEventLike]) -> list[Shift]:
    shifts: list[Shift] = []
    open_in: ClockEventLike | None = None

    for item in events:
        if item.entry_type == ClockEventType.ENTRADA:
            if open_in is not None:
                shifts.append(Shift(clock_in=open_in, interrupted=True))
            open_in = item
            continue

        if item.entry_type == ClockEventType.SALIDA:
            if open_in is None:
                continue
            if as_utc(item.timestamp) <= as_utc(open_in.timestamp):
                continue
            shifts.append(Shift(clock_in=open_in, clock_out=item))
            open_in = None

    if open_in is not None:
        shifts.append(Shift(clock_in=open_in))
    return shifts


def detect_forgotten_shift(
    events: Sequence[ClockEventLike],
    now: datetime,
    tz: ZoneInfo,
    extended_hours: float = EXTENDED_ANOMALY_HOURS,
) -> ForgottenShiftAnomaly | None:
    """Look only at the most recent event overall; ``events`` must be ordered."""
    if not events:
        return None

    last_event = events[-1]
    if last_event.entry_type != ClockEventType.ENTRADA:
        return None
    if local_day(last_event.timestamp, tz) >= local_day(now, tz):
        return None

    age_hours = (as_utc(now) - as_utc(last_event.timestamp)) / timedelta(hours=1)
    severity = AnomalySeverity.EXTENDED if age_hours >= extended_hours else AnomalySeverity.NORMAL
    return ForgottenShiftAnomaly(
        last_open_event=last_event,
        age_hours=age_hours,
        severity=severity,
        corrective_timestamp=corrective_clock_out_timestamp(last_event.timestamp, tz),
    )


def reconcile(
    events: Iterable[ClockEventLike],
    now: datetime,
    tz: ZoneInfo,
    extended_hours: float = EXTENDED_ANOMALY_HOURS,
) -> tuple[DayShiftView, ForgottenShiftAnomaly | None]:
    ordered = _ordered(events)
    today = local_day(now, tz)

    todays_shifts = tuple(shift for shift in _pair_shifts(ordered) if local_day(shift.clock_in.timestamp, tz) == today)
    anomaly = detect_forgotten_shift(ordered, now, tz, extended_hours)
    clocked_in = bool(todays_shifts) and todays_shifts[-1].is_open and anomaly is None

    view = DayShiftView(day=today, shifts=todays_shifts, is_currently_clocked_in=clocked_in)
    return view, anomaly
