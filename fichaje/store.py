"""Append-only clock event store backed by the ``time_entries`` table."""

from __future__ import annotations

import uuid
from datetime import datetime

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import Select

from fichaje.changes import ChangeFeed, Subscription, change_feed
from fichaje.errors import StoreError
from fichaje.extensions import db
from fichaje.location import Location
from fichaje.models import ClockEvent, ClockEventSource, ClockEventType, User, as_utc


def user_events_between_stmt(user_id: uuid.UUID | None, start: datetime, end: datetime) -> Select:
    stmt = select(ClockEvent).where(ClockEvent.timestamp >= as_utc(start), ClockEvent.timestamp <= as_utc(end))
    if user_id is not None:
        stmt = stmt.where(ClockEvent.user_id == user_id)
    return stmt.order_by(ClockEvent.timestamp.asc())


def events_with_user_between_stmt(user_id: uuid.UUID | None, start: datetime, end: datetime) -> Select:
    stmt = (
        select(ClockEvent, User)
        .join(User, User.id == ClockEvent.user_id)
        .where(ClockEvent.timestamp >= as_utc(start), ClockEvent.timestamp <= as_utc(end))
    )
    if user_id is not None:
        stmt = stmt.where(ClockEvent.user_id == user_id)
    return stmt.order_by(ClockEvent.timestamp.asc())


def user_latest_event_stmt(user_id: uuid.UUID) -> Select:
    return select(ClockEvent).where(ClockEvent.user_id == user_id).order_by(ClockEvent.timestamp.desc()).limit(1)


class EventStore:
    def __init__(self, feed: ChangeFeed = change_feed) -> None:
        self.feed = feed

    def insert(
        self,
        user_id: uuid.UUID,
        entry_type: ClockEventType,
        *,
        timestamp: datetime | None = None,
        location: Location | None = None,
        source: ClockEventSource = ClockEventSource.MOBILE,
    ) -> ClockEvent:
        clock_event = ClockEvent(user_id=user_id, entry_type=entry_type, source=source)
        if timestamp is not None:
            clock_event.timestamp = as_utc(timestamp)
        if location is not None:
            clock_event.latitude = location.latitude
            clock_event.longitude = location.longitude
            clock_event.accuracy = location.accuracy
            clock_event.device_type = location.device_type

        try:
            db.session.add(clock_event)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(
                "Clock event insert failed for user %s (%s)", user_id, entry_type.value, exc_info=True
            )
            raise StoreError() from exc

        current_app.logger.info(
            "Recorded %s for user %s at %s (%s)",
            entry_type.value,
            user_id,
            clock_event.timestamp_utc.isoformat(),
            source.value,
        )
        return clock_event

    def query_range(self, user_id: uuid.UUID | None, start: datetime, end: datetime) -> list[ClockEvent]:
        return self._fetch(user_events_between_stmt(user_id, start, end))

    def query_range_with_users(
        self, user_id: uuid.UUID | None, start: datetime, end: datetime
    ) -> list[tuple[ClockEvent, User]]:
        try:
            return [(row[0], row[1]) for row in db.session.execute(events_with_user_between_stmt(user_id, start, end)).all()]
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error("Clock event report query failed", exc_info=True)
            raise StoreError("No se pudieron cargar los fichajes.") from exc

    def latest(self, user_id: uuid.UUID) -> ClockEvent | None:
        events = self._fetch(user_latest_event_stmt(user_id))
        return events[0] if events else None

    def subscribe(self, user_id: uuid.UUID | None = None) -> Subscription:
        return self.feed.subscribe(user_id)

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()

    def _fetch(self, stmt: Select) -> list[ClockEvent]:
        try:
            return list(db.session.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error("Clock event query failed", exc_info=True)
            raise StoreError("No se pudieron cargar los fichajes.") from exc
