"""Database models."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any

from flask_login import UserMixin
from sqlalchemy import JSON, Boolean, DateTime, Enum, Float, ForeignKey, Index, String, Uuid, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fichaje.extensions import db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    """SQLite hands timestamps back naive; they are always stored in UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class ClockEventType(str, enum.Enum):
    ENTRADA = "entrada"
    SALIDA = "salida"

    @property
    def label(self) -> str:
        return "Entrada" if self is ClockEventType.ENTRADA else "Salida"


class ClockEventSource(str, enum.Enum):
    MOBILE = "MOBILE"
    WEB = "WEB"
    AUTO_CORRECTION = "AUTO_CORRECTION"


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.USER)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=now_utc)

    clock_events: Mapped[list["ClockEvent"]] = relationship(back_populates="user")

    def get_id(self) -> str:
        return str(self.id)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def display_name(self) -> str:
        if self.full_name and self.full_name.strip():
            return self.full_name.strip()
        return "Usuario"


class ClockEvent(db.Model):
    __tablename__ = "time_entries"
    __table_args__ = (Index("ix_time_entries_user_timestamp", "user_id", "timestamp"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    entry_type: Mapped[ClockEventType] = mapped_column(
        Enum(ClockEventType, name="entry_type", values_callable=lambda members: [member.value for member in members]),
        nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=now_utc)
    source: Mapped[ClockEventSource] = mapped_column(
        Enum(ClockEventSource, name="clock_event_source"),
        nullable=False,
        default=ClockEventSource.MOBILE,
    )
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(16), nullable=True)

    user: Mapped[User] = relationship(back_populates="clock_events")

    @property
    def timestamp_utc(self) -> datetime:
        return as_utc(self.timestamp)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "entry_type": self.entry_type.value,
            "timestamp": self.timestamp_utc.isoformat(),
            "source": self.source.value,
            "location": (
                {
                    "latitude": self.latitude,
                    "longitude": self.longitude,
                    "accuracy": self.accuracy,
                    "device_type": self.device_type,
                }
                if self.has_location
                else None
            ),
        }


@event.listens_for(ClockEvent, "before_update")
def prevent_clock_event_update(_mapper: object, _connection: object, _target: object) -> None:
    raise ValueError("time_entries are append-only")


@event.listens_for(ClockEvent, "before_delete")
def prevent_clock_event_delete(_mapper: object, _connection: object, _target: object) -> None:
    raise ValueError("time_entries are append-only")


class ScheduledNotification(db.Model):
    __tablename__ = "scheduled_notifications"
    __table_args__ = (UniqueConstraint("user_id", "key", name="uq_scheduled_notifications_user_key"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(String(1024), nullable=False)
    payload_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=now_utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "trigger_at": as_utc(self.trigger_at).isoformat(),
            "title": self.title,
            "body": self.body,
            "data": self.payload_json or {},
        }
