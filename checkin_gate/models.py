from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    club_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class Attendee(Base):
    """Reservation binding: one user holding a spot at one event."""

    __tablename__ = "attendees"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    event_id: Mapped[str] = mapped_column(String, index=True)
    checked_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    checked_in_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    __table_args__ = (UniqueConstraint("user_id", "event_id", name="uniq_user_event"),)


class AdminUser(Base):
    __tablename__ = "admin_users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    role: Mapped[str] = mapped_column(String)
    club_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)


class PublicProfile(Base):
    __tablename__ = "profiles_public"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    full_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    decision_id: Mapped[str] = mapped_column(String, index=True)
    operator_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    event_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    attendee_id: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)
    outcome: Mapped[str] = mapped_column(String)
    ip: Mapped[str] = mapped_column(String)
    user_agent: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
