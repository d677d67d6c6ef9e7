from __future__ import annotations
import uuid
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import Boolean, Enum as SqlEnum, Float, Index, String, Text, text
from sqlalchemy.types import DateTime

Base = declarative_base()

def utcnow():
    return datetime.now(timezone.utc)

class EntryMethod(str, Enum):
    QR_SCAN = "qr_scan"

class CheckoutMethod(str, Enum):
    ADMIN = "admin"
    AUTOMATIC = "automatic"

# Owned by the events service; only the columns this service reads/writes are mapped.
class Event(Base):
    __tablename__ = "events"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    # lazily filled from `location`; never invalidated
    location_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_lng: Mapped[float | None] = mapped_column(Float, nullable=True)

class Attendance(Base):
    __tablename__ = "attendance"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    event_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    is_checked_in: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    checked_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    checked_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    entry_method: Mapped[EntryMethod] = mapped_column(SqlEnum(EntryMethod), default=EntryMethod.QR_SCAN, nullable=False)
    checked_in_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)  # admin who scanned
    checked_out_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)  # null for automatic
    checkout_method: Mapped[CheckoutMethod | None] = mapped_column(SqlEnum(CheckoutMethod), nullable=True)

    # last sample reported while checked in; not trusted once checked out
    last_location_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_location_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_location_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # at most one active record per user per event
        Index(
            "uq_attendance_active_per_user_event",
            "event_id",
            "user_id",
            unique=True,
            postgresql_where=text("is_checked_in"),
            sqlite_where=text("is_checked_in"),
        ),
        Index("ix_attendance_event_active", "event_id", "is_checked_in"),
    )
