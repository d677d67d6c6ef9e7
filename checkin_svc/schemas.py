from __future__ import annotations
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Literal

class ScanCreate(BaseModel):
    user_id: UUID
    code: str  # "user-{user_id}-{event_id}" as read from the attendee's QR

class AttendanceRead(BaseModel):
    id: UUID
    event_id: UUID
    user_id: UUID
    is_checked_in: bool
    checked_in_at: datetime
    checked_out_at: datetime | None = None
    entry_method: str
    checked_in_by: UUID | None = None
    checked_out_by: UUID | None = None
    checkout_method: str | None = None
    last_location_lat: float | None = None
    last_location_lng: float | None = None
    last_location_at: datetime | None = None

class CheckinStatusRead(BaseModel):
    event_id: UUID
    user_id: UUID
    checked_in: bool

class LocationSample(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

class RadiusCheckCreate(LocationSample):
    # invalid or non-positive values fall back to the configured default
    radius: float | None = None

class RadiusCheckRead(BaseModel):
    in_radius: bool
    distance_m: float

class AutoCheckoutRead(BaseModel):
    status: Literal["checked_out", "back_in_radius"]
    record: AttendanceRead | None = None
