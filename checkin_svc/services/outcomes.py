"""Result values for the attendance and geofence operations.

Expected-state results ("already checked in", "back in radius", ...) are
returned, not raised, so callers branch on ``outcome.failure``.
"""
from __future__ import annotations
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class Failure(str, Enum):
    INVALID_INPUT = "invalid_input"
    INVALID_QR = "invalid_qr"
    ALREADY_CHECKED_IN = "already_checked_in"
    NOT_CHECKED_IN = "not_checked_in"
    BACK_IN_RADIUS = "back_in_radius"
    VENUE_COORDINATES_REQUIRED = "venue_coordinates_required"
    UNAVAILABLE = "unavailable"  # transport failure talking to the service


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: T | None = None
    failure: Failure | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, failure: Failure, message: str) -> "Outcome[T]":
        return cls(failure=failure, message=message)


@dataclass(frozen=True)
class Admin:
    """Check-out performed by an admin scanning/clicking."""
    admin_id: uuid.UUID


@dataclass(frozen=True)
class Automatic:
    """Check-out triggered by the geofence monitor."""


AUTOMATIC = Automatic()

Initiator = Union[Admin, Automatic]
