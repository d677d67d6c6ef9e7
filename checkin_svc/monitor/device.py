"""Interfaces to the device's location and permission APIs.

These mirror the browser Geolocation / Permissions APIs closely enough that an
adapter is a thin shim: a single-shot position request with accuracy, timeout
and max-age options, and a permission query with change notifications.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from typing import Callable, Optional, Protocol


class PermissionStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"
    UNSUPPORTED = "unsupported"  # no geolocation on this device


class PositionErrorCode(IntEnum):
    # same numbering as GeolocationPositionError
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


class PositionError(Exception):
    def __init__(self, code: PositionErrorCode, message: str = ""):
        super().__init__(message or code.name.lower())
        self.code = code


@dataclass(frozen=True)
class Position:
    lat: float
    lng: float
    accuracy_m: float | None = None
    timestamp: datetime | None = None


class PositionProvider(Protocol):
    async def get_current_position(
        self,
        *,
        high_accuracy: bool,
        timeout: float,
        maximum_age: float,
    ) -> Position:
        """Resolve one sample or raise ``PositionError``."""
        ...


class PermissionSource(Protocol):
    async def query(self) -> Optional[PermissionStatus]:
        """Current permission, or None when the platform cannot tell."""
        ...

    def subscribe(self, callback: Callable[[PermissionStatus], None]) -> Callable[[], None]:
        """Register for changes; returns an unsubscribe function."""
        ...
