"""Pure state machine behind the geofence monitor.

``transition`` never performs I/O; it maps ``(session, event)`` to the next
session plus the side effects the caller must run. The monitor shell in
``tracker.py`` owns the timer, the device and the backend.

    idle -> permission_pending -> tracking -> stopped
                    |                 |
                    +----> denied <---+
"""
from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Tuple, Union


class MonitorState(str, Enum):
    IDLE = "idle"
    PERMISSION_PENDING = "permission_pending"
    DENIED = "denied"
    TRACKING = "tracking"
    STOPPED = "stopped"


class Action(str, Enum):
    START_POLLING = "start_polling"
    STOP_POLLING = "stop_polling"
    AUTO_CHECK_OUT = "auto_check_out"


@dataclass(frozen=True)
class MonitorSession:
    state: MonitorState = MonitorState.IDLE
    outside_radius_since: datetime | None = None


# --- events ---

@dataclass(frozen=True)
class PermissionRequested:
    pass

@dataclass(frozen=True)
class PermissionGranted:
    pass

@dataclass(frozen=True)
class PermissionDenied:
    pass

@dataclass(frozen=True)
class PermissionPromptFailed:
    """The user-initiated request failed for a reason other than denial."""

@dataclass(frozen=True)
class PermissionRevoked:
    pass

@dataclass(frozen=True)
class SampleEvaluated:
    in_radius: bool
    at: datetime

@dataclass(frozen=True)
class CheckOutCompleted:
    pass

@dataclass(frozen=True)
class UserBackInRadius:
    pass

@dataclass(frozen=True)
class Stop:
    pass


MonitorEvent = Union[
    PermissionRequested, PermissionGranted, PermissionDenied, PermissionPromptFailed,
    PermissionRevoked, SampleEvaluated, CheckOutCompleted, UserBackInRadius, Stop,
]

Transition = Tuple[MonitorSession, Tuple[Action, ...]]

_NONE: Tuple[Action, ...] = ()


def _leave_tracking(session: MonitorSession, state: MonitorState) -> Transition:
    actions = (Action.STOP_POLLING,) if session.state is MonitorState.TRACKING else _NONE
    return MonitorSession(state=state), actions


def transition(session: MonitorSession, event: MonitorEvent, *, threshold: timedelta) -> Transition:
    state = session.state

    if isinstance(event, PermissionRequested):
        # denied is sticky until the OS/browser setting changes
        if state in (MonitorState.IDLE, MonitorState.STOPPED):
            return replace(session, state=MonitorState.PERMISSION_PENDING), _NONE
        return session, _NONE

    if isinstance(event, PermissionGranted):
        if state is MonitorState.TRACKING:
            return session, _NONE
        return MonitorSession(state=MonitorState.TRACKING), (Action.START_POLLING,)

    if isinstance(event, PermissionDenied):
        return _leave_tracking(session, MonitorState.DENIED)

    if isinstance(event, PermissionPromptFailed):
        if state is MonitorState.PERMISSION_PENDING:
            return replace(session, state=MonitorState.IDLE), _NONE
        return session, _NONE

    if isinstance(event, (PermissionRevoked, Stop)):
        if state in (MonitorState.DENIED, MonitorState.STOPPED):
            return session, _NONE
        return _leave_tracking(session, MonitorState.STOPPED)

    # the remaining events only matter while tracking; late results from a
    # cycle that was cancelled are dropped here
    if state is not MonitorState.TRACKING:
        return session, _NONE

    if isinstance(event, SampleEvaluated):
        if event.in_radius:
            return replace(session, outside_radius_since=None), _NONE
        since = session.outside_radius_since
        if since is None:
            return replace(session, outside_radius_since=event.at), _NONE
        if event.at - since >= threshold:
            return session, (Action.AUTO_CHECK_OUT,)
        return session, _NONE

    if isinstance(event, CheckOutCompleted):
        return _leave_tracking(session, MonitorState.STOPPED)

    if isinstance(event, UserBackInRadius):
        return replace(session, outside_radius_since=None), _NONE

    raise TypeError(f"unknown monitor event: {event!r}")
