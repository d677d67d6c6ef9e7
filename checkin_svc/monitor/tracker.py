"""Client-side loop that checks an attendee out after they leave the venue.

While tracking, the monitor takes a position sample every poll interval (and
once immediately), reports it, asks whether it is inside the geofence, and
feeds the answer to the state machine in ``state.py``. After the attendee has
been outside for the threshold it asks the server to check them out; the
server re-validates against the last stored sample before committing.
"""
from __future__ import annotations
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..core.config import Settings
from ..services.outcomes import Failure
from .backend import CheckinBackend
from .device import (
    PermissionSource, PermissionStatus, PositionError, PositionErrorCode, PositionProvider,
)
from .scheduler import RepeatingTask, Scheduler
from .state import (
    Action, CheckOutCompleted, MonitorEvent, MonitorSession, MonitorState, PermissionDenied,
    PermissionGranted, PermissionPromptFailed, PermissionRequested, PermissionRevoked,
    SampleEvaluated, Stop, UserBackInRadius, transition,
)

logger = logging.getLogger(__name__)

DENIED_MESSAGE = "Location access denied. Manual check-out will be required."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MonitorConfig:
    radius_m: float = 150.0
    poll_interval_s: float = 45.0
    threshold: timedelta = timedelta(minutes=5)
    position_timeout_s: float = 10.0
    position_max_age_s: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "MonitorConfig":
        return cls(
            radius_m=settings.geofence_radius_meters,
            poll_interval_s=settings.poll_interval_seconds,
            threshold=timedelta(minutes=settings.auto_checkout_threshold_minutes),
            position_timeout_s=settings.position_timeout_seconds,
            position_max_age_s=settings.position_max_age_seconds,
        )


@dataclass(frozen=True)
class MonitorStatus:
    """What a UI needs to render the tracking banner."""
    state: MonitorState
    permission: PermissionStatus | None
    is_tracking: bool
    outside_radius_since: datetime | None
    last_error: str | None
    manual_checkout_required: bool


class GeofenceMonitor:
    def __init__(
        self,
        *,
        event_id: uuid.UUID,
        user_id: uuid.UUID,
        backend: CheckinBackend,
        positions: PositionProvider | None,
        scheduler: Scheduler,
        permissions: PermissionSource | None = None,
        config: MonitorConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
        on_check_out: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self.event_id = event_id
        self.user_id = user_id
        self.config = config or MonitorConfig()
        self._backend = backend
        self._positions = positions
        self._scheduler = scheduler
        self._permissions = permissions
        self._clock = clock
        self._on_check_out = on_check_out
        self._on_error = on_error

        self._session = MonitorSession()
        self._permission: PermissionStatus | None = None
        self._last_error: str | None = None
        self._venue_missing = False

        self._task: RepeatingTask | None = None
        self._position_fetch: asyncio.Future | None = None
        # bumped on every teardown; a cycle from an older generation is stale
        self._generation = 0
        self._cycle_lock = asyncio.Lock()
        self._unsubscribe: Callable[[], None] | None = None
        self._pending: set[asyncio.Task] = set()

    # --- status ---

    @property
    def session(self) -> MonitorSession:
        return self._session

    @property
    def status(self) -> MonitorStatus:
        manual = (
            self._session.state is MonitorState.DENIED
            or self._permission in (PermissionStatus.DENIED, PermissionStatus.UNSUPPORTED)
            or self._venue_missing
        )
        return MonitorStatus(
            state=self._session.state,
            permission=self._permission,
            is_tracking=self._session.state is MonitorState.TRACKING,
            outside_radius_since=self._session.outside_radius_since,
            last_error=self._last_error,
            manual_checkout_required=manual,
        )

    # --- lifecycle ---

    async def start(self) -> None:
        """Mount: look at the current permission without prompting."""
        if self._positions is None:
            await self._unsupported()
            return
        if self._permissions is None:
            return
        if self._unsubscribe is None:
            self._unsubscribe = self._permissions.subscribe(self._on_permission_change)
        current = await self._permissions.query()
        if current is None:
            return
        self._permission = current
        if current is PermissionStatus.GRANTED:
            await self._dispatch(PermissionGranted())
        elif current is PermissionStatus.DENIED:
            await self._dispatch(PermissionDenied())

    async def request_permission(self) -> bool:
        """User-initiated: take one fresh sample, which prompts if needed."""
        if self._positions is None:
            await self._unsupported()
            return False
        await self._dispatch(PermissionRequested())
        if self._session.state is not MonitorState.PERMISSION_PENDING:
            return self._session.state is MonitorState.TRACKING
        try:
            await self._positions.get_current_position(
                high_accuracy=True, timeout=self.config.position_timeout_s, maximum_age=0,
            )
        except PositionError as exc:
            if exc.code is PositionErrorCode.PERMISSION_DENIED:
                self._permission = PermissionStatus.DENIED
                self._report_error(DENIED_MESSAGE)
                await self._dispatch(PermissionDenied())
            else:
                self._report_error("Failed to get location")
                await self._dispatch(PermissionPromptFailed())
            return False
        self._permission = PermissionStatus.GRANTED
        await self._dispatch(PermissionGranted())
        return True

    async def permission_changed(self, status: PermissionStatus) -> None:
        if self._positions is None:
            return
        self._permission = status
        if status is PermissionStatus.GRANTED:
            await self._dispatch(PermissionGranted())
        else:
            await self._dispatch(PermissionRevoked())

    async def stop(self) -> None:
        """Unmount. Idempotent."""
        if self._unsubscribe is not None:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            unsubscribe()
        await self._dispatch(Stop())
        self._teardown()

    async def sample_once(self) -> None:
        """One polling cycle; also what the scheduler runs."""
        async with self._cycle_lock:
            if self._session.state is not MonitorState.TRACKING:
                return
            await self._cycle()

    # --- internals ---

    def _on_permission_change(self, status: PermissionStatus) -> None:
        task = asyncio.ensure_future(self.permission_changed(status))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _unsupported(self) -> None:
        self._permission = PermissionStatus.UNSUPPORTED
        self._report_error("Geolocation is not supported on this device")
        await self._dispatch(PermissionDenied())

    def _report_error(self, message: str) -> None:
        self._last_error = message
        if self._on_error is not None:
            self._on_error(message)

    async def _dispatch(self, event: MonitorEvent) -> None:
        before = self._session
        self._session, actions = transition(before, event, threshold=self.config.threshold)
        if before.state is not self._session.state:
            logger.info(
                "monitor %s/%s: %s -> %s",
                self.event_id, self.user_id, before.state.value, self._session.state.value,
            )
        for action in actions:
            if action is Action.STOP_POLLING:
                self._teardown()
            elif action is Action.START_POLLING:
                self._teardown()
                self._task = self._scheduler.every(self.config.poll_interval_s, self.sample_once)
                await self.sample_once()
            elif action is Action.AUTO_CHECK_OUT:
                await self._auto_check_out()

    def _teardown(self) -> None:
        self._generation += 1
        if self._task is not None:
            task, self._task = self._task, None
            task.cancel()
        fetch, self._position_fetch = self._position_fetch, None
        if fetch is not None and not fetch.done():
            fetch.cancel()

    async def _cycle(self) -> None:
        generation = self._generation
        fetch = asyncio.ensure_future(self._positions.get_current_position(
            high_accuracy=True,
            timeout=self.config.position_timeout_s,
            maximum_age=self.config.position_max_age_s,
        ))
        self._position_fetch = fetch
        try:
            position = await fetch
        except asyncio.CancelledError:
            if self._generation == generation:
                raise
            logger.debug("position fetch abandoned for %s/%s", self.event_id, self.user_id)
            return
        except PositionError as exc:
            if exc.code is PositionErrorCode.PERMISSION_DENIED:
                self._permission = PermissionStatus.DENIED
                self._report_error(DENIED_MESSAGE)
                await self._dispatch(PermissionDenied())
            else:
                logger.warning("position sample failed for %s/%s: %s", self.event_id, self.user_id, exc)
            return
        finally:
            if self._position_fetch is fetch:
                self._position_fetch = None

        try:
            tracked = await self._backend.track_location(self.event_id, self.user_id, position.lat, position.lng)
            if not tracked.ok:
                logger.warning(
                    "could not record location for %s/%s: %s", self.event_id, self.user_id, tracked.message
                )
            check = await self._backend.check_in_radius(
                self.event_id, self.user_id, position.lat, position.lng, self.config.radius_m
            )
        except Exception:
            logger.exception("sample for %s/%s dropped", self.event_id, self.user_id)
            return
        if self._generation != generation:
            logger.debug("discarding sample from a torn-down session for %s/%s", self.event_id, self.user_id)
            return
        if not check.ok:
            self._venue_missing = check.failure is Failure.VENUE_COORDINATES_REQUIRED
            logger.warning("radius check failed for %s/%s: %s", self.event_id, self.user_id, check.message)
            return
        self._venue_missing = False
        logger.debug(
            "sample for %s/%s: %.1fm from venue (in_radius=%s)",
            self.event_id, self.user_id, check.value.distance_m, check.value.in_radius,
        )
        await self._dispatch(SampleEvaluated(in_radius=check.value.in_radius, at=self._clock()))

    async def _auto_check_out(self) -> None:
        try:
            outcome = await self._backend.auto_check_out(self.event_id, self.user_id)
        except Exception:
            logger.exception("auto check-out for %s/%s raised", self.event_id, self.user_id)
            return
        if outcome.ok:
            logger.info("auto checked out %s at event %s", self.user_id, self.event_id)
            await self._dispatch(CheckOutCompleted())
            if self._on_check_out is not None:
                self._on_check_out()
        elif outcome.failure is Failure.BACK_IN_RADIUS:
            await self._dispatch(UserBackInRadius())
        else:
            # no retry here; the next sample re-evaluates and may try again
            logger.warning("auto check-out failed for %s/%s: %s", self.event_id, self.user_id, outcome.message)
