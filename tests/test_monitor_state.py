from datetime import datetime, timedelta, timezone

import pytest

from checkin_svc.monitor.state import (
    Action, CheckOutCompleted, MonitorSession, MonitorState, PermissionDenied, PermissionGranted,
    PermissionPromptFailed, PermissionRequested, PermissionRevoked, SampleEvaluated, Stop,
    UserBackInRadius, transition,
)

T0 = datetime(2025, 3, 1, 18, 0, tzinfo=timezone.utc)
FIVE_MIN = timedelta(minutes=5)
TRACKING = MonitorSession(state=MonitorState.TRACKING)


def step(session, event):
    return transition(session, event, threshold=FIVE_MIN)


def outside(seconds):
    return SampleEvaluated(in_radius=False, at=T0 + timedelta(seconds=seconds))


def inside(seconds):
    return SampleEvaluated(in_radius=True, at=T0 + timedelta(seconds=seconds))


def test_request_then_grant():
    s, actions = step(MonitorSession(), PermissionRequested())
    assert s.state is MonitorState.PERMISSION_PENDING and actions == ()
    s, actions = step(s, PermissionGranted())
    assert s.state is MonitorState.TRACKING
    assert actions == (Action.START_POLLING,)


def test_grant_while_tracking_is_a_no_op():
    s, actions = step(TRACKING, PermissionGranted())
    assert s is TRACKING and actions == ()


def test_prompt_failure_returns_to_idle():
    pending = MonitorSession(state=MonitorState.PERMISSION_PENDING)
    s, _ = step(pending, PermissionPromptFailed())
    assert s.state is MonitorState.IDLE


def test_denied_is_sticky_for_requests():
    denied = MonitorSession(state=MonitorState.DENIED)
    s, _ = step(denied, PermissionRequested())
    assert s.state is MonitorState.DENIED


def test_denial_while_tracking_stops_polling():
    s, actions = step(TRACKING, PermissionDenied())
    assert s.state is MonitorState.DENIED
    assert actions == (Action.STOP_POLLING,)


@pytest.mark.parametrize("event", [PermissionRevoked(), Stop()])
def test_leaving_tracking_clears_the_timer(event):
    s, actions = step(MonitorSession(MonitorState.TRACKING, T0), event)
    assert s == MonitorSession(state=MonitorState.STOPPED)
    assert actions == (Action.STOP_POLLING,)


def test_stop_is_idempotent():
    stopped = MonitorSession(state=MonitorState.STOPPED)
    assert step(stopped, Stop()) == (stopped, ())


def test_outside_samples_before_threshold_do_not_trigger():
    s = TRACKING
    for t in (0, 45, 90, 135):
        s, actions = step(s, outside(t))
        assert actions == ()
    assert s.outside_radius_since == T0


def test_sample_at_threshold_triggers():
    s, _ = step(TRACKING, outside(0))
    s, actions = step(s, outside(300))
    assert actions == (Action.AUTO_CHECK_OUT,)
    # the timer is kept until the check-out result comes back
    assert s.outside_radius_since == T0


def test_inside_sample_resets_the_timer():
    s, _ = step(TRACKING, outside(0))
    s, _ = step(s, outside(200))
    s, _ = step(s, inside(245))
    assert s.outside_radius_since is None
    s, _ = step(s, outside(290))
    assert s.outside_radius_since == T0 + timedelta(seconds=290)
    s, actions = step(s, outside(335))
    assert actions == ()


def test_check_out_completed_stops():
    s, actions = step(MonitorSession(MonitorState.TRACKING, T0), CheckOutCompleted())
    assert s.state is MonitorState.STOPPED
    assert actions == (Action.STOP_POLLING,)


def test_back_in_radius_keeps_tracking():
    s, actions = step(MonitorSession(MonitorState.TRACKING, T0), UserBackInRadius())
    assert s == TRACKING and actions == ()


@pytest.mark.parametrize("state", [MonitorState.IDLE, MonitorState.DENIED, MonitorState.STOPPED])
def test_late_samples_are_ignored(state):
    s = MonitorSession(state=state)
    assert step(s, outside(1000)) == (s, ())


def test_unknown_event():
    with pytest.raises(TypeError):
        step(TRACKING, object())
