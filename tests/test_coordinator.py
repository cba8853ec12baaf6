import logging
import subprocess
from datetime import datetime

from alarms.daily_trigger import DailyTrigger
from alarms.events import CycleState, ErrorKind, EventKind
from alarms.settings import AlarmConfig

from conftest import FakeRunner, PlaybackRecorder


def _terminal_kinds(kinds):
    return [k for k in kinds if k in (EventKind.CANCELLED, EventKind.SLEEP_ATTEMPTED)]


def test_uncancelled_alarm_puts_machine_to_sleep(harness):
    h = harness()
    assert h.coordinator.begin_cycle()
    assert h.coordinator.state == CycleState.RINGING
    assert h.sound.is_playing()
    assert h.listener.is_listening()

    h.clock.advance(29)
    assert h.observer.kinds == [EventKind.RINGING]

    h.clock.advance(1)
    assert h.observer.kinds == [EventKind.RINGING, EventKind.SLEEP_ATTEMPTED, EventKind.SLEEP_SUCCEEDED]
    assert EventKind.RESTART_ARMED not in h.observer.kinds
    assert h.coordinator.state == CycleState.IDLE
    assert h.coordinator.active_cycle is None
    assert not h.sound.is_playing()
    assert not h.listener.is_listening()
    assert len(h.runner.calls) == 1
    assert h.runner.calls[0][0][0] == "powershell.exe"


def test_keypress_cancels_and_rearms_after_delay(harness):
    h = harness()
    h.coordinator.begin_cycle()
    h.clock.advance(5)
    h.keys.press("x")

    cancelled = h.observer.events[1]
    assert cancelled.kind == EventKind.CANCELLED
    assert cancelled.reason == "manual"
    assert cancelled.cycle_id == 1
    assert h.observer.times[1] == 1005.0
    armed = h.observer.events[2]
    assert armed.kind == EventKind.RESTART_ARMED
    assert armed.delay == 10
    assert h.coordinator.state == CycleState.RESTART_ARMED
    assert not h.sound.is_playing()
    assert h.playback.handles[0].stopped
    assert h.coordinator.restart_remaining() == 10

    h.clock.advance(9.5)
    assert h.observer.kinds[-1] == EventKind.RESTART_ARMED

    h.clock.advance(0.5)
    assert h.observer.kinds[-2:] == [EventKind.RESTART_FIRED, EventKind.RINGING]
    assert h.observer.times[-1] == 1015.0
    assert h.coordinator.state == CycleState.RINGING
    assert h.coordinator.active_cycle.id == 2
    assert h.sound.is_playing()
    assert h.listener.is_listening()

    # the first cycle's deadline (t=1030) must not put the machine to sleep
    h.clock.advance(20)
    assert EventKind.SLEEP_ATTEMPTED not in h.observer.kinds
    assert h.runner.calls == []


def test_unsupported_platform_fails_sleep_without_raising(harness, caplog):
    h = harness(platform="sunos5")
    with caplog.at_level(logging.ERROR):
        h.coordinator.begin_cycle()
        h.clock.advance(30)

    assert h.observer.kinds == [EventKind.RINGING, EventKind.SLEEP_ATTEMPTED, EventKind.SLEEP_FAILED]
    assert "unsupported_environment" in h.observer.events[-1].cause
    assert h.runner.calls == []
    assert h.coordinator.state == CycleState.IDLE
    assert any("unsupported environment" in r.getMessage() for r in caplog.records)


def test_second_begin_cycle_is_rejected(harness, caplog):
    h = harness()
    assert h.coordinator.begin_cycle()
    with caplog.at_level(logging.WARNING):
        result = h.coordinator.begin_cycle()

    assert not result
    assert result.error == ErrorKind.ALREADY_ACTIVE
    assert len(h.playback.handles) == 1
    assert h.observer.kinds == [EventKind.RINGING]
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 1


def test_begin_cycle_rejected_while_sleep_command_runs(harness):
    attempts = []

    def runner(command, **kwargs):
        attempts.append(h.coordinator.begin_cycle())
        return subprocess.CompletedProcess(command, 0, "", "")

    h = harness(runner=runner)
    h.coordinator.begin_cycle()
    h.clock.advance(30)

    assert attempts[0].error == ErrorKind.ALREADY_ACTIVE
    assert h.observer.kinds[-1] == EventKind.SLEEP_SUCCEEDED


def test_late_keypress_after_deadline_is_ignored(harness):
    h = harness()
    h.coordinator.begin_cycle()
    h.clock.advance(30)
    stale_handler = h.keys.last_handler
    stale_handler("a")

    assert _terminal_kinds(h.observer.kinds) == [EventKind.SLEEP_ATTEMPTED]


def test_stale_deadline_after_cancellation_is_ignored(harness):
    h = harness()
    h.coordinator.begin_cycle()
    h.keys.press()
    h.coordinator._on_deadline(1)

    assert _terminal_kinds(h.observer.kinds) == [EventKind.CANCELLED]
    assert h.coordinator.state == CycleState.RESTART_ARMED


def test_interrupt_key_is_handled_like_manual_cancel(harness):
    h = harness()
    h.coordinator.begin_cycle()
    h.keys.press("\x03")

    assert h.observer.events[1].reason == "interrupt"
    assert h.observer.kinds[-1] == EventKind.RESTART_ARMED


def test_failed_sleep_returns_to_idle_and_allows_next_cycle(harness):
    h = harness(runner=FakeRunner(returncode=1, stderr="access denied"))
    h.coordinator.begin_cycle()
    h.clock.advance(30)

    failed = h.observer.events[-1]
    assert failed.kind == EventKind.SLEEP_FAILED
    assert "exit code 1" in failed.cause
    assert h.coordinator.state == CycleState.IDLE
    assert len(h.runner.calls) == 1

    h.clock.advance(3600)
    assert len(h.runner.calls) == 1
    assert h.coordinator.begin_cycle()
    assert h.coordinator.active_cycle.id == 2


def test_playback_failure_does_not_block_sleep(harness):
    h = harness(playback_factory=PlaybackRecorder(error=OSError("no audio device")))
    assert h.coordinator.begin_cycle()
    assert not h.sound.is_playing()
    h.clock.advance(30)

    assert h.observer.kinds == [EventKind.RINGING, EventKind.SLEEP_ATTEMPTED, EventKind.SLEEP_SUCCEEDED]


def test_abort_while_ringing_stops_everything(harness):
    h = harness()
    h.coordinator.begin_cycle()
    assert h.coordinator.abort("tray_stop")

    assert h.observer.kinds[-1] == EventKind.ABORTED
    assert h.observer.events[-1].reason == "tray_stop"
    assert not h.sound.is_playing()
    assert not h.listener.is_listening()
    h.clock.advance(60)
    assert EventKind.SLEEP_ATTEMPTED not in h.observer.kinds
    assert h.coordinator.state == CycleState.IDLE


def test_abort_drops_pending_restart(harness):
    h = harness()
    h.coordinator.begin_cycle()
    h.keys.press()
    assert h.coordinator.abort()

    assert not h.restart.is_scheduled()
    h.clock.advance(60)
    assert EventKind.RESTART_FIRED not in h.observer.kinds
    assert h.coordinator.state == CycleState.IDLE


def test_abort_when_idle_is_a_warned_noop(harness, caplog):
    h = harness()
    with caplog.at_level(logging.WARNING):
        assert not h.coordinator.abort()
    assert h.observer.kinds == []
    assert len([r for r in caplog.records if r.levelno >= logging.WARNING]) == 1


def test_begin_cycle_during_restart_window_rings_now(harness):
    h = harness()
    h.coordinator.begin_cycle()
    h.keys.press()
    h.clock.advance(3)

    assert h.coordinator.begin_cycle()
    assert not h.restart.is_scheduled()
    h.clock.advance(10)
    assert EventKind.RESTART_FIRED not in h.observer.kinds
    assert h.observer.kinds.count(EventKind.RINGING) == 2


def test_failing_observer_does_not_starve_others(harness):
    h = harness()

    def broken(event):
        raise RuntimeError("tray gone")

    h.coordinator.remove_observer(h.observer)
    h.coordinator.add_observer(broken)
    h.coordinator.add_observer(h.observer)
    h.coordinator.begin_cycle()

    assert h.observer.kinds == [EventKind.RINGING]


def test_schedule_start_emits_scheduled_and_trigger_begins_cycle(harness):
    trigger = DailyTrigger("21:00", now_fn=lambda: datetime(2025, 3, 1, 20, 0))
    h = harness(daily_trigger=trigger)
    try:
        assert h.coordinator.start_schedule()
        assert h.observer.events[0].kind == EventKind.SCHEDULED
        assert h.observer.events[0].alarm_time == "21:00"
        assert h.coordinator.schedule_running

        assert trigger.tick(datetime(2025, 3, 1, 21, 0))
        assert h.observer.kinds[-1] == EventKind.RINGING
        assert h.coordinator.state == CycleState.RINGING
    finally:
        h.coordinator.shutdown()

    assert not h.coordinator.schedule_running
    assert h.coordinator.state == CycleState.IDLE


def test_disabled_alarm_does_not_start_schedule(harness):
    trigger = DailyTrigger("21:00", now_fn=lambda: datetime(2025, 3, 1, 20, 0))
    h = harness(daily_trigger=trigger)
    h.coordinator.update_config(AlarmConfig(time="21:00", enabled=False))

    assert not h.coordinator.start_schedule()
    assert not trigger.is_running()
    assert h.observer.kinds == []


def test_update_config_applies_to_next_cycle(harness):
    trigger = DailyTrigger("21:00", now_fn=lambda: datetime(2025, 3, 1, 20, 0))
    h = harness(daily_trigger=trigger)
    h.coordinator.begin_cycle()
    h.coordinator.update_config(AlarmConfig(time="22:15"), sound_duration=45)

    h.clock.advance(30)
    assert h.observer.kinds[-1] == EventKind.SLEEP_SUCCEEDED
    assert trigger.alarm_time == "22:15"

    h.coordinator.begin_cycle()
    assert h.coordinator.active_cycle.deadline - h.coordinator.active_cycle.started_at == 45


def test_each_cycle_emits_exactly_one_terminal_event(harness):
    h = harness()
    h.coordinator.begin_cycle()
    h.keys.press()
    h.clock.advance(10)
    h.clock.advance(30)

    cycle_terminals = {}
    for event in h.observer.events:
        if event.kind in (EventKind.CANCELLED, EventKind.SLEEP_ATTEMPTED):
            cycle_terminals.setdefault(event.cycle_id, []).append(event.kind)
    assert cycle_terminals == {1: [EventKind.CANCELLED], 2: [EventKind.SLEEP_ATTEMPTED]}


def test_undecodable_sleep_output_still_returns_to_idle(harness):
    h = harness(runner=FakeRunner(error=UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")))
    h.coordinator.begin_cycle()
    h.clock.advance(30)

    assert h.observer.kinds == [EventKind.RINGING, EventKind.SLEEP_ATTEMPTED, EventKind.SLEEP_FAILED]
    assert "UnicodeDecodeError" in h.observer.events[-1].cause
    assert h.coordinator.state == CycleState.IDLE
    assert h.coordinator.begin_cycle()


def test_raising_sleep_invoker_still_returns_to_idle(harness, caplog):
    h = harness()

    def explode():
        raise RuntimeError("driver gone")

    h.coordinator.sleep_invoker.execute = explode
    h.coordinator.begin_cycle()
    with caplog.at_level(logging.ERROR):
        h.clock.advance(30)

    assert h.observer.kinds[-1] == EventKind.SLEEP_FAILED
    assert h.observer.events[-1].cause == "invocation_failed: unexpected RuntimeError: driver gone"
    assert h.coordinator.state == CycleState.IDLE
    assert h.coordinator.active_cycle is None
    assert "Sleep invoker raised" in caplog.text


def test_active_cycle_reports_current_state(harness):
    seen = []

    def runner(command, **kwargs):
        seen.append(h.coordinator.active_cycle.state)
        return subprocess.CompletedProcess(command, 0, "", "")

    h = harness(runner=runner)
    h.coordinator.begin_cycle()
    assert h.coordinator.active_cycle.state == CycleState.RINGING

    h.clock.advance(30)
    assert seen == [CycleState.SLEEPING]


def test_failed_restart_scheduling_goes_idle_without_announcing(harness, caplog):
    h = harness()
    assert h.restart.schedule(100, lambda: None)
    h.coordinator.begin_cycle()
    with caplog.at_level(logging.WARNING):
        h.keys.press()

    assert h.observer.kinds == [EventKind.RINGING, EventKind.CANCELLED]
    assert h.coordinator.state == CycleState.IDLE
    assert "Restart not armed" in caplog.text
    assert h.coordinator.begin_cycle()
