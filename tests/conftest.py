from __future__ import annotations

import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

from alarms.cancellation import CancellationListener
from alarms.coordinator import AlarmLifecycleCoordinator
from alarms.restart import RestartScheduler
from alarms.settings import AlarmConfig
from alarms.sleep import SleepInvoker
from alarms.sounds import AlarmSoundPlayer


class FakeTimer:
    def __init__(self, due: float, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeClock:
    """Manual monotonic clock; timers fire in due order inside advance()."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.timers = []

    def __call__(self) -> float:
        return self.now

    def start_timer(self, interval, callback) -> FakeTimer:
        timer = FakeTimer(self.now + interval, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and not t.fired and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = max(self.now, timer.due)
            timer.fired = True
            timer.callback()
        self.now = target


class FakeKeySource:
    def __init__(self, fail_open: bool = False):
        self.fail_open = fail_open
        self.handler = None
        self.last_handler = None
        self.open_count = 0
        self.close_count = 0

    def open(self, on_key) -> None:
        if self.fail_open:
            raise OSError("not a terminal")
        self.handler = on_key
        self.last_handler = on_key
        self.open_count += 1

    def close(self) -> None:
        self.handler = None
        self.close_count += 1

    def press(self, key: str = "a") -> None:
        if self.handler:
            self.handler(key)


class FakePlayback:
    def __init__(self, path, volume):
        self.path = path
        self.volume = volume
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class PlaybackRecorder:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.handles = []

    def __call__(self, path, volume):
        if self.error is not None:
            raise self.error
        handle = FakePlayback(path, volume)
        self.handles.append(handle)
        return handle


class FakeRunner:
    def __init__(self, returncode: int = 0, error: Exception | None = None, stdout: str = "", stderr: str = ""):
        self.returncode = returncode
        self.error = error
        self.stdout = stdout
        self.stderr = stderr
        self.calls = []

    def __call__(self, command, **kwargs):
        self.calls.append((command, kwargs))
        if self.error is not None:
            raise self.error
        return subprocess.CompletedProcess(command, self.returncode, self.stdout, self.stderr)


class RecordingObserver:
    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock
        self.events = []
        self.times = []

    def __call__(self, event) -> None:
        self.events.append(event)
        self.times.append(self.clock() if self.clock else None)

    @property
    def kinds(self):
        return [e.kind for e in self.events]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def key_source():
    return FakeKeySource()


@pytest.fixture
def playback():
    return PlaybackRecorder()


@pytest.fixture
def harness(clock, key_source, playback):
    def build(platform="win32", runner=None, duration=30, delay=10, playback_factory=None, daily_trigger=None):
        runner = runner or FakeRunner()
        sound = AlarmSoundPlayer(
            Path("alarm.wav"),
            duration_seconds=duration,
            playback_factory=playback_factory or playback,
            timer_factory=clock.start_timer,
            clock=clock,
        )
        listener = CancellationListener(key_source)
        sleep = SleepInvoker(method="auto", platform=platform, runner=runner)
        restart = RestartScheduler(timer_factory=clock.start_timer, clock=clock)
        coordinator = AlarmLifecycleCoordinator(
            AlarmConfig(time="21:00"),
            sound,
            listener,
            sleep,
            restart,
            sound_duration=duration,
            restart_delay=delay,
            daily_trigger=daily_trigger,
            timer_factory=clock.start_timer,
            clock=clock,
        )
        observer = RecordingObserver(clock)
        coordinator.add_observer(observer)
        return SimpleNamespace(
            coordinator=coordinator,
            sound=sound,
            listener=listener,
            sleep=sleep,
            restart=restart,
            runner=runner,
            observer=observer,
            clock=clock,
            keys=key_source,
            playback=playback,
        )

    return build
