from __future__ import annotations

import logging
import time
from dataclasses import replace
from functools import partial
from threading import RLock
from typing import Any, Callable, List, Optional

from time_utils import start_timer

from .cancellation import CancellationListener
from .daily_trigger import DailyTrigger
from .events import (
    Cycle,
    CycleState,
    ErrorKind,
    EventKind,
    LifecycleEvent,
    LifecycleObserver,
    OpResult,
)
from .restart import RestartScheduler
from .settings import AlarmConfig
from .sleep import SleepInvoker
from .sounds import AlarmSoundPlayer

logger = logging.getLogger(__name__)


class AlarmLifecycleCoordinator:
    """Runs the ring -> cancel-or-sleep -> recover cycle.

    All transitions happen under one lock. Deadline callbacks carry the id of
    the cycle that armed them, and the cancellation path checks the current
    state, so whichever of the two arrives second finds the cycle already
    resolved and does nothing.
    """

    def __init__(
        self,
        config: AlarmConfig,
        sound_player: AlarmSoundPlayer,
        cancellation_listener: CancellationListener,
        sleep_invoker: SleepInvoker,
        restart_scheduler: RestartScheduler,
        sound_duration: float = 30,
        restart_delay: float = 10,
        daily_trigger: Optional[DailyTrigger] = None,
        timer_factory: Callable[[float, Callable[[], None]], Any] = start_timer,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.sound_player = sound_player
        self.cancellation_listener = cancellation_listener
        self.sleep_invoker = sleep_invoker
        self.restart_scheduler = restart_scheduler
        self.sound_duration = sound_duration
        self.restart_delay = restart_delay
        self.daily_trigger = daily_trigger
        self.timer_factory = timer_factory
        self.clock = clock

        self._lock = RLock()
        self._state = CycleState.IDLE
        self._cycle: Optional[Cycle] = None
        self._deadline_timer: Any = None
        self._next_cycle_id = 1
        self._observers: List[LifecycleObserver] = []

        self.cancellation_listener.on_cancellation(self._on_cancellation)
        if self.daily_trigger is not None:
            self.daily_trigger.callback = self._on_daily_trigger

    # -- observers -------------------------------------------------------

    def add_observer(self, observer: LifecycleObserver) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def remove_observer(self, observer: LifecycleObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def _emit(self, kind: EventKind, cycle_id: Optional[int] = None, **details) -> None:
        if cycle_id is None and self._cycle is not None:
            cycle_id = self._cycle.id
        event = LifecycleEvent(kind=kind, state=self._state, cycle_id=cycle_id, **details)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.error("Lifecycle observer failed on %s", kind.value, exc_info=True)

    # -- queries ---------------------------------------------------------

    @property
    def state(self) -> CycleState:
        with self._lock:
            return self._state

    @property
    def active_cycle(self) -> Optional[Cycle]:
        with self._lock:
            return replace(self._cycle) if self._cycle else None

    @property
    def schedule_running(self) -> bool:
        return bool(self.daily_trigger and self.daily_trigger.is_running())

    def sound_remaining(self) -> int:
        return self.sound_player.remaining_time()

    def restart_remaining(self) -> int:
        return self.restart_scheduler.remaining_time()

    # -- control surface -------------------------------------------------

    def start_schedule(self) -> bool:
        if self.daily_trigger is None:
            logger.warning("No daily trigger configured")
            return False
        if not self.config.enabled:
            logger.info("Alarm disabled in settings, daily trigger not started")
            return False
        with self._lock:
            if not self.daily_trigger.start():
                return False
            self._emit(EventKind.SCHEDULED, alarm_time=self.config.time)
        return True

    def stop_schedule(self) -> bool:
        if self.daily_trigger is None:
            return False
        return self.daily_trigger.stop()

    def update_config(self, config: AlarmConfig, sound_duration: Optional[float] = None) -> None:
        """Apply new settings. A cycle already in flight keeps the old ones."""

        with self._lock:
            self.config = config
            if sound_duration is not None:
                self.sound_duration = sound_duration
            logger.info(
                "Alarm config updated (time=%s enabled=%s sound_file=%s duration=%ss)",
                config.time,
                config.enabled,
                config.sound_file,
                self.sound_duration,
            )
        if self.daily_trigger is not None:
            self.daily_trigger.update_time(config.time)

    def begin_cycle(self) -> OpResult:
        with self._lock:
            if self._cycle is not None:
                logger.warning(
                    "Cycle rejected, another cycle is active (cycle=%s state=%s)",
                    self._cycle.id,
                    self._state.value,
                )
                return OpResult.failure(ErrorKind.ALREADY_ACTIVE)
            if self._state == CycleState.RESTART_ARMED:
                logger.info("Ringing now, dropping pending restart")
                self.restart_scheduler.cancel()

            now = self.clock()
            cycle = Cycle(id=self._next_cycle_id, started_at=now, deadline=now + self.sound_duration)
            self._next_cycle_id += 1
            self._cycle = cycle
            self._set_state(CycleState.RINGING)
            logger.info("Cycle started (cycle=%s duration=%ss)", cycle.id, self.sound_duration)

            self.sound_player.play()
            self.cancellation_listener.start()
            self._deadline_timer = self.timer_factory(self.sound_duration, partial(self._on_deadline, cycle.id))
            self._emit(EventKind.RINGING, alarm_time=self.config.time)
        return OpResult.success()

    def abort(self, reason: str = "aborted") -> bool:
        with self._lock:
            if self._state == CycleState.IDLE:
                logger.warning("Nothing to abort, coordinator is idle")
                return False
            if self._state == CycleState.SLEEPING:
                logger.warning("Cannot abort while the sleep command is running")
                return False
            if self._state == CycleState.RINGING:
                self._cancel_deadline()
                self._silence()
            if self.restart_scheduler.is_scheduled():
                self.restart_scheduler.cancel()
            cycle_id = self._cycle.id if self._cycle else None
            self._cycle = None
            self._set_state(CycleState.IDLE)
            logger.info("Alarm aborted (reason=%s)", reason)
            self._emit(EventKind.ABORTED, cycle_id=cycle_id, reason=reason)
        return True

    def shutdown(self) -> None:
        if self.schedule_running:
            self.stop_schedule()
        if self.state in (CycleState.RINGING, CycleState.RESTART_ARMED):
            self.abort("shutdown")

    # -- race resolution -------------------------------------------------

    def _on_daily_trigger(self, alarm_time: str) -> None:
        logger.info("Daily alarm time reached (time=%s)", alarm_time)
        self.begin_cycle()

    def _on_cancellation(self, reason: str) -> None:
        with self._lock:
            if self._state != CycleState.RINGING or self._cycle is None:
                logger.debug("Cancellation ignored (state=%s)", self._state.value)
                return
            self._cancel_deadline()
            self._silence()
            cycle_id = self._cycle.id
            self._cycle.cancel_reason = reason
            self._set_state(CycleState.CANCELLED)
            self._emit(EventKind.CANCELLED, reason=reason)

            self._cycle = None
            result = self.restart_scheduler.schedule(self.restart_delay, self._on_restart_fired)
            if not result:
                logger.warning(
                    "Restart not armed, waiting for the next daily trigger (cycle=%s error=%s)",
                    cycle_id,
                    result.error.value if result.error else "unknown",
                )
                self._set_state(CycleState.IDLE)
                return
            self._set_state(CycleState.RESTART_ARMED)
            self._emit(EventKind.RESTART_ARMED, cycle_id=cycle_id, delay=self.restart_delay)

    def _on_restart_fired(self) -> None:
        with self._lock:
            if self._state != CycleState.RESTART_ARMED:
                logger.debug("Restart ignored (state=%s)", self._state.value)
                return
            self._set_state(CycleState.IDLE)
            self._emit(EventKind.RESTART_FIRED)
            self.begin_cycle()

    def _on_deadline(self, cycle_id: int) -> None:
        with self._lock:
            cycle = self._cycle
            if self._state != CycleState.RINGING or cycle is None or cycle.id != cycle_id:
                logger.debug("Stale deadline ignored (cycle=%s)", cycle_id)
                return
            self._deadline_timer = None
            if self.cancellation_listener.is_listening():
                self.cancellation_listener.stop()
            self._set_state(CycleState.SLEEPING)
            self._emit(EventKind.SLEEP_ATTEMPTED)

        # The suspend call can block up to its timeout; the SLEEPING state
        # keeps begin_cycle and the cancellation path out meanwhile.
        try:
            result = self.sleep_invoker.execute()
        except Exception as exc:
            logger.error("Sleep invoker raised (cycle=%s)", cycle.id, exc_info=True)
            result = OpResult.failure(ErrorKind.INVOCATION_FAILED, f"unexpected {type(exc).__name__}: {exc}")

        with self._lock:
            self._set_state(CycleState.IDLE)
            if result:
                self._emit(EventKind.SLEEP_SUCCEEDED, cycle_id=cycle.id)
            else:
                cause = result.error.value if result.error else "unknown"
                if result.detail:
                    cause = f"{cause}: {result.detail}"
                self._emit(EventKind.SLEEP_FAILED, cycle_id=cycle.id, cause=cause)
            self._cycle = None

    def _set_state(self, state: CycleState) -> None:
        self._state = state
        if self._cycle is not None:
            self._cycle.state = state

    def _cancel_deadline(self) -> None:
        if self._deadline_timer is not None:
            self._deadline_timer.cancel()
            self._deadline_timer = None

    def _silence(self) -> None:
        if self.sound_player.is_playing():
            self.sound_player.stop()
        if self.cancellation_listener.is_listening():
            self.cancellation_listener.stop()


def log_lifecycle_event(event: LifecycleEvent) -> None:
    level = logging.ERROR if event.kind == EventKind.SLEEP_FAILED else logging.INFO
    logger.log(level, "Lifecycle %s", event.describe())
