from __future__ import annotations

import logging
from datetime import date, datetime
from threading import Event, Lock, Thread
from typing import Callable, Optional

from time_utils import fire_time_on, next_fire_at, now_local, parse_hhmm

logger = logging.getLogger(__name__)


class DailyTrigger:
    """Fires ``callback(alarm_time)`` once per calendar day at a local wall-clock time.

    The wall clock is polled rather than slept on, and the last firing date is
    remembered, so DST shifts and manual clock changes neither double-fire nor
    skip the day. A time that has already passed when the trigger is started
    (or retimed) counts as today's firing.
    """

    def __init__(
        self,
        alarm_time: str,
        callback: Optional[Callable[[str], None]] = None,
        check_interval: float = 1.0,
        now_fn: Callable[[], datetime] = now_local,
    ):
        parse_hhmm(alarm_time)
        self.alarm_time = alarm_time
        self.callback = callback
        self.check_interval = max(0.2, check_interval)
        self.now_fn = now_fn
        self._lock = Lock()
        self._running = False
        self._last_fired: Optional[date] = None
        self._stop_event = Event()
        self._thread: Optional[Thread] = None

    def start(self, run_loop: bool = True) -> bool:
        with self._lock:
            if self._running:
                logger.warning("Daily trigger is already running")
                return False
            self._running = True
            self._last_fired = None
            self._mark_passed(self._wall_clock())
        self._stop_event.clear()
        if run_loop:
            self._thread = Thread(target=self._loop, name="daily-trigger", daemon=True)
            self._thread.start()
        logger.info("Daily trigger started (time=%s next=%s)", self.alarm_time, self.next_fire_at().isoformat())
        return True

    def stop(self) -> bool:
        with self._lock:
            if not self._running:
                logger.warning("Daily trigger is not running")
                return False
            self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
            self._thread = None
        logger.info("Daily trigger stopped")
        return True

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def update_time(self, alarm_time: str) -> None:
        parse_hhmm(alarm_time)
        with self._lock:
            self.alarm_time = alarm_time
            self._mark_passed(self._wall_clock())
        logger.info("Daily trigger retimed (time=%s)", alarm_time)

    def next_fire_at(self) -> datetime:
        now = self._wall_clock()
        with self._lock:
            candidate = next_fire_at(now, self.alarm_time)
            if self._last_fired is not None and candidate.date() <= self._last_fired:
                candidate = next_fire_at(fire_time_on(candidate.date(), self.alarm_time), self.alarm_time)
        return candidate

    def tick(self, now: Optional[datetime] = None) -> bool:
        """Fire if today's time has been reached and today has not fired yet."""

        now = self._wall_clock() if now is None else now.replace(tzinfo=None)
        with self._lock:
            if not self._running:
                return False
            today = now.date()
            if self._last_fired is not None and today <= self._last_fired:
                return False
            if now < fire_time_on(today, self.alarm_time):
                return False
            self._last_fired = today
            alarm_time = self.alarm_time
            callback = self.callback
        logger.info("Alarm triggered (time=%s)", alarm_time)
        if callback is None:
            logger.warning("Daily trigger fired with no callback registered")
            return True
        try:
            callback(alarm_time)
        except Exception:
            logger.error("Daily trigger callback failed", exc_info=True)
        return True

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(self.check_interval)

    def _wall_clock(self) -> datetime:
        return self.now_fn().replace(tzinfo=None)

    def _mark_passed(self, now: datetime) -> None:
        if self._last_fired != now.date() and now >= fire_time_on(now.date(), self.alarm_time):
            self._last_fired = now.date()
