from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from functools import partial
from threading import Lock
from typing import Any, Callable, Optional

from time_utils import start_timer

from .events import ErrorKind, OpResult

logger = logging.getLogger(__name__)


@dataclass
class RestartTicket:
    delay: float
    started_at: float
    callback: Callable[[], None]
    timer: Any = None

    @property
    def deadline(self) -> float:
        return self.started_at + self.delay


class RestartScheduler:
    """Holds at most one pending delayed re-trigger."""

    def __init__(
        self,
        timer_factory: Callable[[float, Callable[[], None]], Any] = start_timer,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timer_factory = timer_factory
        self.clock = clock
        self._lock = Lock()
        self._ticket: Optional[RestartTicket] = None

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> OpResult:
        with self._lock:
            if self._ticket is not None:
                logger.warning("Restart is already scheduled")
                return OpResult.failure(ErrorKind.ALREADY_SCHEDULED)
            ticket = RestartTicket(delay=max(0.0, delay_seconds), started_at=self.clock(), callback=callback)
            self._ticket = ticket
            ticket.timer = self.timer_factory(ticket.delay, partial(self._fire, ticket))
        logger.info("Restart scheduled (delay=%ss)", ticket.delay)
        return OpResult.success()

    def cancel(self) -> OpResult:
        with self._lock:
            ticket = self._ticket
            if ticket is None:
                logger.warning("No restart scheduled to cancel")
                return OpResult.failure(ErrorKind.NOT_SCHEDULED)
            self._ticket = None
        if ticket.timer is not None:
            ticket.timer.cancel()
        logger.info("Restart cancelled")
        return OpResult.success()

    def is_scheduled(self) -> bool:
        with self._lock:
            return self._ticket is not None

    def remaining_time(self) -> int:
        with self._lock:
            ticket = self._ticket
            if ticket is None:
                return 0
            elapsed = self.clock() - ticket.started_at
        return max(0, math.ceil(ticket.delay - elapsed))

    def _fire(self, ticket: RestartTicket) -> None:
        with self._lock:
            if self._ticket is not ticket:
                return
            self._ticket = None
        logger.info("Executing scheduled restart")
        try:
            ticket.callback()
        except Exception:
            logger.error("Restart callback failed", exc_info=True)
