from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta
from threading import Timer
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)

HHMM_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


def is_valid_hhmm(value: str) -> bool:
    return bool(value) and HHMM_RE.match(value.strip()) is not None


def parse_hhmm(value: str) -> Tuple[int, int]:
    match = HHMM_RE.match((value or "").strip())
    if not match:
        raise ValueError(f"Alarm time must be in HH:MM format, got {value!r}")
    return int(match.group(1)), int(match.group(2))


def now_local() -> datetime:
    return datetime.now().astimezone()


def fire_time_on(day: date, alarm_time: str, tzinfo=None) -> datetime:
    hours, minutes = parse_hhmm(alarm_time)
    return datetime.combine(day, time(hours, minutes), tzinfo=tzinfo)


def next_fire_at(now: datetime, alarm_time: str) -> datetime:
    """Next local wall-clock occurrence of ``alarm_time`` strictly after ``now``."""

    candidate = fire_time_on(now.date(), alarm_time, now.tzinfo)
    if candidate <= now:
        candidate = fire_time_on(now.date() + timedelta(days=1), alarm_time, now.tzinfo)
    return candidate


def start_timer(interval: float, callback: Callable[[], None], name: Optional[str] = None) -> Timer:
    timer = Timer(max(0.0, interval), callback)
    timer.daemon = True
    if name:
        timer.name = name
    timer.start()
    return timer
