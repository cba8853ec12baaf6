from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional


class ErrorKind(Enum):
    ALREADY_ACTIVE = "already_active"
    ALREADY_PLAYING = "already_playing"
    NOT_PLAYING = "not_playing"
    ALREADY_SCHEDULED = "already_scheduled"
    NOT_SCHEDULED = "not_scheduled"
    UNSUPPORTED_ENVIRONMENT = "unsupported_environment"
    INVOCATION_FAILED = "invocation_failed"


@dataclass(frozen=True)
class OpResult:
    """Outcome of a guarded operation. Truthy on success."""

    ok: bool
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, detail: Optional[str] = None) -> "OpResult":
        return cls(ok=True, detail=detail)

    @classmethod
    def failure(cls, error: ErrorKind, detail: Optional[str] = None) -> "OpResult":
        return cls(ok=False, error=error, detail=detail)


class CycleState(Enum):
    IDLE = "idle"
    RINGING = "ringing"
    CANCELLED = "cancelled"
    RESTART_ARMED = "restart_armed"
    SLEEPING = "sleeping"


class EventKind(Enum):
    SCHEDULED = "scheduled"
    RINGING = "ringing"
    CANCELLED = "cancelled"
    SLEEP_ATTEMPTED = "sleep_attempted"
    SLEEP_SUCCEEDED = "sleep_succeeded"
    SLEEP_FAILED = "sleep_failed"
    RESTART_ARMED = "restart_armed"
    RESTART_FIRED = "restart_fired"
    ABORTED = "aborted"


@dataclass(frozen=True)
class LifecycleEvent:
    kind: EventKind
    state: CycleState
    cycle_id: Optional[int] = None
    reason: Optional[str] = None
    cause: Optional[str] = None
    delay: Optional[float] = None
    alarm_time: Optional[str] = None
    emitted_at: float = field(default_factory=time.time)

    def describe(self) -> str:
        parts = [f"event={self.kind.value}", f"state={self.state.value}"]
        if self.cycle_id is not None:
            parts.append(f"cycle={self.cycle_id}")
        if self.alarm_time:
            parts.append(f"time={self.alarm_time}")
        if self.reason:
            parts.append(f"reason={self.reason}")
        if self.delay is not None:
            parts.append(f"delay={self.delay:g}s")
        if self.cause:
            parts.append(f"cause={self.cause}")
        return " ".join(parts)


LifecycleObserver = Callable[[LifecycleEvent], None]


@dataclass
class Cycle:
    id: int
    started_at: float
    deadline: float
    state: CycleState = CycleState.RINGING
    cancel_reason: Optional[str] = None
