"""Alarm lifecycle for Stop The Game."""

from .coordinator import AlarmLifecycleCoordinator
from .events import CycleState, ErrorKind, EventKind, LifecycleEvent, OpResult
from .settings import AlarmConfig, AlarmSettings, SettingsStore
