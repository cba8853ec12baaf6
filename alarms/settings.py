from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, List, Optional

from time_utils import is_valid_hhmm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlarmConfig:
    time: str = "21:00"
    enabled: bool = True
    sound_file: Path = Path("sounds/alarm.wav")

    def __post_init__(self) -> None:
        if not is_valid_hhmm(self.time):
            raise ValueError(f"Alarm time must be in HH:MM format, got {self.time!r}")


@dataclass
class AlarmSettings:
    alarm_time: str = "21:00"
    sound_file: str = "sounds/alarm.wav"
    volume: float = 1.0
    duration: float = 30
    enabled: bool = True

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict, defaults: Optional["AlarmSettings"] = None) -> "AlarmSettings":
        base = defaults or cls()
        known = {f.name for f in fields(cls)}
        merged = {**base.to_dict(), **{k: v for k, v in (data or {}).items() if k in known}}
        return cls(**merged)

    def to_alarm_config(self) -> AlarmConfig:
        return AlarmConfig(time=self.alarm_time, enabled=self.enabled, sound_file=Path(self.sound_file))


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def validate_settings(settings: AlarmSettings) -> ValidationResult:
    errors: List[str] = []
    if not isinstance(settings.alarm_time, str) or not is_valid_hhmm(settings.alarm_time):
        errors.append("Invalid alarm time format")
    try:
        if not 0.0 <= float(settings.volume) <= 1.0:
            errors.append("Volume must be between 0.0 and 1.0")
    except (TypeError, ValueError):
        errors.append("Volume must be a number")
    try:
        if float(settings.duration) <= 0:
            errors.append("Duration must be a positive number")
    except (TypeError, ValueError):
        errors.append("Duration must be a number")
    if not settings.sound_file or not str(settings.sound_file).strip():
        errors.append("Sound file path cannot be empty")
    return ValidationResult(is_valid=not errors, errors=errors)


class SettingsStore:
    """JSON-backed alarm settings with validation on every write."""

    def __init__(self, path: Path, defaults: Optional[AlarmSettings] = None):
        self.path = Path(path)
        self.defaults = defaults or AlarmSettings()
        self._current: Optional[AlarmSettings] = None

    def load(self) -> AlarmSettings:
        if not self.path.exists():
            logger.info("Settings file not found, using defaults (path=%s)", self.path)
            self._current = replace(self.defaults)
            return replace(self._current)
        try:
            with self.path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
            if not isinstance(payload, dict):
                raise ValueError("settings payload must be a JSON object")
            loaded = AlarmSettings.from_dict(payload, defaults=self.defaults)
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Failed to parse settings file %s: %s", self.path, exc)
            self._current = replace(self.defaults)
            return replace(self._current)
        validation = validate_settings(loaded)
        if not validation.is_valid:
            logger.warning("Settings file has invalid values, using defaults (errors=%s)", validation.errors)
            loaded = replace(self.defaults)
        self._current = loaded
        logger.info("Settings loaded (path=%s settings=%s)", self.path, loaded.to_dict())
        return replace(loaded)

    def save(self, settings: AlarmSettings) -> bool:
        validation = validate_settings(settings)
        if not validation.is_valid:
            logger.warning("Cannot save invalid settings (errors=%s)", validation.errors)
            return False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", encoding="utf-8") as f:
                json.dump(settings.to_dict(), f, ensure_ascii=False, indent=2)
        except OSError as exc:
            logger.error("Failed to save settings to %s: %s", self.path, exc)
            return False
        self._current = replace(settings)
        logger.info("Settings saved (path=%s)", self.path)
        return True

    def get(self) -> Optional[AlarmSettings]:
        return replace(self._current) if self._current else None

    def update_setting(self, key: str, value: Any) -> bool:
        if self._current is None:
            logger.warning("No settings loaded to update")
            return False
        if key not in {f.name for f in fields(AlarmSettings)}:
            logger.warning("Unknown setting %s", key)
            return False
        candidate = replace(self._current, **{key: value})
        validation = validate_settings(candidate)
        if not validation.is_valid:
            logger.warning("Invalid setting value (key=%s value=%r errors=%s)", key, value, validation.errors)
            return False
        saved = self.save(candidate)
        if saved:
            logger.info("Setting updated (key=%s value=%r)", key, value)
        return saved

    def reset_to_defaults(self) -> bool:
        saved = self.save(replace(self.defaults))
        if saved:
            logger.info("Settings reset to defaults")
        return saved
