import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from time_utils import is_valid_hhmm

SLEEP_METHODS = {"auto", "powershell", "rundll32", "systemctl", "pmset"}


def _get_env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip() in {"1", "true", "True", "yes", "YES", "y"}


def _get_env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _get_env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return float(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


@dataclass
class Config:
    alarm_time: str
    alarm_enabled: bool
    alarm_sound_path: Path
    alarm_duration_seconds: float
    alarm_volume: float
    restart_delay_seconds: float
    sleep_method: str
    sleep_timeout_seconds: float
    settings_path: Path
    daily_check_interval_ms: int
    tray_enabled: bool
    log_level: str
    log_dir: Path


def load_config(env_path: Optional[Path] = None) -> Config:
    if env_path is None:
        env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    alarm_time = os.getenv("ALARM_TIME", "21:00").strip()
    alarm_enabled = _get_env_bool("ALARM_ENABLED", True)
    alarm_sound_path = Path(os.getenv("ALARM_SOUND_PATH", "sounds/alarm.wav"))
    alarm_duration_seconds = _get_env_float("ALARM_DURATION_SECONDS", 30.0)
    alarm_volume = _get_env_float("ALARM_VOLUME", 1.0)
    restart_delay_seconds = _get_env_float("RESTART_DELAY_SECONDS", 10.0)
    sleep_method = os.getenv("SLEEP_METHOD", "auto").strip().lower()
    sleep_timeout_seconds = _get_env_float("SLEEP_TIMEOUT_SECONDS", 5.0)
    settings_path = Path(os.getenv("SETTINGS_PATH", "config/settings.json"))
    daily_check_interval_ms = _get_env_int("DAILY_CHECK_INTERVAL_MS", 1000)
    tray_enabled = _get_env_bool("TRAY_ENABLED", True)
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = Path(os.getenv("LOG_DIR", "logs"))

    if not is_valid_hhmm(alarm_time):
        raise ValueError(f"ALARM_TIME must be in HH:MM format, got {alarm_time!r}")
    if sleep_method not in SLEEP_METHODS:
        raise ValueError(f"SLEEP_METHOD must be one of {sorted(SLEEP_METHODS)}, got {sleep_method!r}")
    if alarm_duration_seconds <= 0:
        raise ValueError("ALARM_DURATION_SECONDS must be positive")
    if restart_delay_seconds < 0:
        raise ValueError("RESTART_DELAY_SECONDS must not be negative")

    return Config(
        alarm_time=alarm_time,
        alarm_enabled=alarm_enabled,
        alarm_sound_path=alarm_sound_path,
        alarm_duration_seconds=alarm_duration_seconds,
        alarm_volume=alarm_volume,
        restart_delay_seconds=restart_delay_seconds,
        sleep_method=sleep_method,
        sleep_timeout_seconds=sleep_timeout_seconds,
        settings_path=settings_path,
        daily_check_interval_ms=daily_check_interval_ms,
        tray_enabled=tray_enabled,
        log_level=log_level,
        log_dir=log_dir,
    )


def setup_logging(log_level: str = "INFO", logs_dir: Path = Path("logs")) -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)

    log_path = logs_dir / "stop_the_game.log"
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        handlers=[file_handler, console_handler],
    )
