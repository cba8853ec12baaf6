from __future__ import annotations

import logging
import math
import time
import wave
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Any, Callable, Optional

from audio_io import WavLoopPlayback, pyaudio_available
from time_utils import start_timer

from .events import ErrorKind, OpResult

try:
    import winsound
except ImportError:  # pragma: no cover - non-Windows fallback
    winsound = None  # type: ignore

logger = logging.getLogger(__name__)


def ensure_alarm_sound(path: Path, duration_seconds: float = 1.5) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    sample_rate = 24000
    freq = 880.0
    amplitude = 0.4
    samples = int(duration_seconds * sample_rate)
    frames = bytearray()
    for i in range(samples):
        value = int(32767 * amplitude * math.sin(2 * math.pi * freq * i / sample_rate))
        frames.extend(value.to_bytes(2, byteorder="little", signed=True))
    with wave.open(str(path), "w") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(frames)
    logger.info("Generated default alarm sound at %s", path)


class WinsoundPlayback:
    def __init__(self, path: Path):
        winsound.PlaySound(
            str(path),
            winsound.SND_FILENAME | winsound.SND_LOOP | winsound.SND_ASYNC,
        )

    def stop(self) -> None:
        try:
            winsound.PlaySound(None, winsound.SND_PURGE)
        except RuntimeError:
            logger.debug("winsound.PlaySound purge failed")


class BeepLoopPlayback:
    """Last-resort playback when no audio backend is usable."""

    def __init__(self, interval: float = 0.75):
        self.interval = interval
        self._stop_event = Event()
        self._thread = Thread(target=self._beep_loop, name="alarm-beep", daemon=True)
        self._thread.start()

    def _beep_loop(self) -> None:  # pragma: no cover - timing loop
        while not self._stop_event.is_set():
            if winsound:
                try:
                    winsound.Beep(880, 250)
                except RuntimeError:
                    logger.debug("winsound.Beep failed inside loop")
            else:
                logger.info("Alarm ringing...")
            self._stop_event.wait(self.interval)

    def stop(self) -> None:
        self._stop_event.set()


def open_playback(path: Path, volume: float = 1.0):
    ensure_alarm_sound(path)
    if winsound:
        try:
            return WinsoundPlayback(path)
        except RuntimeError:
            logger.warning("winsound.PlaySound failed, falling back to beep loop")
            return BeepLoopPlayback()
    if pyaudio_available():
        return WavLoopPlayback(path, volume=volume)
    logger.warning("No audio backend available, using log beep loop")
    return BeepLoopPlayback()


@dataclass
class SoundSession:
    handle: Any
    started_at: float
    deadline: float
    timer: Any = None


class AlarmSoundPlayer:
    """Plays the alarm loop with a hard cap on how long it may ring."""

    def __init__(
        self,
        sound_path: Path,
        duration_seconds: float = 30,
        volume: float = 1.0,
        playback_factory: Callable[[Path, float], Any] = open_playback,
        timer_factory: Callable[[float, Callable[[], None]], Any] = start_timer,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sound_path = Path(sound_path)
        self.duration_seconds = duration_seconds
        self.volume = volume
        self.playback_factory = playback_factory
        self.timer_factory = timer_factory
        self.clock = clock
        self._lock = Lock()
        self._session: Optional[SoundSession] = None

    def play(self) -> OpResult:
        with self._lock:
            if self._session is not None:
                logger.warning("Alarm sound is already playing")
                return OpResult.failure(ErrorKind.ALREADY_PLAYING)
            try:
                handle = self.playback_factory(self.sound_path, self.volume)
            except Exception as exc:
                logger.error("Failed to play alarm sound (sound_file=%s error=%s)", self.sound_path, exc)
                return OpResult.failure(ErrorKind.INVOCATION_FAILED, str(exc))
            now = self.clock()
            session = SoundSession(handle=handle, started_at=now, deadline=now + self.duration_seconds)
            self._session = session
            session.timer = self.timer_factory(self.duration_seconds, partial(self._on_duration_elapsed, session))
        logger.info(
            "Alarm sound started (duration=%s volume=%s sound_file=%s)",
            self.duration_seconds,
            self.volume,
            self.sound_path,
        )
        return OpResult.success()

    def stop(self) -> OpResult:
        return self._stop_session(None, reason="stopped")

    def is_playing(self) -> bool:
        with self._lock:
            return self._session is not None

    def remaining_time(self) -> int:
        with self._lock:
            if self._session is None:
                return 0
            return max(0, math.ceil(self._session.deadline - self.clock()))

    def _on_duration_elapsed(self, session: SoundSession) -> None:
        self._stop_session(session, reason="duration_elapsed")

    def _stop_session(self, expected: Optional[SoundSession], reason: str) -> OpResult:
        with self._lock:
            session = self._session
            if session is None or (expected is not None and session is not expected):
                if expected is None:
                    logger.warning("Alarm sound is not playing")
                return OpResult.failure(ErrorKind.NOT_PLAYING)
            self._session = None
        if session.timer is not None:
            session.timer.cancel()
        try:
            session.handle.stop()
        except Exception as exc:
            logger.error("Failed to stop alarm playback cleanly: %s", exc)
        logger.info("Alarm sound stopped (reason=%s)", reason)
        return OpResult.success(reason)
