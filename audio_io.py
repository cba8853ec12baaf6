import logging
import wave
from pathlib import Path
from threading import Event, Thread
from typing import Optional

import numpy as np

try:
    import pyaudio
except ImportError:  # pragma: no cover - optional dep
    pyaudio = None  # type: ignore

logger = logging.getLogger(__name__)


def pyaudio_available() -> bool:
    return pyaudio is not None


def create_pyaudio() -> "pyaudio.PyAudio":
    if pyaudio is None:
        raise RuntimeError("pyaudio is not installed")
    pa = pyaudio.PyAudio()
    return pa


def scale_volume(frames: bytes, volume: float) -> bytes:
    if volume >= 1.0:
        return frames
    samples = np.frombuffer(frames, dtype=np.int16).astype(np.float32)
    scaled = np.clip(samples * max(0.0, volume), -32768, 32767)
    return scaled.astype(np.int16).tobytes()


class WavLoopPlayback:
    """Loops a 16-bit PCM WAV file on the default output device until stopped."""

    def __init__(self, path: Path, volume: float = 1.0, chunk_frames: int = 1024):
        self.path = Path(path)
        self.volume = volume
        self.chunk_frames = chunk_frames
        self._stop_event = Event()

        with wave.open(str(self.path), "rb") as wav:
            if wav.getsampwidth() != 2:
                raise ValueError(f"Only 16-bit WAV files are supported: {self.path}")
            self.channels = wav.getnchannels()
            self.rate = wav.getframerate()
            self._frames = scale_volume(wav.readframes(wav.getnframes()), volume)

        self.pa = create_pyaudio()
        try:
            self.stream = self.pa.open(
                format=pyaudio.paInt16,
                channels=self.channels,
                rate=self.rate,
                output=True,
            )
        except Exception:
            self.pa.terminate()
            raise
        self._thread: Optional[Thread] = Thread(target=self._loop, name="alarm-playback", daemon=True)
        self._thread.start()
        logger.info("WAV loop started (path=%s rate=%s channels=%s)", self.path, self.rate, self.channels)

    def _loop(self) -> None:  # pragma: no cover - audio device loop
        chunk_bytes = self.chunk_frames * self.channels * 2
        while not self._stop_event.is_set():
            for offset in range(0, len(self._frames), chunk_bytes):
                if self._stop_event.is_set():
                    break
                self.stream.write(self._frames[offset : offset + chunk_bytes])

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
            self._thread = None
        try:
            self.stream.stop_stream()
            self.stream.close()
        finally:
            self.pa.terminate()
