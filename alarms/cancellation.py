from __future__ import annotations

import logging
import os
import select
import sys
from functools import partial
from threading import Event, Lock, Thread, current_thread
from typing import Callable, Optional

try:
    import termios
except ImportError:  # pragma: no cover - Windows
    termios = None  # type: ignore

try:
    import msvcrt
except ImportError:  # pragma: no cover - non-Windows
    msvcrt = None  # type: ignore

logger = logging.getLogger(__name__)

INTERRUPT_KEYS = {"\x03"}

CancellationCallback = Callable[[str], None]


class TerminalKeySource:
    """Delivers single keystrokes from the controlling terminal to a handler.

    While open the terminal is switched to non-canonical, no-echo mode with
    signal keys disabled, so Ctrl-C arrives as a key instead of SIGINT. The
    previous mode is restored on close.
    """

    def __init__(self, stream=None, poll_interval: float = 0.1):
        self.stream = stream or sys.stdin
        self.poll_interval = poll_interval
        self._stop_event = Event()
        self._thread: Optional[Thread] = None
        self._saved_mode = None

    def open(self, on_key: Callable[[str], None]) -> None:
        self._stop_event.clear()
        if termios and not msvcrt and self.stream.isatty():
            fd = self.stream.fileno()
            self._saved_mode = termios.tcgetattr(fd)
            mode = list(self._saved_mode)
            mode[3] &= ~(termios.ICANON | termios.ECHO | termios.ISIG)
            mode[6] = list(self._saved_mode[6])
            mode[6][termios.VMIN] = 1
            mode[6][termios.VTIME] = 0
            termios.tcsetattr(fd, termios.TCSANOW, mode)
        self._thread = Thread(target=self._read_loop, args=(on_key,), name="cancel-listener", daemon=True)
        self._thread.start()

    def close(self) -> None:
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread and thread is not current_thread():
            thread.join(timeout=1)
        if self._saved_mode is not None:
            try:
                termios.tcsetattr(self.stream.fileno(), termios.TCSADRAIN, self._saved_mode)
            except (termios.error, OSError, ValueError) as exc:
                logger.warning("Failed to restore terminal mode: %s", exc)
            self._saved_mode = None

    def _read_loop(self, on_key: Callable[[str], None]) -> None:  # pragma: no cover - terminal I/O
        while not self._stop_event.is_set():
            try:
                key = self._read_key()
            except EOFError:
                logger.warning("Input stream closed, keypress cancellation unavailable")
                return
            except OSError as exc:
                logger.error("Keypress read failed: %s", exc)
                return
            if key is not None and not self._stop_event.is_set():
                on_key(key)

    def _read_key(self) -> Optional[str]:  # pragma: no cover - terminal I/O
        if msvcrt:
            if msvcrt.kbhit():
                return msvcrt.getwch()
            self._stop_event.wait(self.poll_interval)
            return None
        ready, _, _ = select.select([self.stream], [], [], self.poll_interval)
        if not ready:
            return None
        data = os.read(self.stream.fileno(), 1)
        if not data:
            raise EOFError
        return data.decode("utf-8", errors="replace")


class CancellationListener:
    """Single-shot keypress listener: one event per arm, then it disarms itself."""

    def __init__(self, key_source=None):
        self.key_source = key_source or TerminalKeySource()
        self._lock = Lock()
        self._armed = False
        self._generation = 0
        self._callback: Optional[CancellationCallback] = None

    def on_cancellation(self, callback: CancellationCallback) -> None:
        self._callback = callback

    def start(self) -> bool:
        with self._lock:
            if self._armed:
                logger.warning("Cancellation listener is already running")
                return False
            self._generation += 1
            generation = self._generation
            try:
                self.key_source.open(partial(self._handle_key, generation))
            except Exception as exc:
                logger.error("Failed to arm keypress capture: %s", exc)
                return False
            self._armed = True
        logger.info("Cancellation listener started (press any key to cancel the alarm)")
        return True

    def stop(self) -> bool:
        with self._lock:
            if not self._armed:
                logger.warning("Cancellation listener is not running")
                return False
            self._armed = False
        self._release_source()
        logger.info("Cancellation listener stopped")
        return True

    def is_listening(self) -> bool:
        with self._lock:
            return self._armed

    def _handle_key(self, generation: int, key: str) -> None:
        with self._lock:
            if not self._armed or generation != self._generation:
                return
            self._armed = False
            callback = self._callback
        reason = "interrupt" if key in INTERRUPT_KEYS else "manual"
        logger.info("Alarm cancelled by user input (reason=%s)", reason)
        self._release_source()
        if callback:
            try:
                callback(reason)
            except Exception:
                logger.error("Cancellation callback failed", exc_info=True)

    def _release_source(self) -> None:
        try:
            self.key_source.close()
        except Exception as exc:
            logger.warning("Failed to release keypress capture: %s", exc)
