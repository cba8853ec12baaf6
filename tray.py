from __future__ import annotations

import logging
from threading import Lock, Thread
from typing import Callable, Dict, Optional

from alarms.events import EventKind, LifecycleEvent

try:
    import pystray
    from PIL import Image, ImageDraw
except ImportError:  # pragma: no cover - optional tray dependency
    pystray = None  # type: ignore
    Image = None  # type: ignore
    ImageDraw = None  # type: ignore

logger = logging.getLogger(__name__)

MENU_ACTIONS = ("start", "stop", "settings", "exit")

STATUS_COLORS = {
    "idle": (70, 110, 160),
    "ringing": (200, 60, 50),
    "restart": (220, 160, 40),
    "sleeping": (90, 90, 90),
}


def build_icon_image(status: str, size: int = 64):
    image = Image.new("RGB", (size, size), STATUS_COLORS.get(status, STATUS_COLORS["idle"]))
    draw = ImageDraw.Draw(image)
    draw.ellipse((8, 8, size - 9, size - 9), outline=(255, 255, 255), width=4)
    draw.line((size // 2, size // 2, size // 2, 16), fill=(255, 255, 255), width=4)
    draw.line((size // 2, size // 2, size - 20, size // 2), fill=(255, 255, 255), width=4)
    return image


class TrayController:
    """Menu commands in, lifecycle state out.

    Rendering goes through pystray when it is installed and ``use_icon`` is
    set; otherwise the controller still tracks menu state so the runtime can
    be driven headless.
    """

    def __init__(self, title: str = "Stop The Game", use_icon: bool = True):
        self.title = title
        self.use_icon = use_icon
        self.status = "idle"
        self.menu_state: Dict[str, bool] = {"start": True, "stop": False, "settings": True, "exit": True}
        self._callbacks: Dict[str, Callable[[str], None]] = {}
        self._lock = Lock()
        self._icon = None
        self._thread: Optional[Thread] = None
        self._running = False

    def on_menu_action(self, action: str, callback: Callable[[str], None]) -> None:
        self._callbacks[action] = callback

    def trigger_menu_action(self, action: str) -> bool:
        callback = self._callbacks.get(action)
        if not callback:
            logger.warning("No callback registered for menu action %s", action)
            return False
        logger.info("Tray menu action (action=%s)", action)
        try:
            callback(action)
        except Exception:
            logger.error("Tray action %s failed", action, exc_info=True)
            return False
        return True

    def update_menu_state(self, item: str, enabled: bool) -> bool:
        if item not in MENU_ACTIONS:
            logger.warning("Invalid menu item %s", item)
            return False
        with self._lock:
            self.menu_state[item] = enabled
        self._refresh()
        return True

    def set_schedule_running(self, running: bool) -> None:
        with self._lock:
            self.menu_state["start"] = not running
            self.menu_state["stop"] = running
        self._refresh()

    def handle_event(self, event: LifecycleEvent) -> None:
        if event.kind == EventKind.SCHEDULED:
            self.set_schedule_running(True)
            return
        if event.kind in (EventKind.RINGING, EventKind.CANCELLED):
            status = "ringing"
        elif event.kind == EventKind.RESTART_ARMED:
            status = "restart"
        elif event.kind == EventKind.SLEEP_ATTEMPTED:
            status = "sleeping"
        elif event.kind in (EventKind.SLEEP_SUCCEEDED, EventKind.SLEEP_FAILED, EventKind.ABORTED):
            status = "idle"
        else:
            return
        with self._lock:
            self.status = status
        self._refresh()

    def start(self) -> bool:
        if self._running:
            logger.warning("System tray is already running")
            return False
        self._running = True
        if not self.use_icon:
            logger.info("System tray icon disabled, running headless")
            return True
        if not pystray or not Image:
            logger.warning("pystray/Pillow not installed, running without tray icon")
            return True
        try:
            self._icon = pystray.Icon(
                "stop_the_game",
                build_icon_image(self.status),
                self._tooltip(),
                menu=self._build_menu(),
            )
            self._thread = Thread(target=self._icon.run, name="tray", daemon=True)
            self._thread.start()
        except Exception as exc:
            logger.error("Failed to start system tray: %s", exc)
            self._icon = None
            return True
        logger.info("System tray started (title=%s)", self.title)
        return True

    def stop(self) -> bool:
        if not self._running:
            logger.warning("System tray is not running")
            return False
        self._running = False
        if self._icon is not None:
            try:
                self._icon.stop()
            except Exception as exc:
                logger.debug("Tray icon stop failed: %s", exc)
            self._icon = None
        self._thread = None
        logger.info("System tray stopped")
        return True

    def is_running(self) -> bool:
        return self._running

    def _tooltip(self) -> str:
        return f"{self.title} ({self.status})"

    def _build_menu(self):
        def item(label: str, action: str):
            return pystray.MenuItem(
                label,
                lambda icon, menu_item: self.trigger_menu_action(action),
                enabled=lambda menu_item: self.menu_state.get(action, False),
            )

        return pystray.Menu(
            item("Start Alarm", "start"),
            item("Stop Alarm", "stop"),
            item("Settings", "settings"),
            pystray.Menu.SEPARATOR,
            item("Exit", "exit"),
        )

    def _refresh(self) -> None:
        icon = self._icon
        if icon is None:
            return
        try:
            icon.icon = build_icon_image(self.status)
            icon.title = self._tooltip()
            icon.update_menu()
        except Exception as exc:
            logger.debug("Tray refresh failed: %s", exc)
