import logging
import signal
from pathlib import Path
from threading import Event
from typing import Optional

from alarms.cancellation import CancellationListener
from alarms.coordinator import AlarmLifecycleCoordinator, log_lifecycle_event
from alarms.daily_trigger import DailyTrigger
from alarms.events import CycleState
from alarms.restart import RestartScheduler
from alarms.settings import AlarmSettings, SettingsStore
from alarms.sleep import SleepInvoker
from alarms.sounds import AlarmSoundPlayer
from config import Config, load_config, setup_logging
from tray import TrayController

logger = logging.getLogger("stop_the_game")


def graceful_exit(signum, frame) -> None:  # pragma: no cover - signal handler
    logger.info("Shutting down (signal %s)", signum)
    raise KeyboardInterrupt()


def settings_defaults(config: Config) -> AlarmSettings:
    return AlarmSettings(
        alarm_time=config.alarm_time,
        sound_file=str(config.alarm_sound_path),
        volume=config.alarm_volume,
        duration=config.alarm_duration_seconds,
        enabled=config.alarm_enabled,
    )


class AlarmRuntime:
    def __init__(
        self,
        config: Config,
        settings_store: SettingsStore,
        tray: Optional[TrayController] = None,
        sound_player: Optional[AlarmSoundPlayer] = None,
        cancellation_listener: Optional[CancellationListener] = None,
        sleep_invoker: Optional[SleepInvoker] = None,
        restart_scheduler: Optional[RestartScheduler] = None,
        daily_trigger: Optional[DailyTrigger] = None,
    ):
        self.config = config
        self.settings_store = settings_store
        self.stop_event = Event()

        settings = settings_store.load()
        alarm_config = settings.to_alarm_config()

        self.sound_player = sound_player or AlarmSoundPlayer(
            alarm_config.sound_file,
            duration_seconds=settings.duration,
            volume=settings.volume,
        )
        self.cancellation_listener = cancellation_listener or CancellationListener()
        self.sleep_invoker = sleep_invoker or SleepInvoker(config.sleep_method, config.sleep_timeout_seconds)
        self.restart_scheduler = restart_scheduler or RestartScheduler()
        self.daily_trigger = daily_trigger or DailyTrigger(
            alarm_config.time,
            check_interval=config.daily_check_interval_ms / 1000.0,
        )
        self.coordinator = AlarmLifecycleCoordinator(
            config=alarm_config,
            sound_player=self.sound_player,
            cancellation_listener=self.cancellation_listener,
            sleep_invoker=self.sleep_invoker,
            restart_scheduler=self.restart_scheduler,
            sound_duration=settings.duration,
            restart_delay=config.restart_delay_seconds,
            daily_trigger=self.daily_trigger,
        )
        self.coordinator.add_observer(log_lifecycle_event)

        self.tray = tray
        if self.tray is not None:
            self.coordinator.add_observer(self.tray.handle_event)
            self.tray.on_menu_action("start", self._on_tray_start)
            self.tray.on_menu_action("stop", self._on_tray_stop)
            self.tray.on_menu_action("settings", self._on_tray_settings)
            self.tray.on_menu_action("exit", self._on_tray_exit)

    def start(self) -> None:
        if not self.sleep_invoker.validate_environment():
            logger.warning(
                "Sleep is not supported here (platform=%s method=%s); the alarm will ring but cannot suspend",
                self.sleep_invoker.platform,
                self.sleep_invoker.method,
            )
        if self.tray is not None:
            self.tray.start()
        self.coordinator.start_schedule()

    def shutdown(self) -> None:
        self.coordinator.shutdown()
        if self.tray is not None and self.tray.is_running():
            self.tray.stop()
        self.stop_event.set()

    def reload_settings(self) -> AlarmSettings:
        settings = self.settings_store.load()
        alarm_config = settings.to_alarm_config()
        self.sound_player.sound_path = alarm_config.sound_file
        self.sound_player.duration_seconds = settings.duration
        self.sound_player.volume = settings.volume
        self.coordinator.update_config(alarm_config, sound_duration=settings.duration)
        if not alarm_config.enabled and self.coordinator.schedule_running:
            self.coordinator.stop_schedule()
            self._sync_tray_schedule()
        return settings

    def _sync_tray_schedule(self) -> None:
        if self.tray is not None:
            self.tray.set_schedule_running(self.coordinator.schedule_running)

    def _on_tray_start(self, _action: str) -> None:
        if not self.coordinator.schedule_running:
            self.coordinator.start_schedule()
        self._sync_tray_schedule()

    def _on_tray_stop(self, _action: str) -> None:
        if self.coordinator.schedule_running:
            self.coordinator.stop_schedule()
        if self.coordinator.state in (CycleState.RINGING, CycleState.RESTART_ARMED):
            self.coordinator.abort("tray_stop")
        self._sync_tray_schedule()

    def _on_tray_settings(self, _action: str) -> None:
        logger.info("Reloading settings from %s", self.settings_store.path)
        self.reload_settings()

    def _on_tray_exit(self, _action: str) -> None:
        logger.info("Exit requested from tray")
        self.stop_event.set()


def main(env_path: Optional[Path] = None) -> None:
    config = load_config(env_path)
    setup_logging(config.log_level, config.log_dir)
    signal.signal(signal.SIGINT, graceful_exit)
    signal.signal(signal.SIGTERM, graceful_exit)
    logger.info("Starting Stop The Game (alarm_time=%s)", config.alarm_time)

    settings_store = SettingsStore(config.settings_path, defaults=settings_defaults(config))
    tray = TrayController(use_icon=config.tray_enabled)
    runtime = AlarmRuntime(config, settings_store, tray=tray)
    runtime.start()
    try:
        while not runtime.stop_event.is_set():
            runtime.stop_event.wait(0.5)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        runtime.shutdown()
        logger.info("Stop The Game exited")


if __name__ == "__main__":
    main()
