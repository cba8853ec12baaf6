from __future__ import annotations

import logging
import subprocess
import sys
from typing import Callable, Dict, List, Tuple

from .events import ErrorKind, OpResult

logger = logging.getLogger(__name__)

POWERSHELL_SUSPEND = (
    "Add-Type -AssemblyName System.Windows.Forms; "
    "[System.Windows.Forms.Application]::SetSuspendState([System.Windows.Forms.PowerState]::Suspend, $false, $true)"
)

SLEEP_COMMANDS: Dict[str, Tuple[Tuple[str, ...], List[str]]] = {
    "powershell": (("win32",), ["powershell.exe", "-Command", POWERSHELL_SUSPEND]),
    "rundll32": (("win32",), ["rundll32.exe", "powrprof.dll,SetSuspendState", "0,1,0"]),
    "systemctl": (("linux",), ["systemctl", "suspend"]),
    "pmset": (("darwin",), ["pmset", "sleepnow"]),
}

DEFAULT_METHODS = {
    "win32": "powershell",
    "linux": "systemctl",
    "darwin": "pmset",
}


def _platform_key(platform: str) -> str:
    return "linux" if platform.startswith("linux") else platform


class SleepInvoker:
    """Suspends the machine. Every outcome comes back as an OpResult."""

    def __init__(
        self,
        method: str = "auto",
        timeout_seconds: float = 5.0,
        platform: str = sys.platform,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.platform = _platform_key(platform)
        if method == "auto":
            method = DEFAULT_METHODS.get(self.platform, "powershell")
        if method not in SLEEP_COMMANDS:
            raise ValueError(f"Unsupported sleep method: {method}")
        self.method = method
        self.timeout_seconds = timeout_seconds
        self.runner = runner

    def validate_environment(self) -> bool:
        platforms, _ = SLEEP_COMMANDS[self.method]
        return self.platform in platforms

    def build_command(self) -> List[str]:
        return list(SLEEP_COMMANDS[self.method][1])

    def execute(self) -> OpResult:
        if not self.validate_environment():
            logger.error(
                "Sleep not attempted: unsupported environment (platform=%s method=%s)",
                self.platform,
                self.method,
            )
            return OpResult.failure(ErrorKind.UNSUPPORTED_ENVIRONMENT, f"{self.method} on {self.platform}")

        command = self.build_command()
        command_text = " ".join(command)
        logger.debug("Sleep command prepared (timeout=%ss): %s", self.timeout_seconds, command_text)
        try:
            result = self.runner(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired:
            detail = f"timed out after {self.timeout_seconds}s"
        except OSError as exc:
            detail = f"spawn failed: {exc}"
        except (subprocess.SubprocessError, ValueError) as exc:
            detail = f"{type(exc).__name__}: {exc}"
        except Exception as exc:
            logger.error("Sleep command raised unexpectedly (command=%s)", command_text, exc_info=True)
            detail = f"unexpected {type(exc).__name__}: {exc}"
        else:
            if result.returncode == 0:
                logger.info(
                    "Sleep command executed (command=%s stdout=%s)",
                    command_text,
                    (result.stdout or "").strip() or "no output",
                )
                return OpResult.success(command_text)
            stderr = (result.stderr or "").strip()
            detail = f"exit code {result.returncode}" + (f": {stderr}" if stderr else "")

        logger.error("Sleep command failed (command=%s error=%s)", command_text, detail)
        return OpResult.failure(ErrorKind.INVOCATION_FAILED, detail)
