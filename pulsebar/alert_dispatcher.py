from __future__ import annotations
"""
Alert Dispatcher Module
Fire-and-forget desktop notifications for fired alerts.

On macOS notifications go through `osascript`; everywhere else (or when it
is missing) alerts are only written to the log.
"""

import shutil
import subprocess
from datetime import datetime
from typing import Optional, Protocol

OSASCRIPT_TIMEOUT_SECONDS = 5


def log_dispatcher(message: str):
    """Log dispatcher messages with timestamp"""
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] [DISPATCHER] {message}")


class Notifier(Protocol):
    def notify(self, title: str, body: str) -> None:
        ...


def _applescript_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class MacNotifier:
    """Posts a Notification Center banner via osascript"""

    def __init__(self, app_name: str = "Pulsebar", osascript: Optional[str] = None):
        self.app_name = app_name
        self.osascript = osascript or shutil.which("osascript") or "osascript"

    def notify(self, title: str, body: str) -> None:
        script = (
            f"display notification {_applescript_string(body)} "
            f"with title {_applescript_string(self.app_name)} "
            f"subtitle {_applescript_string(title)} "
            f'sound name "default"'
        )
        subprocess.run(
            [self.osascript, "-e", script],
            check=True,
            capture_output=True,
            timeout=OSASCRIPT_TIMEOUT_SECONDS,
        )
        log_dispatcher(f"📨 Notified: {title}")


class LogNotifier:
    """Writes alerts to the log only"""

    def notify(self, title: str, body: str) -> None:
        log_dispatcher(f"🔔 {title} - {body}")


def default_notifier() -> Notifier:
    if shutil.which("osascript"):
        return MacNotifier()
    log_dispatcher("osascript not found, alerts will only be logged")
    return LogNotifier()
