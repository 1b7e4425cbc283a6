from __future__ import annotations
"""
Periodic refresh timer.

One daemon thread per running timer. restart() cancels the current timer and
starts a new one whose first tick is a full interval away, rather than
rescheduling the pending tick.
"""

import threading
from datetime import datetime
from typing import Callable, Optional


def log_scheduler(message: str, level: str = "INFO"):
    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = {
        "INFO": "ℹ️ ",
        "ERROR": "❌",
        "WARNING": "⚠️ ",
    }.get(level, "")
    print(f"[{timestamp}] [SCHEDULER] {prefix} {message}")


class Scheduler:
    def __init__(self, interval_seconds: float, tick: Callable[[], None]):
        self.interval_seconds = interval_seconds
        self.tick = tick
        self._lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._spawn()
        log_scheduler(f"Started with {self.interval_seconds:g}s interval")

    def stop(self) -> None:
        with self._lock:
            self._cancel()

    def restart(self, interval_seconds: float) -> None:
        """Cancel the running timer and start counting from zero"""
        with self._lock:
            self._cancel()
            self.interval_seconds = interval_seconds
            self._spawn()
        log_scheduler(f"Restarted with {interval_seconds:g}s interval")

    def _spawn(self) -> None:
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._run,
            args=(stop_event, self.interval_seconds),
            name="pulsebar-scheduler",
            daemon=True,
        )
        self._stop_event = stop_event
        self._thread = thread
        thread.start()

    def _cancel(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        self._stop_event = None
        self._thread = None

    def _run(self, stop_event: threading.Event, interval_seconds: float) -> None:
        # Event.wait returns True once cancelled
        while not stop_event.wait(interval_seconds):
            try:
                self.tick()
            except Exception as e:
                log_scheduler(f"Tick failed: {e}", "ERROR")
