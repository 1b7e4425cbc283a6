from __future__ import annotations
"""
Typed publish/subscribe for state changes.

Publishers hand out immutable values only. Handlers run synchronously on the
publishing thread; a failing handler is logged and does not stop delivery
to the others.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Type, TypeVar

from pulsebar.models import AlertItem, AnalyticsSnapshot, AuthState, SearchConsoleSnapshot


def log_events(message: str):
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] [EVENTS] {message}")


@dataclass(frozen=True)
class AuthStateChanged:
    """Any AuthState change, including transient authenticating/error flags"""
    state: AuthState


@dataclass(frozen=True)
class SignedIn:
    """Fresh credentials were obtained or restored"""
    user_email: Optional[str] = None


@dataclass(frozen=True)
class SignedOut:
    """Credentials were destroyed; published data must be cleared"""
    reason: Optional[str] = None


@dataclass(frozen=True)
class AnalyticsUpdated:
    snapshot: AnalyticsSnapshot


@dataclass(frozen=True)
class SearchConsoleUpdated:
    snapshot: SearchConsoleSnapshot


@dataclass(frozen=True)
class AlertFired:
    alert: AlertItem


E = TypeVar("E")


class EventBus:
    def __init__(self):
        self._handlers: Dict[type, List[Callable]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """
        Register handler for one event type.

        Returns:
            A callable that removes the subscription.
        """
        with self._lock:
            self._handlers[event_type].append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._handlers[event_type]:
                    self._handlers[event_type].remove(handler)

        return unsubscribe

    def publish(self, event) -> None:
        with self._lock:
            handlers = list(self._handlers[type(event)])

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                log_events(f"❌ Handler {getattr(handler, '__qualname__', handler)} failed on {type(event).__name__}: {e}")
