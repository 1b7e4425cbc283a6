"""
Pytest Configuration and Shared Fixtures

Fakes for the network, secret store, notification and clock boundaries.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from keyring.errors import PasswordDeleteError

from pulsebar.events import EventBus
from pulsebar.preferences import PreferencesStore


# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ============================================================================
# Secret store
# ============================================================================

class FakeKeyring:
    """In-memory stand-in for a keyring backend"""

    def __init__(self):
        self.entries: Dict[tuple, str] = {}

    def get_password(self, service, username):
        return self.entries.get((service, username))

    def set_password(self, service, username, password):
        self.entries[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.entries:
            raise PasswordDeleteError("not found")
        del self.entries[(service, username)]


# ============================================================================
# HTTP
# ============================================================================

class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload

    def raise_for_status(self):
        import requests

        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    """
    Records every request and answers through `handler(method, url, kwargs)`,
    which returns a FakeResponse or raises.
    """

    def __init__(self, handler: Optional[Callable[[str, str, dict], FakeResponse]] = None):
        self.handler = handler or (lambda method, url, kwargs: FakeResponse(200, {}))
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def request(self, method, url, **kwargs):
        with self._lock:
            self.calls.append({"method": method, "url": url, **kwargs})
        return self.handler(method, url, kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def calls_to(self, fragment: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if fragment in call["url"]]


# ============================================================================
# Notifications
# ============================================================================

class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[tuple] = []

    def notify(self, title: str, body: str) -> None:
        if self.fail:
            raise RuntimeError("notification center unavailable")
        self.sent.append((title, body))


# ============================================================================
# Auth
# ============================================================================

class FakeAuth:
    """Just enough of GoogleAuthHandler for clients and refreshers"""

    def __init__(self, token: str = "access-token", authenticated: bool = True):
        self.token = token
        self.is_authenticated = authenticated
        self.token_requests = 0
        self.error: Optional[Exception] = None

    def get_valid_access_token(self) -> str:
        self.token_requests += 1
        if self.error is not None:
            raise self.error
        return self.token


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def preferences():
    """Preferences held in memory only"""
    return PreferencesStore()


@pytest.fixture
def fake_keyring():
    return FakeKeyring()


@pytest.fixture
def fake_auth():
    return FakeAuth()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def published(events):
    """Collects every event of the given types as they are published"""
    def _collect(*event_types):
        received = []
        for event_type in event_types:
            events.subscribe(event_type, received.append)
        return received
    return _collect
