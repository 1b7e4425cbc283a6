from __future__ import annotations
"""
Secret-store persistence for OAuth credentials.

Credentials live in the platform keyring (Keychain on macOS) as a single
JSON entry so access token, refresh token and expiry are always written
together.
"""

import json
from datetime import datetime
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from pulsebar.auth.token_model import Credentials

CREDENTIALS_ENTRY = "oauth-credentials"


def log_store(message: str):
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] [TOKEN-STORE] {message}")


class KeyringTokenStore:
    """Persists Credentials in the OS secret store"""

    def __init__(self, service_name: str, backend=None):
        """
        Args:
            service_name: Keyring service the entry is filed under
            backend: Optional keyring backend instance; the active
                     system keyring is used when omitted.
        """
        self.service_name = service_name
        self.backend = backend or keyring.get_keyring()

    def save(self, credentials: Credentials) -> None:
        if not credentials.access_token:
            raise RuntimeError("Refusing to persist empty access_token")

        try:
            self.backend.set_password(
                self.service_name,
                CREDENTIALS_ENTRY,
                json.dumps(credentials.to_dict()),
            )
        except KeyringError as e:
            log_store(f"❌ Failed to persist credentials: {e}")
            raise RuntimeError(f"Secret store error persisting credentials: {e}") from e

    def load(self) -> Optional[Credentials]:
        """
        Returns:
            Stored Credentials, or None if nothing (or something unreadable) is stored
        """
        try:
            raw = self.backend.get_password(self.service_name, CREDENTIALS_ENTRY)
        except KeyringError as e:
            log_store(f"⚠️  Secret store unavailable: {e}")
            return None

        if not raw:
            return None

        try:
            return Credentials.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            log_store(f"⚠️  Discarding unreadable credentials entry: {e}")
            return None

    def clear(self) -> None:
        try:
            self.backend.delete_password(self.service_name, CREDENTIALS_ENTRY)
        except PasswordDeleteError:
            # Nothing stored
            pass
