from __future__ import annotations
"""
Google OAuth 2.0 for the installed-app client.

Owns the credential lifecycle: consent + code exchange, persisted session
restore, access-token refresh and sign-out. Everything else asks this class
for a bearer token through get_valid_access_token().
"""

import threading
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

import requests
from google.oauth2.credentials import Credentials as GoogleCredentials
from google_auth_oauthlib.flow import InstalledAppFlow
from oauthlib.oauth2.rfc6749.errors import AccessDeniedError, MismatchingStateError, OAuth2Error

from pulsebar.auth.token_model import Credentials
from pulsebar.auth.token_store import KeyringTokenStore
from pulsebar.errors import (
    AuthError,
    AuthorizationCancelled,
    NotAuthenticated,
    TokenExchangeFailed,
    TokenRefreshFailed,
    TokenRevoked,
)
from pulsebar.events import AuthStateChanged, EventBus, SignedIn, SignedOut
from pulsebar.models import AuthState, utcnow

AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
USERINFO_URI = "https://www.googleapis.com/oauth2/v2/userinfo"

LOOPBACK_HOST = "127.0.0.1"

# Scopes required for GA4, Search Console and identity
SCOPES = [
    "https://www.googleapis.com/auth/analytics.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/webmasters.readonly",
]

# Fragments of Google's error_description that mean the grant is gone for good
REVOCATION_MARKERS = ("revoked", "expired", "invalid")

FlowRunner = Callable[[InstalledAppFlow], GoogleCredentials]


def log_auth(message: str, level: str = "INFO"):
    """Log with timestamp and level marker. Never pass token values here."""
    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = {
        "INFO": "ℹ️ ",
        "SUCCESS": "✅",
        "ERROR": "❌",
        "WARNING": "⚠️ ",
    }.get(level, "")
    print(f"[{timestamp}] [AUTH] {prefix} {message}")


def run_local_server_flow(
    flow: InstalledAppFlow,
    port: int = 8765,
    timeout_seconds: Optional[int] = 300,
) -> GoogleCredentials:
    """
    Open the consent screen in the browser, wait for Google's redirect on a
    loopback listener and exchange the code.

    Raises:
        AuthorizationCancelled: no redirect arrived within timeout_seconds
    """
    log_auth(f"Waiting for Google consent on {LOOPBACK_HOST}:{port}")
    try:
        # access_type='offline' ensures we get a refresh_token
        # prompt='consent' forces full consent screen every time
        return flow.run_local_server(
            host=LOOPBACK_HOST,
            port=port,
            timeout_seconds=timeout_seconds,
            authorization_prompt_message="If your browser did not open, visit:\n{url}",
            success_message="Pulsebar is connected. You can close this window.",
            access_type="offline",
            prompt="consent",
        )
    except AttributeError as e:
        # run_local_server has no redirect URI to parse once the listener times out
        log_auth("No redirect received before timeout", "WARNING")
        raise AuthorizationCancelled() from e


class GoogleAuthHandler:
    """Handles the OAuth 2.0 installed-app flow and token lifecycle."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_store: KeyringTokenStore,
        events: EventBus,
        flow_runner: Optional[FlowRunner] = None,
        redirect_port: int = 8765,
        oauth_timeout_seconds: int = 300,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = utcnow,
        timeout: float = 30.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_store = token_store
        self.events = events
        self.flow_runner = flow_runner or (
            lambda flow: run_local_server_flow(flow, redirect_port, oauth_timeout_seconds)
        )
        self.session = session or requests.Session()
        self.clock = clock
        self.timeout = timeout

        self.client_config = {
            "installed": {
                "client_id": client_id,
                "client_secret": client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [f"http://{LOOPBACK_HOST}"],
            }
        }

        self._credentials: Optional[Credentials] = None
        self._state = AuthState()
        self._state_lock = threading.RLock()
        # Serializes refreshes so concurrent callers share one round-trip
        self._refresh_lock = threading.RLock()

    # ============================================================
    # 📡 STATE
    # ============================================================

    @property
    def state(self) -> AuthState:
        with self._state_lock:
            return self._state

    @property
    def is_authenticated(self) -> bool:
        return self.state.is_authenticated

    def _update_state(self, **changes) -> AuthState:
        with self._state_lock:
            self._state = replace(self._state, **changes)
            new_state = self._state
        self.events.publish(AuthStateChanged(new_state))
        return new_state

    # ============================================================
    # 🔑 SIGN IN
    # ============================================================

    def restore_session(self) -> bool:
        """
        Load persisted credentials. A stored access + refresh token pair
        counts as signed in; the profile email is fetched best-effort.

        Returns:
            True if a session was restored
        """
        credentials = self.token_store.load()
        if not credentials or not credentials.access_token or not credentials.refresh_token:
            return False

        with self._state_lock:
            self._credentials = credentials

        email = self._fetch_user_email(credentials.access_token)
        self._update_state(is_authenticated=True, user_email=email, last_error=None)
        log_auth(f"Restored session for {email or 'unknown account'}", "SUCCESS")
        self.events.publish(SignedIn(user_email=email))
        return True

    def build_flow(self) -> InstalledAppFlow:
        return InstalledAppFlow.from_client_config(self.client_config, scopes=SCOPES)

    def sign_in(self) -> bool:
        """
        Run the interactive consent flow and exchange the returned code.

        User cancellation clears any transient error and changes nothing
        else. Every other failure is left on AuthState.last_error.

        Returns:
            True on successful sign-in
        """
        with self._state_lock:
            if self._state.is_authenticating:
                return False
            if not self.client_id:
                refusal = "Please set your Google Client ID (GOOGLE_CLIENT_ID)"
            else:
                refusal = None
                # Claimed under the lock so a second sign_in() sees it
                self._state = replace(self._state, is_authenticating=True, last_error=None)

        if refusal:
            self._update_state(last_error=refusal)
            return False
        self.events.publish(AuthStateChanged(self.state))

        try:
            google_credentials = self._run_consent(self.build_flow())
            self.complete_sign_in(google_credentials)
            return True

        except AuthorizationCancelled:
            log_auth("Sign-in cancelled by user", "WARNING")
            self._update_state(is_authenticating=False, last_error=None)
            return False
        except AuthError as e:
            log_auth(f"Sign-in failed: {e}", "ERROR")
            self._update_state(is_authenticating=False, last_error=str(e))
            return False
        except Exception as e:
            log_auth(f"Sign-in failed unexpectedly: {e}", "ERROR")
            self._update_state(is_authenticating=False, last_error=str(e))
            return False

    def _run_consent(self, flow: InstalledAppFlow) -> GoogleCredentials:
        """Run the flow and map oauthlib / transport failures onto AuthError"""
        try:
            return self.flow_runner(flow)
        except AccessDeniedError as e:
            raise AuthorizationCancelled() from e
        except MismatchingStateError as e:
            raise TokenExchangeFailed("Authorization response state mismatch") from e
        except OAuth2Error as e:
            log_auth(f"Token exchange rejected: {e.error}", "ERROR")
            raise TokenExchangeFailed() from e
        except requests.RequestException as e:
            raise TokenExchangeFailed() from e

    def complete_sign_in(self, google_credentials: GoogleCredentials) -> str:
        """
        Persist the credentials from a finished consent flow and announce
        the signed-in state.

        Returns:
            The signed-in account email ('' if it could not be fetched)
        """
        credentials = Credentials.from_google_credentials(google_credentials, self.clock())
        if not credentials.access_token or not credentials.refresh_token:
            raise TokenExchangeFailed("Google did not return a refresh token")

        self._store_credentials(credentials)

        # Profile email is cosmetic; its failure never fails the sign-in
        email = self._fetch_user_email(credentials.access_token)

        self._update_state(
            is_authenticated=True,
            is_authenticating=False,
            user_email=email,
            last_error=None,
        )
        log_auth(f"Successfully connected Google account: {email or 'unknown'}", "SUCCESS")
        self.events.publish(SignedIn(user_email=email))
        return email or ""

    # ============================================================
    # 🚪 SIGN OUT
    # ============================================================

    def sign_out(self, reason: Optional[str] = None) -> None:
        """Forget credentials in memory and in the secret store."""
        with self._state_lock:
            self._credentials = None
        try:
            self.token_store.clear()
        except Exception as e:
            log_auth(f"Failed to clear stored credentials: {e}", "WARNING")

        self._update_state(
            is_authenticated=False,
            is_authenticating=False,
            user_email=None,
            last_error=reason,
        )
        log_auth(f"Signed out{f' ({reason})' if reason else ''}")
        self.events.publish(SignedOut(reason=reason))

    # ============================================================
    # 🔁 TOKEN REFRESH
    # ============================================================

    def get_valid_access_token(self) -> str:
        """
        Return an access token valid for at least another 60 seconds,
        refreshing it first if needed.

        Raises:
            NotAuthenticated: no refresh token is available
            TokenRevoked: Google reported the grant revoked/expired/invalid
            TokenRefreshFailed: any other refresh failure (session is signed out)
        """
        with self._refresh_lock:
            with self._state_lock:
                credentials = self._credentials

            if credentials and credentials.is_fresh(self.clock()):
                return credentials.access_token

            if not credentials or not credentials.refresh_token:
                if self.is_authenticated:
                    self._update_state(is_authenticated=False)
                raise NotAuthenticated()

            log_auth("Access token expired or expiring, refreshing...")
            try:
                refreshed = self._refresh_access_token(credentials)
            except TokenRefreshFailed as e:
                log_auth(f"Refresh rejected: {e}", "ERROR")
                self.sign_out(reason=str(e))
                raise
            except Exception as e:
                log_auth(f"Refresh failed: {e}", "ERROR")
                self.sign_out(reason="token refresh failed")
                raise TokenRefreshFailed() from e

            log_auth("Access token refreshed and persisted", "SUCCESS")
            return refreshed.access_token

    def _refresh_access_token(self, credentials: Credentials) -> Credentials:
        body = {
            "refresh_token": credentials.refresh_token,
            "client_id": self.client_id,
            "grant_type": "refresh_token",
        }
        if self.client_secret:
            body["client_secret"] = self.client_secret

        response = self.session.post(TOKEN_URI, data=body, timeout=self.timeout)

        if response.status_code != 200:
            raise self._classify_refresh_error(response)

        refreshed = Credentials.from_token_response(
            response.json(), self.clock(), previous=credentials
        )
        self._store_credentials(refreshed)
        return refreshed

    @staticmethod
    def _classify_refresh_error(response) -> TokenRefreshFailed:
        try:
            payload = response.json()
        except ValueError:
            payload = {}

        description = ""
        if isinstance(payload, dict):
            description = " ".join(
                str(payload.get(key) or "") for key in ("error", "error_description")
            ).lower()

        if any(marker in description for marker in REVOCATION_MARKERS):
            return TokenRevoked()
        return TokenRefreshFailed(f"Token refresh failed (HTTP {response.status_code})")

    def _store_credentials(self, credentials: Credentials) -> None:
        with self._state_lock:
            self._credentials = credentials
        self.token_store.save(credentials)

    # ============================================================
    # 👤 PROFILE
    # ============================================================

    def _fetch_user_email(self, access_token: str) -> Optional[str]:
        try:
            response = self.session.get(
                USERINFO_URI,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json().get("email")
        except (requests.RequestException, ValueError) as e:
            log_auth(f"Could not fetch profile email: {e}", "WARNING")
            return None
