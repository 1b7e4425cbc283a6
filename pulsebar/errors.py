from __future__ import annotations
"""
Error taxonomy shared by the auth layer, the API clients and the refreshers.

Every error carries a user-facing message; refreshers record str(error) on
the published snapshot so the UI can show it as a banner.
"""

from typing import Optional


class PulsebarError(Exception):
    """Base class for every error raised by the refresh pipeline"""

    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ============================================================
# 🔐 TOKEN LAYER
# ============================================================

class AuthError(PulsebarError):
    """Raised when authentication is missing, invalid or cannot be renewed"""
    pass


class NotAuthenticated(AuthError):
    default_message = "Not authenticated. Please sign in."


class TokenExchangeFailed(AuthError):
    default_message = "Failed to exchange authorization code for tokens."


class TokenRefreshFailed(AuthError):
    default_message = "Session expired. Please sign in again."


class TokenRevoked(TokenRefreshFailed):
    """Provider explicitly reported the refresh token as revoked, expired or invalid"""
    default_message = "Access was revoked. Please sign in again."


class AuthorizationCancelled(AuthError):
    """User closed or denied the consent screen. Never shown as an error."""
    default_message = "Sign-in was cancelled."


# ============================================================
# 📊 API LAYER
# ============================================================

class ApiError(PulsebarError):
    """Google API answered with a non-success status"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(PulsebarError):
    """Transport failure or timeout before any API answer was received"""

    def __init__(self, message: str):
        super().__init__(f"Network error: {message}")


class NoData(PulsebarError):
    default_message = "No data available"
