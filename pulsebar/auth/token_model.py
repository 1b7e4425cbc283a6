from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

# Access tokens this close to expiry are treated as already expired
EXPIRY_BUFFER = timedelta(seconds=60)


@dataclass(frozen=True)
class Credentials:
    """
    Canonical OAuth credential model.
    expires_at is always an absolute, timezone-aware UTC instant.
    """
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime

    @classmethod
    def from_token_response(
        cls,
        payload: dict,
        now: datetime,
        previous: Optional["Credentials"] = None,
    ) -> "Credentials":
        """
        Build credentials from a Google token endpoint response.

        A refresh response normally omits refresh_token; the previously
        stored one is retained in that case.
        """
        refresh_token = payload.get("refresh_token")
        if not refresh_token and previous is not None:
            refresh_token = previous.refresh_token

        expires_in = int(payload.get("expires_in", 0) or 0)
        return cls(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            expires_at=now + timedelta(seconds=expires_in),
        )

    def is_fresh(self, now: datetime) -> bool:
        """True while the access token is valid for at least EXPIRY_BUFFER more."""
        return bool(self.access_token) and self.expires_at > now + EXPIRY_BUFFER

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.timestamp(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Credentials":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=datetime.fromtimestamp(float(data["expires_at"]), tz=timezone.utc),
        )

    @classmethod
    def from_google_credentials(cls, google_credentials, now: datetime) -> "Credentials":
        """
        Convert google.oauth2.credentials.Credentials returned by an
        oauthlib flow. google-auth keeps expiry as naive UTC.
        """
        expiry = google_credentials.expiry
        if expiry is None:
            expiry = now
        elif expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return cls(
            access_token=google_credentials.token,
            refresh_token=google_credentials.refresh_token,
            expires_at=expiry,
        )
