"""
Session Models

A session exists from a successful token exchange until sign-out,
revocation, or the first authorization failure from a downstream call.
Tokens are treated as expired once older than the configured maximum age,
even if the backend has not rejected them yet.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    """Session lifecycle states."""
    UNINITIALIZED = "uninitialized"
    RESTORING = "restoring"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    EXPIRED = "expired"


class EndReason(str, Enum):
    """Why a session left the AUTHENTICATED state."""
    SIGNED_OUT = "signed_out"
    EXPIRED = "expired"
    AUTH_FAILURE = "auth_failure"


class Identity(BaseModel):
    """The signed-in Google account."""
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str = ""
    email: str = ""
    image_url: Optional[str] = None


class AccessToken(BaseModel):
    """Result of a token exchange with the identity provider."""
    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., min_length=1)
    expiry: Optional[datetime] = None


class Session(BaseModel):
    """An authenticated session."""

    access_token: str = Field(..., min_length=1)
    obtained_at: datetime
    identity: Optional[Identity] = None

    def age(self, now: datetime) -> timedelta:
        return now - self.obtained_at

    def is_expired(self, now: datetime, max_age: timedelta) -> bool:
        """Expired strictly after max_age has passed."""
        return self.age(now) > max_age

    def to_persisted(self) -> dict:
        """Only the token and its timestamp are persisted, never the identity."""
        return {
            "access_token": self.access_token,
            "obtained_at": self.obtained_at.isoformat(),
        }

    @classmethod
    def from_persisted(cls, data: dict) -> 'Session':
        return cls(
            access_token=data["access_token"],
            obtained_at=datetime.fromisoformat(data["obtained_at"]),
        )


class SessionNotice(BaseModel):
    """A user-visible message that disappears on its own."""
    model_config = ConfigDict(frozen=True)

    message: str
    shown_at: datetime
    expires_at: datetime

    def is_visible(self, now: datetime) -> bool:
        return now < self.expires_at


class SessionEvent(BaseModel):
    """Delivered to session listeners on every state change."""
    model_config = ConfigDict(frozen=True)

    previous_state: SessionState
    state: SessionState
    reason: Optional[EndReason] = None
    identity: Optional[Identity] = None
