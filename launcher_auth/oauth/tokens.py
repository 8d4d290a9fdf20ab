"""Credential data structures and utilities.

This module provides the Session dataclass that is persisted per application
profile, plus the result types returned by the provider clients.
"""

import logging
import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger(__name__)

# Sessions this close to expiry are refreshed before use
REFRESH_MARGIN = timedelta(minutes=1)

# Older session files carry seven fractional digits; fromisoformat on 3.10 takes six
_FRACTION = re.compile(r"\.(\d+)")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime | None:
    """Parse a stored ISO timestamp, assuming UTC when naive."""
    if not value or not isinstance(value, str):
        return None

    try:
        normalized = _FRACTION.sub(
            lambda m: "." + m.group(1)[:6].ljust(6, "0"), value.replace("Z", "+00:00"), count=1
        )
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        logger.warning(f"Ignoring unparseable timestamp: {value!r}")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class TokenResponse:
    """Successful token endpoint response.

    Attributes:
        access_token: The new access token
        refresh_token: The new refresh token, or None if the provider did not
            rotate it (the caller keeps the prior value)
        expires_at: Absolute expiry computed at receipt time
    """

    access_token: str
    refresh_token: str | None
    expires_at: datetime

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        received_at: datetime | None = None,
    ) -> "TokenResponse":
        """Create a TokenResponse from the token endpoint JSON.

        Args:
            data: JSON response from token endpoint
            received_at: When the response was received (defaults to now)

        Raises:
            KeyError: If access_token is missing
            ValueError: If expires_in is missing or not a number
        """
        now = received_at or _utcnow()
        if data.get("expires_in") is None:
            raise ValueError("Token response has no expires_in")
        expires_in = int(data["expires_in"])

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            expires_at=now + timedelta(seconds=expires_in),
        )


@dataclass
class AccountProfile:
    """A game profile on the provider account."""

    uuid: str
    username: str
    owner: str = ""


@dataclass
class GameSession:
    """Transient game credentials minted for one profile.

    ``expires_at`` is kept as the raw provider string; it is informational only.
    """

    session_token: str
    identity_token: str
    expires_at: str = ""

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "GameSession":
        """Create a GameSession from the game-session endpoint JSON."""
        return cls(
            session_token=data.get("sessionToken") or "",
            identity_token=data.get("identityToken") or "",
            expires_at=data.get("expiresAt") or "",
        )

    def has_tokens(self) -> bool:
        return bool(self.session_token and self.identity_token)


@dataclass
class Session:
    """Durable credential record for one application profile.

    (username, uuid) identify the provider account and never change across
    refreshes; only the token fields and expires_at do.
    """

    access_token: str = ""
    refresh_token: str = ""
    expires_at: datetime = field(default_factory=lambda: datetime.min.replace(tzinfo=timezone.utc))
    session_token: str = ""
    identity_token: str = ""
    username: str = ""
    uuid: str = ""
    account_owner_id: str = ""

    def is_expired(self, margin: timedelta = REFRESH_MARGIN) -> bool:
        """Check whether the access token expires within ``margin``."""
        return self.expires_at <= _utcnow() + margin

    def has_refresh_token(self) -> bool:
        """Check if this session can be refreshed."""
        return bool(self.refresh_token)

    def has_game_tokens(self) -> bool:
        """Check if game session tokens are present."""
        return bool(self.session_token and self.identity_token)

    def apply_game_session(self, game_session: GameSession) -> None:
        """Replace the game tokens with freshly minted ones."""
        self.session_token = game_session.session_token
        self.identity_token = game_session.identity_token

    def to_dict(self) -> dict[str, Any]:
        """Serialize session to dictionary for storage."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
            "session_token": self.session_token,
            "identity_token": self.identity_token,
            "username": self.username,
            "uuid": self.uuid,
            "account_owner_id": self.account_owner_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Deserialize session from dictionary.

        Unknown keys are ignored and missing keys default to empty, so older
        and newer record layouts both load.
        """
        known = {f.name for f in fields(cls)} - {"expires_at"}
        values = {
            key: str(data[key]) for key in known if data.get(key) is not None
        }

        session = cls(**values)
        expires_at = _parse_datetime(data.get("expires_at"))
        if expires_at is not None:
            session.expires_at = expires_at
        return session


def apply_refresh(session: Session, response: TokenResponse) -> None:
    """Apply a refresh result to a session in place.

    The refresh token is only replaced when the provider sent a new one.
    """
    session.access_token = response.access_token
    if response.refresh_token:
        session.refresh_token = response.refresh_token
    session.expires_at = response.expires_at


@dataclass
class LaunchCredentials:
    """Credentials handed to the game launcher.

    ``has_game_tokens`` is False when no game session could be minted and none
    was cached; the launcher decides whether to start without them.
    """

    identity_token: str
    session_token: str
    username: str
    uuid: str

    @property
    def has_game_tokens(self) -> bool:
        return bool(self.identity_token and self.session_token)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity_token": self.identity_token,
            "session_token": self.session_token,
            "username": self.username,
            "uuid": self.uuid,
            "has_game_tokens": self.has_game_tokens,
        }

    @classmethod
    def from_session(cls, session: Session) -> "LaunchCredentials":
        return cls(
            identity_token=session.identity_token,
            session_token=session.session_token,
            username=session.username,
            uuid=session.uuid,
        )
