"""Tests for credential data structures."""

from datetime import datetime, timedelta, timezone

import pytest

from launcher_auth.oauth.tokens import (
    GameSession,
    LaunchCredentials,
    Session,
    TokenResponse,
    apply_refresh,
)


class TestTokenResponse:
    """Tests for TokenResponse parsing."""

    def test_from_response_computes_expiry(self) -> None:
        """Test that expires_in is turned into an absolute timestamp."""
        before = datetime.now(timezone.utc)
        response = TokenResponse.from_response(
            {"access_token": "A", "refresh_token": "R", "expires_in": 3600}
        )

        assert response.access_token == "A"
        assert response.refresh_token == "R"
        expected = before + timedelta(seconds=3600)
        assert abs((response.expires_at - expected).total_seconds()) < 1

    def test_from_response_uses_received_at(self) -> None:
        """Test that the receipt time anchors the expiry."""
        received = datetime(2025, 1, 1, tzinfo=timezone.utc)
        response = TokenResponse.from_response(
            {"access_token": "A", "expires_in": 60}, received_at=received
        )
        assert response.expires_at == received + timedelta(seconds=60)

    def test_missing_refresh_token_is_none(self) -> None:
        """Test that an absent refresh token is reported as None."""
        response = TokenResponse.from_response({"access_token": "A", "expires_in": 60})
        assert response.refresh_token is None

    def test_missing_access_token_raises(self) -> None:
        """Test that a response without access_token is rejected."""
        with pytest.raises(KeyError):
            TokenResponse.from_response({"expires_in": 60})

    def test_missing_expires_in_raises(self) -> None:
        """Test that a response without expires_in is rejected."""
        with pytest.raises(ValueError, match="expires_in"):
            TokenResponse.from_response({"access_token": "A"})


class TestGameSession:
    """Tests for GameSession parsing."""

    def test_from_response(self) -> None:
        """Test reading the camelCase game session payload."""
        game = GameSession.from_response(
            {"sessionToken": "s", "identityToken": "i", "expiresAt": "2030-01-01T00:00:00Z"}
        )
        assert game.session_token == "s"
        assert game.identity_token == "i"
        assert game.expires_at == "2030-01-01T00:00:00Z"

    def test_has_tokens(self) -> None:
        """Test that a payload missing either token is incomplete."""
        assert GameSession("s", "i").has_tokens()
        assert not GameSession.from_response({"sessionToken": "s"}).has_tokens()


class TestSession:
    """Tests for Session dataclass."""

    def test_default_session_is_expired(self) -> None:
        """Test that an empty session is never considered valid."""
        assert Session().is_expired()

    def test_expiry_margin(self, make_session) -> None:
        """Test the one-minute refresh margin."""
        assert make_session(expires_in=timedelta(seconds=30)).is_expired()
        assert not make_session(expires_in=timedelta(minutes=5)).is_expired()

    def test_has_game_tokens(self, make_session) -> None:
        """Test game token presence check."""
        assert make_session().has_game_tokens()
        assert not make_session(session_token="").has_game_tokens()

    def test_round_trip_through_dict(self, make_session) -> None:
        """Test that to_dict/from_dict preserve every field."""
        session = make_session()
        assert Session.from_dict(session.to_dict()) == session

    def test_from_dict_ignores_unknown_and_defaults_missing(self) -> None:
        """Test tolerant deserialization."""
        session = Session.from_dict({"username": "Player1", "future_field": 1})

        assert session.username == "Player1"
        assert session.access_token == ""
        assert session.is_expired()

    def test_from_dict_accepts_z_suffix(self) -> None:
        """Test parsing of 'Z' timestamps."""
        session = Session.from_dict({"expires_at": "2030-01-01T00:00:00Z"})
        assert session.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)

    def test_from_dict_naive_timestamp_is_utc(self) -> None:
        """Test that naive timestamps are interpreted as UTC."""
        session = Session.from_dict({"expires_at": "2030-01-01T00:00:00"})
        assert session.expires_at.tzinfo is not None

    @pytest.mark.parametrize(
        "value,microsecond",
        [
            ("2030-01-01T00:00:00.1234567Z", 123456),
            ("2030-01-01T00:00:00.12+00:00", 120000),
            ("2030-01-01T00:00:00.5", 500000),
        ],
    )
    def test_from_dict_any_fraction_precision(self, value, microsecond) -> None:
        """Test that seven-digit and short fractional seconds parse."""
        session = Session.from_dict({"expires_at": value})
        assert session.expires_at == datetime(2030, 1, 1, 0, 0, 0, microsecond, tzinfo=timezone.utc)

    def test_apply_game_session(self, make_session) -> None:
        """Test replacing game tokens."""
        session = make_session()
        session.apply_game_session(GameSession(session_token="s2", identity_token="i2"))

        assert session.session_token == "s2"
        assert session.identity_token == "i2"


class TestApplyRefresh:
    """Tests for apply_refresh."""

    def test_replaces_tokens_and_expiry(self, make_session) -> None:
        """Test that a rotated refresh token replaces the old one."""
        session = make_session(expires_in=timedelta(seconds=10))
        new_expiry = datetime.now(timezone.utc) + timedelta(hours=1)
        apply_refresh(session, TokenResponse("A2", "R2", new_expiry))

        assert session.access_token == "A2"
        assert session.refresh_token == "R2"
        assert session.expires_at == new_expiry

    def test_keeps_refresh_token_when_not_rotated(self, make_session) -> None:
        """Test that the prior refresh token survives a response without one."""
        session = make_session()
        apply_refresh(session, TokenResponse("A2", None, datetime.now(timezone.utc)))

        assert session.refresh_token == "refresh-0"

    def test_identity_unchanged(self, make_session) -> None:
        """Test that username and uuid survive a refresh."""
        session = make_session()
        apply_refresh(session, TokenResponse("A2", "R2", datetime.now(timezone.utc)))

        assert (session.username, session.uuid) == ("Player1", "uuid-1")


class TestLaunchCredentials:
    """Tests for LaunchCredentials."""

    def test_from_session(self, make_session) -> None:
        """Test building launch credentials from a session."""
        credentials = LaunchCredentials.from_session(make_session())

        assert credentials.identity_token == "identity-0"
        assert credentials.session_token == "session-0"
        assert credentials.has_game_tokens

    def test_reports_missing_game_tokens(self, make_session) -> None:
        """Test that empty game tokens are reported explicitly."""
        credentials = LaunchCredentials.from_session(
            make_session(session_token="", identity_token="")
        )
        assert not credentials.has_game_tokens
        assert credentials.to_dict()["has_game_tokens"] is False
