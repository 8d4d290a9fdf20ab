"""Tests for CLI module."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from launcher_auth.cli import main
from launcher_auth.oauth.flow import FailureReason, LoginResult, LoginState
from launcher_auth.oauth.store import SessionStore
from launcher_auth.oauth.tokens import GameSession, TokenResponse


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch, clean_env) -> dict[str, str]:
    """Run the CLI from an empty directory with plain-text token storage."""
    monkeypatch.chdir(tmp_path)
    return {"LAUNCHER_AUTH_ENCRYPT_TOKENS": "false"}


@pytest.fixture
def base_args(app_dir: Path, config_store) -> list[str]:
    """Global options pointing at the temporary app dir and profile config."""
    return ["--app-dir", str(app_dir), "--config", str(config_store.path)]


def invoke(runner: CliRunner, env: dict[str, str], args: list[str]):
    return runner.invoke(main, args, env=env)


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_version(self, runner: CliRunner) -> None:
        """Test --version flag."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "version" in result.output.lower()

    def test_help(self, runner: CliRunner) -> None:
        """Test --help lists the commands."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("login", "logout", "status", "refresh", "launch-tokens", "official-session", "migrate"):
            assert command in result.output

    def test_invalid_config_json(self, runner, cli_env, app_dir) -> None:
        """Test that a corrupt profile config is reported."""
        config = app_dir / "broken.json"
        config.write_text("{ broken")

        result = invoke(runner, cli_env, ["--json", "--app-dir", str(app_dir), "--config", str(config), "status"])

        assert result.exit_code == 1
        assert json.loads(result.output)["error"]["type"] == "ConfigParseError"


class TestStatusCommand:
    """Tests for the status command."""

    def test_not_logged_in_json(self, runner, cli_env, base_args) -> None:
        """Test status JSON without a session."""
        result = invoke(runner, cli_env, ["--json", *base_args, "status"])

        assert result.exit_code == 0
        parsed = json.loads(result.output)
        assert parsed["success"] is True
        assert parsed["data"]["logged_in"] is False
        assert parsed["data"]["profile"] == "Main"

    def test_logged_in_human(self, runner, cli_env, base_args, app_dir, make_session) -> None:
        """Test human-readable status with a session."""
        SessionStore(app_dir).save(make_session(), "Main")

        result = invoke(runner, cli_env, [*base_args, "status"])

        assert result.exit_code == 0
        assert "Logged in" in result.output
        assert "Player1" in result.output
        assert "access-0" not in result.output

    def test_profile_option_switches(self, runner, cli_env, base_args, app_dir, make_session) -> None:
        """Test that --profile selects another profile."""
        SessionStore(app_dir).save(make_session(username="AltUser"), "Alt")

        result = invoke(runner, cli_env, ["--json", *base_args, "--profile", "Alt", "status"])

        parsed = json.loads(result.output)
        assert parsed["data"]["profile"] == "Alt"
        assert parsed["data"]["username"] == "AltUser"


class TestLoginCommand:
    """Tests for the login command."""

    def test_login_success(self, runner, cli_env, base_args, app_dir, make_session) -> None:
        """Test that a successful login is reported and stored."""
        session = make_session()
        with patch("launcher_auth.oauth.manager.LoginFlow") as flow_cls:
            flow_cls.return_value.run = AsyncMock(
                return_value=LoginResult(LoginState.AUTHENTICATED, session=session)
            )
            result = invoke(runner, cli_env, ["--json", *base_args, "login"])

        assert result.exit_code == 0
        parsed = json.loads(result.output)
        assert parsed["data"]["username"] == "Player1"
        assert parsed["data"]["has_game_tokens"] is True
        assert SessionStore(app_dir).load("Main") == session

    def test_login_timeout_option(self, runner, cli_env, base_args, make_session) -> None:
        """Test that --timeout reaches the login flow settings."""
        with patch("launcher_auth.oauth.manager.LoginFlow") as flow_cls:
            flow_cls.return_value.run = AsyncMock(return_value=LoginResult(LoginState.CANCELLED))
            invoke(runner, cli_env, [*base_args, "login", "--timeout", "12"])

        settings = flow_cls.call_args.args[0]
        assert settings.callback_timeout == 12.0

    def test_login_no_game_profile(self, runner, cli_env, base_args, app_dir) -> None:
        """Test that the no-profile failure is reported with its own message."""
        with patch("launcher_auth.oauth.manager.LoginFlow") as flow_cls:
            flow_cls.return_value.run = AsyncMock(
                return_value=LoginResult(LoginState.FAILED, reason=FailureReason.NO_GAME_PROFILE)
            )
            result = invoke(runner, cli_env, ["--json", *base_args, "login"])

        assert result.exit_code == 1
        parsed = json.loads(result.output)
        assert parsed["success"] is False
        assert parsed["error"]["type"] == "no_game_profile"
        assert "no game profile" in parsed["error"]["message"]
        assert not SessionStore(app_dir).exists("Main")

    def test_login_cancelled(self, runner, cli_env, base_args) -> None:
        """Test the human message for a cancelled login."""
        with patch("launcher_auth.oauth.manager.LoginFlow") as flow_cls:
            flow_cls.return_value.run = AsyncMock(return_value=LoginResult(LoginState.CANCELLED))
            result = invoke(runner, cli_env, [*base_args, "login"])

        assert result.exit_code == 1
        assert "cancelled or timed out" in result.output


class TestLogoutCommand:
    """Tests for the logout command."""

    def test_logout_removes_session(self, runner, cli_env, base_args, app_dir, make_session) -> None:
        """Test that logout deletes the stored session."""
        SessionStore(app_dir).save(make_session(), "Main")

        result = invoke(runner, cli_env, ["--json", *base_args, "logout"])

        assert result.exit_code == 0
        assert json.loads(result.output)["data"]["logged_out"] is True
        assert not SessionStore(app_dir).exists("Main")

    def test_logout_without_session(self, runner, cli_env, base_args) -> None:
        """Test logout when nothing is stored."""
        result = invoke(runner, cli_env, [*base_args, "logout"])

        assert result.exit_code == 0
        assert "No session" in result.output


class TestRefreshCommand:
    """Tests for the refresh command."""

    def test_refresh_success(self, runner, cli_env, base_args, app_dir, make_session) -> None:
        """Test a forced refresh."""
        SessionStore(app_dir).save(make_session(), "Main")
        response = TokenResponse("access-new", None, datetime.now(timezone.utc) + timedelta(hours=2))

        with patch("launcher_auth.oauth.manager.refresh_tokens", AsyncMock(return_value=response)):
            result = invoke(runner, cli_env, [*base_args, "refresh"])

        assert result.exit_code == 0
        assert "Token refreshed" in result.output
        assert SessionStore(app_dir).load("Main").access_token == "access-new"

    def test_refresh_failure(self, runner, cli_env, base_args, app_dir, make_session) -> None:
        """Test that a rejected refresh exits with an error."""
        SessionStore(app_dir).save(make_session(), "Main")

        with patch("launcher_auth.oauth.manager.refresh_tokens", AsyncMock(return_value=None)):
            result = invoke(runner, cli_env, [*base_args, "refresh"])

        assert result.exit_code == 1
        assert "refresh failed" in result.output

    def test_refresh_not_logged_in(self, runner, cli_env, base_args) -> None:
        """Test refresh without a session."""
        result = invoke(runner, cli_env, [*base_args, "refresh"])

        assert result.exit_code == 1
        assert "Not logged in" in result.output


class TestLaunchTokensCommand:
    """Tests for the launch-tokens command."""

    def test_launch_tokens_json(self, runner, cli_env, base_args, app_dir, make_session) -> None:
        """Test that freshly minted game tokens are printed."""
        SessionStore(app_dir).save(make_session(), "Main")
        minted = GameSession(session_token="session-new", identity_token="identity-new")

        with patch("launcher_auth.oauth.manager.create_game_session", AsyncMock(return_value=minted)):
            result = invoke(runner, cli_env, ["--json", *base_args, "launch-tokens"])

        assert result.exit_code == 0
        data = json.loads(result.output)["data"]
        assert data["session_token"] == "session-new"
        assert data["identity_token"] == "identity-new"
        assert data["has_game_tokens"] is True

    def test_launch_tokens_without_session(self, runner, cli_env, base_args) -> None:
        """Test that launch-tokens fails without a session."""
        result = invoke(runner, cli_env, [*base_args, "launch-tokens"])

        assert result.exit_code == 1
        assert "No valid session" in result.output


class TestOfficialSessionCommand:
    """Tests for the official-session command."""

    def test_finds_official_profile(self, runner, cli_env, base_args, app_dir, make_session) -> None:
        """Test lookup through an official profile."""
        SessionStore(app_dir).save(make_session(username="AltUser"), "Alt")

        result = invoke(runner, cli_env, ["--json", *base_args, "official-session"])

        assert result.exit_code == 0
        assert json.loads(result.output)["data"]["username"] == "AltUser"

    def test_none_found(self, runner, cli_env, base_args) -> None:
        """Test the error when no official session exists."""
        result = invoke(runner, cli_env, [*base_args, "official-session"])

        assert result.exit_code == 1


class TestMigrateCommand:
    """Tests for the migrate command."""

    def test_migrates_legacy_file(self, runner, cli_env, base_args, app_dir, make_session) -> None:
        """Test moving the legacy session into the active profile."""
        (app_dir / "hytale_session.json").write_text(json.dumps(make_session().to_dict()))

        result = invoke(runner, cli_env, ["--json", *base_args, "migrate"])

        assert result.exit_code == 0
        assert json.loads(result.output)["data"]["migrated"] is True
        assert SessionStore(app_dir).exists("Main")

    def test_nothing_to_migrate(self, runner, cli_env, base_args) -> None:
        """Test migrate without a legacy file."""
        result = invoke(runner, cli_env, [*base_args, "migrate"])

        assert result.exit_code == 0
        assert "Nothing to migrate" in result.output


class TestProfilesCommand:
    """Tests for the profiles command."""

    def test_lists_profiles(self, runner, cli_env, base_args, app_dir, make_session) -> None:
        """Test the profile table in JSON mode."""
        SessionStore(app_dir).save(make_session(), "Main")

        result = invoke(runner, cli_env, ["--json", *base_args, "profiles"])

        rows = json.loads(result.output)["data"]
        assert rows[0] == {"name": "Main", "active": "yes", "official": "no", "session": "yes"}
        assert rows[1]["official"] == "yes"
        assert rows[1]["session"] == "no"
