"""CLI entry point for launcher-auth."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import NoReturn

import click

from . import __version__
from .config import AuthSettings, JsonConfigStore, load_settings
from .oauth.errors import AuthError, LoginInProgressError
from .oauth.manager import SessionManager
from .oauth.store import SessionStore
from .output import OutputHandler

# Logger for CLI
logger = logging.getLogger("lauth")

CONFIG_FILE = "launcher_config.json"


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--app-dir", "app_dir", type=click.Path(file_okay=False), help="Launcher data directory")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Path to launcher profile config")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--profile", "-p", "profile", help="Switch the active profile before running the command")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: click.Context,
    json_mode: bool,
    app_dir: str | None,
    config_path: str | None,
    env_path: str | None,
    profile: str | None,
    verbose: bool,
) -> None:
    """launcher-auth - Sign in to the game account service and manage sessions."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["app_dir"] = Path(app_dir).expanduser() if app_dir else None
    ctx.obj["config_path"] = Path(config_path).expanduser() if config_path else None
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["profile"] = profile
    ctx.obj["output"] = OutputHandler(json_mode)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_settings(ctx: click.Context, **overrides: object) -> AuthSettings | NoReturn:
    """Get settings from context, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        return load_settings(ctx.obj["env_path"], app_dir=ctx.obj["app_dir"], **overrides)
    except ValueError as e:
        output.error(e, error_type="SettingsError", help_text="Check your LAUNCHER_AUTH_* variables.")
        raise SystemExit(1)  # Never reached due to sys.exit in output.error


def get_config_store(ctx: click.Context, settings: AuthSettings) -> JsonConfigStore | NoReturn:
    """Open the profile config, switching profile if --profile was given."""
    output: OutputHandler = ctx.obj["output"]
    path = ctx.obj["config_path"] or settings.app_dir / CONFIG_FILE
    try:
        store = JsonConfigStore(path)
    except json.JSONDecodeError as e:
        output.error(
            e,
            error_type="ConfigParseError",
            help_text=f"{path} contains invalid JSON. Check for syntax errors.",
        )
        raise SystemExit(1)

    if ctx.obj["profile"]:
        store.set_active(ctx.obj["profile"])
    return store


def get_manager(ctx: click.Context, load: bool = True, **overrides: object) -> SessionManager:
    """Build a session manager for the active profile."""
    settings = get_settings(ctx, **overrides)
    manager = SessionManager(settings, get_config_store(ctx, settings))
    if load:
        manager.load_current()
    return manager


@main.command()
@click.option("--timeout", "-t", type=float, default=None, help="Seconds to wait for the browser (default 900)")
@click.pass_context
def login(ctx: click.Context, timeout: float | None) -> None:
    """Sign in through the browser for the active profile."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx, callback_timeout=timeout)

    try:
        result = asyncio.run(manager.login(on_status=output.status))
    except LoginInProgressError as e:
        output.error(e, help_text="Finish or cancel the pending login first.")
        return
    except AuthError as e:
        output.error(e, help_text="Select a profile with 'lauth --profile NAME login'.")
        return

    if not result.succeeded or result.session is None:
        output.error(
            AuthError(result.user_message()),
            error_type=result.reason.value if result.reason else result.state.value,
        )
        return

    session = result.session
    output.success(
        {
            "username": session.username,
            "uuid": session.uuid,
            "expires_at": session.expires_at.isoformat(),
            "has_game_tokens": session.has_game_tokens(),
        },
        human_message=click.style(result.user_message(), fg="green"),
    )


@main.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Remove the active profile's session."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    was_logged_in = manager.current_session is not None
    manager.logout()
    output.success(
        {"logged_out": was_logged_in},
        human_message="Logged out." if was_logged_in else "No session to remove.",
    )


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the active profile's authentication status."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)
    auth_status = manager.get_auth_status()

    if ctx.obj["json_mode"]:
        output.success(auth_status.to_dict())
        return

    click.secho("\nAuthentication Status:\n", bold=True)
    click.echo(f"  Profile: {auth_status.profile or '(none)'}")
    if not auth_status.logged_in:
        click.secho("  Not logged in", fg="yellow")
        click.echo("\nRun 'lauth login' to sign in.")
        return

    click.secho("  Logged in", fg="green")
    click.echo(f"  User: {auth_status.username} ({auth_status.uuid})")
    click.echo(f"  Access token expires in: {auth_status.expires_in_human}")
    click.echo(f"  Game tokens cached: {'yes' if auth_status.has_game_tokens else 'no'}")


@main.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """Refresh the access token now, regardless of expiry."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    if manager.current_session is None:
        output.error(AuthError("Not logged in"), help_text="Run 'lauth login' to sign in.")
        return

    if not asyncio.run(manager.force_refresh()):
        output.error(
            AuthError("Token refresh failed"),
            help_text="The session may have been revoked. Run 'lauth login' to sign in again.",
        )
        return

    auth_status = manager.get_auth_status()
    output.success(
        auth_status.to_dict(),
        human_message=f"Token refreshed; expires in {auth_status.expires_in_human}.",
    )


@main.command("launch-tokens")
@click.pass_context
def launch_tokens(ctx: click.Context) -> None:
    """Prepare credentials for launching the game.

    Refreshes the access token if needed and always mints a new game
    session. Prints the identity and session tokens for the game process.
    """
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    credentials = asyncio.run(manager.launch_credentials())
    if credentials is None:
        output.error(AuthError("No valid session"), help_text="Run 'lauth login' to sign in.")
        return

    if ctx.obj["json_mode"]:
        output.success(credentials.to_dict())
        return

    click.echo(f"username={credentials.username}")
    click.echo(f"uuid={credentials.uuid}")
    click.echo(f"identity_token={credentials.identity_token}")
    click.echo(f"session_token={credentials.session_token}")
    if not credentials.has_game_tokens:
        click.secho("Warning: no game session tokens available", fg="yellow", err=True)


@main.command("official-session")
@click.pass_context
def official_session(ctx: click.Context) -> None:
    """Find any valid session among the official profiles."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx)

    session = asyncio.run(manager.find_any_valid_official_session())
    if session is None:
        output.error(
            AuthError("No valid official session found"),
            help_text="Log in with an official profile first.",
        )
        return

    output.success(
        {"username": session.username, "uuid": session.uuid},
        human_message=f"Found valid session for {session.username} ({session.uuid})",
    )


@main.command()
@click.pass_context
def migrate(ctx: click.Context) -> None:
    """Move a pre-profile session file into the active profile."""
    output: OutputHandler = ctx.obj["output"]
    manager = get_manager(ctx, load=False)

    migrated = manager.migrate_legacy_session()
    output.success(
        {"migrated": migrated},
        human_message="Legacy session migrated." if migrated else "Nothing to migrate.",
    )


@main.command()
@click.pass_context
def profiles(ctx: click.Context) -> None:
    """List launcher profiles and whether they hold a session."""
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)
    config_store = get_config_store(ctx, settings)
    store = SessionStore(settings.app_dir)

    active = config_store.active_profile()
    rows = [
        [
            profile.name,
            "yes" if active is not None and profile.name == active.name else "",
            "yes" if profile.is_official else "no",
            "yes" if store.exists(profile.name) else "no",
        ]
        for profile in config_store.all_profiles()
    ]
    output.table(["name", "active", "official", "session"], rows)


if __name__ == "__main__":
    main()
