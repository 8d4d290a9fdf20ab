"""OAuth sign-in and session support for launcher-auth.

This package implements the authorization code grant with PKCE against the
game account service: a loopback listener catches the browser redirect, the
code is exchanged for tokens, the account's game profile is fetched and a
game session is minted. Sessions are stored per launcher profile.

Main Components:
    SessionManager: High-level manager (login, refresh, launch preparation)
    LoginFlow: One login attempt, as a state machine
    SessionStore: Per-profile session files with encrypted tokens
    Session: Durable credential record

Quick Start:
    from launcher_auth.config import JsonConfigStore, load_settings
    from launcher_auth.oauth import SessionManager

    settings = load_settings()
    manager = SessionManager(settings, JsonConfigStore(settings.app_dir / "launcher_config.json"))
    manager.load_current()

    if manager.current_session is None:
        result = await manager.login(on_status=print)

    credentials = await manager.launch_credentials()
"""

from .callback import (
    CallbackError,
    CallbackResult,
    CallbackTimeoutError,
    LoopbackCallbackServer,
)
from .errors import AuthError, LoginInProgressError, NoGameProfileError, ProfileFetchError
from .exchange import exchange_code, refresh_tokens
from .flow import FailureReason, LoginFlow, LoginResult, LoginState, build_authorization_url
from .manager import AuthStatus, SessionManager
from .pkce import (
    PKCEPair,
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce_pair,
    generate_state,
    parse_state_port,
)
from .profiles import create_game_session, fetch_profile, select_first_profile
from .store import LegacyMigrationPolicy, SessionStore, SessionStoreError, TokenCipher
from .tokens import (
    AccountProfile,
    GameSession,
    LaunchCredentials,
    Session,
    TokenResponse,
    apply_refresh,
)

__all__ = [
    # Manager (main entry point)
    "SessionManager",
    "AuthStatus",
    # Flow
    "LoginFlow",
    "LoginResult",
    "LoginState",
    "FailureReason",
    "build_authorization_url",
    # Errors
    "AuthError",
    "ProfileFetchError",
    "NoGameProfileError",
    "LoginInProgressError",
    # Provider clients
    "exchange_code",
    "refresh_tokens",
    "fetch_profile",
    "create_game_session",
    "select_first_profile",
    # Tokens
    "Session",
    "TokenResponse",
    "AccountProfile",
    "GameSession",
    "LaunchCredentials",
    "apply_refresh",
    # Storage
    "SessionStore",
    "SessionStoreError",
    "TokenCipher",
    "LegacyMigrationPolicy",
    # PKCE
    "generate_pkce_pair",
    "generate_code_verifier",
    "generate_code_challenge",
    "generate_state",
    "parse_state_port",
    "PKCEPair",
    # Callback
    "LoopbackCallbackServer",
    "CallbackResult",
    "CallbackError",
    "CallbackTimeoutError",
]
