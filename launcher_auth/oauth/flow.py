"""OAuth authorization code flow with PKCE.

This module drives one login attempt end to end:
1. Generate PKCE pair
2. Start the loopback callback listener and build the state around its port
3. Build authorization URL and open browser
4. Wait for the callback, the timeout, or cancellation
5. Exchange code for tokens
6. Fetch the account's game profile
7. Mint a game session
8. Hand back a complete Session
"""

import asyncio
import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable
from urllib.parse import quote, urlencode

import httpx

from ..config import AuthSettings
from ..platform import OpenUrl, open_url_in_browser
from .callback import CallbackResult, CallbackTimeoutError, LoopbackCallbackServer
from .errors import AuthError, NoGameProfileError, ProfileFetchError
from .exchange import exchange_code
from .pkce import generate_pkce_pair, generate_state
from .profiles import ProfileSelectionPolicy, create_game_session, fetch_profile, select_first_profile
from .tokens import Session

logger = logging.getLogger(__name__)


class LoginState(str, Enum):
    """States of a login attempt."""

    IDLE = "idle"
    KEYS_GENERATED = "keys_generated"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING_CODE = "exchanging_code"
    FETCHING_PROFILE = "fetching_profile"
    CREATING_GAME_SESSION = "creating_game_session"
    AUTHENTICATED = "authenticated"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (LoginState.AUTHENTICATED, LoginState.CANCELLED, LoginState.FAILED)


class FailureReason(str, Enum):
    """Why a login attempt ended in FAILED."""

    NO_GAME_PROFILE = "no_game_profile"
    AUTH_EXCHANGE_FAILED = "auth_exchange_failed"
    PROFILE_FETCH_FAILED = "profile_fetch_failed"
    AUTHORIZATION_DENIED = "authorization_denied"
    STATE_MISMATCH = "state_mismatch"
    UNEXPECTED = "unexpected"


_USER_MESSAGES = {
    FailureReason.NO_GAME_PROFILE: (
        "This account has no game profile yet. Create one on the account "
        "website, then log in again."
    ),
    FailureReason.AUTH_EXCHANGE_FAILED: (
        "Could not complete sign-in with the account service. "
        "Check your connection and try again."
    ),
    FailureReason.PROFILE_FETCH_FAILED: (
        "Could not reach the account service to load your profile. "
        "Check your connection and try again."
    ),
    FailureReason.AUTHORIZATION_DENIED: "Sign-in was not authorized.",
    FailureReason.STATE_MISMATCH: "The sign-in response did not match this request. Please try again.",
    FailureReason.UNEXPECTED: "Login failed unexpectedly. See the log for details.",
}


@dataclass
class LoginResult:
    """Outcome of one login attempt."""

    state: LoginState
    session: Session | None = None
    reason: FailureReason | None = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.state == LoginState.AUTHENTICATED and self.session is not None

    def user_message(self) -> str:
        """Reason-specific text suitable for showing to the user."""
        if self.succeeded and self.session:
            return f"Logged in as {self.session.username}"
        if self.state == LoginState.CANCELLED:
            return "Login was cancelled or timed out."
        if self.reason is None:
            return "Login failed."
        return _USER_MESSAGES[self.reason]


def build_authorization_url(
    settings: AuthSettings,
    code_challenge: str,
    state: str,
) -> str:
    """Build the authorization URL for browser redirect.

    Parameters are sent in a fixed order, percent-encoded (space as %20).

    Args:
        settings: Provider endpoints and client identity
        code_challenge: PKCE code challenge
        state: State parameter embedding the callback port

    Returns:
        Complete authorization URL
    """
    params = [
        ("access_type", "offline"),
        ("client_id", settings.client_id),
        ("code_challenge", code_challenge),
        ("code_challenge_method", "S256"),
        ("redirect_uri", settings.redirect_uri),
        ("response_type", "code"),
        ("scope", settings.scopes),
        ("state", state),
    ]
    return f"{settings.auth_url}?{urlencode(params, quote_via=quote)}"


class LoginFlow:
    """Drives a single login attempt through its states.

    An instance is single-use. It never persists anything; the session
    manager stores and publishes the Session of a successful result.

    Usage:
        flow = LoginFlow(settings)
        result = await flow.run(cancel_event)
        if result.succeeded:
            ...
    """

    def __init__(
        self,
        settings: AuthSettings,
        open_url: OpenUrl = open_url_in_browser,
        http_client: httpx.AsyncClient | None = None,
        on_status: Callable[[str], None] | None = None,
        profile_policy: ProfileSelectionPolicy = select_first_profile,
        callback_timeout: float | None = None,
    ):
        """Initialize login flow.

        Args:
            settings: Provider endpoints and client identity
            open_url: Opens the authorization URL; returns False on failure
            http_client: Optional shared HTTP client for provider calls
            on_status: Optional callback for status messages
            profile_policy: Picks one game profile from the account
            callback_timeout: Seconds to wait for the redirect (defaults to settings)
        """
        self.settings = settings
        self.open_url = open_url
        self.http_client = http_client
        self.on_status = on_status or (lambda msg: None)
        self.profile_policy = profile_policy
        self.callback_timeout = (
            callback_timeout if callback_timeout is not None else settings.callback_timeout
        )

        self.state = LoginState.IDLE
        self.port: int | None = None

    def _emit_status(self, message: str) -> None:
        """Emit a status message."""
        logger.info(message)
        self.on_status(message)

    def _transition(self, state: LoginState) -> None:
        logger.debug(f"Login state: {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, reason: FailureReason, message: str) -> LoginResult:
        self._transition(LoginState.FAILED)
        logger.error(f"Login failed ({reason.value}): {message}")
        return LoginResult(state=LoginState.FAILED, reason=reason, message=message)

    def _cancel(self, message: str) -> LoginResult:
        self._transition(LoginState.CANCELLED)
        logger.warning(message)
        return LoginResult(state=LoginState.CANCELLED, message=message)

    async def run(self, cancel_event: asyncio.Event | None = None) -> LoginResult:
        """Execute the login flow.

        Args:
            cancel_event: Setting this event abandons the wait for the callback

        Returns:
            LoginResult; AUTHENTICATED results carry the new Session

        Raises:
            AuthError: If this flow instance was already run
        """
        if self.state != LoginState.IDLE:
            raise AuthError("A LoginFlow can only be run once")

        try:
            return await self._run(cancel_event)
        except asyncio.CancelledError:
            self._transition(LoginState.CANCELLED)
            raise
        except Exception as e:
            return self._fail(FailureReason.UNEXPECTED, f"{type(e).__name__}: {e}")

    async def _run(self, cancel_event: asyncio.Event | None) -> LoginResult:
        pkce = generate_pkce_pair()

        callback_server = LoopbackCallbackServer()
        await callback_server.start()
        try:
            self.port = callback_server.port
            state = generate_state(callback_server.port)
            self._transition(LoginState.KEYS_GENERATED)

            auth_url = build_authorization_url(self.settings, pkce.challenge, state)

            self._transition(LoginState.AWAITING_CALLBACK)
            self._emit_status("Opening browser for login...")
            if not self.open_url(auth_url):
                self._emit_status(
                    f"Could not open browser. Please open this URL manually:\n{auth_url}"
                )

            result = await self._await_callback(callback_server, cancel_event)
        finally:
            await callback_server.stop()

        if result is None:
            return self._cancel("Login cancelled or timed out")

        if not result.is_success():
            description = result.error_description or ""
            return self._fail(
                FailureReason.AUTHORIZATION_DENIED,
                f"{result.error}: {description}".rstrip(": "),
            )

        # The consent page may drop the state; when it is echoed it must match
        if result.state is not None and not hmac.compare_digest(result.state, state):
            return self._fail(FailureReason.STATE_MISMATCH, "State mismatch in callback")

        self._transition(LoginState.EXCHANGING_CODE)
        self._emit_status("Exchanging authorization code for tokens...")
        tokens = await exchange_code(
            result.code or "", pkce.verifier, self.settings, self.http_client
        )
        if tokens is None:
            return self._fail(
                FailureReason.AUTH_EXCHANGE_FAILED, "Failed to exchange auth code for tokens"
            )

        self._transition(LoginState.FETCHING_PROFILE)
        self._emit_status("Fetching account profile...")
        try:
            profile = await fetch_profile(
                tokens.access_token, self.settings, self.http_client, self.profile_policy
            )
        except NoGameProfileError as e:
            return self._fail(FailureReason.NO_GAME_PROFILE, str(e))
        except ProfileFetchError as e:
            return self._fail(FailureReason.PROFILE_FETCH_FAILED, f"{e.error_type}: {e}")

        self._transition(LoginState.CREATING_GAME_SESSION)
        self._emit_status("Creating game session...")
        game_session = await create_game_session(
            tokens.access_token, profile.uuid, self.settings, self.http_client
        )
        if game_session is None:
            logger.warning("Logged in without game session tokens; they are minted again before launch")

        session = Session(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or "",
            expires_at=tokens.expires_at,
            username=profile.username,
            uuid=profile.uuid,
            account_owner_id=profile.owner,
        )
        if game_session is not None:
            session.apply_game_session(game_session)

        self._transition(LoginState.AUTHENTICATED)
        self._emit_status(f"Logged in as {session.username} ({session.uuid})")
        return LoginResult(state=LoginState.AUTHENTICATED, session=session)

    async def _await_callback(
        self,
        callback_server: LoopbackCallbackServer,
        cancel_event: asyncio.Event | None,
    ) -> CallbackResult | None:
        """Wait for the first of: callback, timeout, cancel_event.

        Returns:
            The callback result, or None on timeout/cancellation
        """
        callback_task = asyncio.ensure_future(
            callback_server.wait_for_callback(self.callback_timeout)
        )
        waiters: set[asyncio.Future] = {callback_task}
        if cancel_event is not None:
            waiters.add(asyncio.ensure_future(cancel_event.wait()))

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [w for w in waiters if not w.done()]
            for waiter in pending:
                waiter.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if callback_task in done:
            try:
                return callback_task.result()
            except CallbackTimeoutError as e:
                logger.warning(str(e))
                return None

        logger.info("Login cancelled by caller")
        return None
