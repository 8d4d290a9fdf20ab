"""High-level session manager for launcher-auth.

This module provides the main interface used by the launcher: login and
logout, keeping the active profile's session valid, preparing credentials
before a game launch, and finding any usable official session for
authenticated metadata queries.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable

import httpx

from ..config import ApplicationProfile, AuthSettings, ConfigStore
from ..platform import OpenUrl, open_url_in_browser
from .errors import AuthError, LoginInProgressError
from .exchange import refresh_tokens
from .flow import LoginFlow, LoginResult
from .profiles import ProfileSelectionPolicy, create_game_session, select_first_profile
from .store import LegacyMigrationPolicy, SessionStore, SessionStoreError, TokenCipher
from .tokens import LaunchCredentials, Session, apply_refresh

logger = logging.getLogger(__name__)


def _format_timedelta(td: timedelta) -> str:
    """Format a timedelta into a human-readable string.

    Examples:
        - "45 minutes"
        - "2 hours"
        - "3 days"

    Args:
        td: The timedelta to format

    Returns:
        Human-readable string representation
    """
    total_seconds = int(td.total_seconds())

    if total_seconds < 0:
        return "Expired"

    if total_seconds < 60:
        return f"{total_seconds} seconds"

    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"

    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"

    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''}"


@dataclass
class AuthStatus:
    """Authentication status of the active profile. Contains no secrets.

    Attributes:
        logged_in: Whether a session is loaded
        profile: Active launcher profile name
        username: Account username
        uuid: Account game profile UUID
        expires_at: Access token expiry (ISO format string)
        expires_in_human: Human-readable time until expiry (e.g., "45 minutes")
        has_game_tokens: Whether game session tokens are cached
    """

    logged_in: bool
    profile: str | None = None
    username: str | None = None
    uuid: str | None = None
    expires_at: str | None = None
    expires_in_human: str | None = None
    has_game_tokens: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "logged_in": self.logged_in,
            "profile": self.profile,
            "username": self.username,
            "uuid": self.uuid,
            "expires_at": self.expires_at,
            "expires_in_human": self.expires_in_human,
            "has_game_tokens": self.has_game_tokens,
        }


class SessionManager:
    """Owns the current session and every operation that changes it.

    Work on one profile (login publish, refresh, game-session mint) is
    serialized by a per-profile lock: reusing a refresh token the provider
    has already rotated invalidates the session. Different profiles proceed
    independently.

    Usage:
        manager = SessionManager(settings, config_store)
        manager.load_current()

        session = await manager.ensure_valid()
        credentials = await manager.launch_credentials()
    """

    def __init__(
        self,
        settings: AuthSettings,
        config_store: ConfigStore,
        store: SessionStore | None = None,
        open_url: OpenUrl = open_url_in_browser,
        http_client: httpx.AsyncClient | None = None,
        profile_policy: ProfileSelectionPolicy = select_first_profile,
        migration_policy: LegacyMigrationPolicy | None = None,
    ):
        """Initialize the manager. No I/O happens until load_current().

        Args:
            settings: Provider endpoints and local behavior
            config_store: Source of launcher profiles
            store: Session storage (defaults to the app dir, encrypted per settings)
            open_url: Browser collaborator for login
            http_client: Optional shared HTTP client for provider calls
            profile_policy: Picks one game profile at login
            migration_policy: Legacy session migration (defaults to LegacyMigrationPolicy)
        """
        self.settings = settings
        self.config_store = config_store
        if store is None:
            cipher = TokenCipher.from_keyring() if settings.encrypt_tokens else None
            store = SessionStore(settings.app_dir, cipher)
        self.store = store
        self.open_url = open_url
        self.http_client = http_client
        self.profile_policy = profile_policy
        self.migration_policy = migration_policy or LegacyMigrationPolicy()

        self.current_session: Session | None = None
        self._session_profile: str | None = None
        self._pending_login: LoginFlow | None = None
        self._migration_attempted = False
        self._locks: dict[str, asyncio.Lock] = {}

    # Profiles and locking

    def _active_profile(self) -> ApplicationProfile | None:
        return self.config_store.active_profile()

    def _lock_for(self, profile_name: str) -> asyncio.Lock:
        lock = self._locks.get(profile_name)
        if lock is None:
            lock = self._locks[profile_name] = asyncio.Lock()
        return lock

    def _persist(self, session: Session, profile_name: str) -> None:
        try:
            self.store.save(session, profile_name)
        except SessionStoreError as e:
            # In-memory session stays usable; a later save or re-login recovers
            logger.warning(f"Failed to save session: {e}")

    def _clear(self) -> None:
        """Forget the current session and delete its file."""
        profile_name = self._session_profile
        self.current_session = None
        self._session_profile = None
        if profile_name is not None:
            self.store.delete(profile_name)

    # Loading

    def migrate_legacy_session(self) -> bool:
        """Move a legacy shared session into the active profile (once).

        The profile is marked official when a session was migrated.

        Returns:
            True if a session was migrated
        """
        if self._migration_attempted:
            return False
        self._migration_attempted = True

        profile = self._active_profile()
        if profile is None:
            return False

        try:
            migrated = self.migration_policy.migrate(self.store, profile.name)
        except SessionStoreError as e:
            logger.warning(f"Session migration failed: {e}")
            return False

        if migrated:
            self.config_store.mark_official(profile.name)
        return migrated

    def load_current(self) -> Session | None:
        """Load the active profile's session, migrating a legacy one first."""
        self.migrate_legacy_session()

        self.current_session = None
        self._session_profile = None

        profile = self._active_profile()
        if profile is None:
            logger.debug("No active profile; no session loaded")
            return None

        session = self.store.load(profile.name)
        if session is not None:
            self.current_session = session
            self._session_profile = profile.name
            logger.info(f"Restored session for {session.username}")
        return session

    def reload_for_current_profile(self) -> Session | None:
        """Reload the session after the active profile changed."""
        session = self.load_current()
        logger.info(
            f"Reloaded session for profile, user: {session.username}"
            if session
            else "No session for current profile"
        )
        return session

    # Login / logout

    @property
    def login_in_progress(self) -> bool:
        return self._pending_login is not None

    async def login(
        self,
        cancel_event: asyncio.Event | None = None,
        on_status: Callable[[str], None] | None = None,
    ) -> LoginResult:
        """Run the login flow for the active profile.

        On success the session is persisted, published as current_session and
        the profile is marked official.

        Args:
            cancel_event: Setting this event abandons the wait for the browser
            on_status: Optional callback for status messages

        Raises:
            AuthError: If there is no active profile
            LoginInProgressError: If another login is waiting for its callback
        """
        profile = self._active_profile()
        if profile is None:
            raise AuthError("No active launcher profile to log in")
        if self._pending_login is not None:
            raise LoginInProgressError("A login is already in progress")

        flow = LoginFlow(
            self.settings,
            open_url=self.open_url,
            http_client=self.http_client,
            on_status=on_status,
            profile_policy=self.profile_policy,
        )
        self._pending_login = flow
        try:
            result = await flow.run(cancel_event)
        finally:
            self._pending_login = None

        if not result.succeeded or result.session is None:
            return result

        async with self._lock_for(profile.name):
            self._persist(result.session, profile.name)

            active = self._active_profile()
            if active is not None and active.name == profile.name:
                self.current_session = result.session
                self._session_profile = profile.name

        if not profile.is_official:
            self.config_store.mark_official(profile.name)

        logger.info(f"Logged in as {result.session.username} ({result.session.uuid})")
        return result

    def logout(self) -> None:
        """Clear the current session from memory and disk."""
        self._clear()
        logger.info("Logged out")

    # Validity and refresh

    async def _refresh_locked(self, session: Session, profile_name: str) -> bool:
        """Refresh a session in place and persist it. Caller holds the profile lock."""
        response = await refresh_tokens(session.refresh_token, self.settings, self.http_client)
        if response is None:
            return False

        apply_refresh(session, response)
        self._persist(session, profile_name)
        logger.info(f"Token refreshed for profile '{profile_name}'")
        return True

    @asynccontextmanager
    async def _current_locked(self) -> AsyncIterator[tuple[Session, str] | None]:
        """Hold the lock of the profile owning current_session.

        The active profile can change while waiting for a lock. Once the lock
        is held the current session is checked again; if it moved to another
        profile, that profile's lock is taken instead.

        Yields:
            (session, profile_name), or None when there is no current session
        """
        while True:
            session, profile_name = self.current_session, self._session_profile
            if session is None or profile_name is None:
                yield None
                return

            async with self._lock_for(profile_name):
                if self.current_session is session and self._session_profile == profile_name:
                    yield session, profile_name
                    return

            logger.debug(f"Current session changed while waiting for profile '{profile_name}'")

    async def _ensure_valid_locked(self, session: Session, profile_name: str) -> Session | None:
        if not session.is_expired():
            return session

        logger.info("Access token expired, refreshing...")
        if not await self._refresh_locked(session, profile_name):
            logger.warning("Token refresh failed, session invalid; logging out")
            self._clear()
            return None
        return session

    async def ensure_valid(self) -> Session | None:
        """Return the current session, refreshing it when near expiry.

        A session whose refresh fails is cleared; stale data is never returned.

        Returns:
            A session valid for at least another minute, or None
        """
        async with self._current_locked() as current:
            if current is None:
                return None
            return await self._ensure_valid_locked(*current)

    async def force_refresh(self) -> bool:
        """Refresh regardless of expiry (e.g. after a 401/403 from the provider).

        Returns:
            True if refresh succeeded
        """
        async with self._current_locked() as current:
            if current is None:
                return False
            logger.info("Forcing token refresh...")
            refreshed = await self._refresh_locked(*current)

        if not refreshed:
            logger.warning("Forced token refresh failed")
        return refreshed

    async def ensure_fresh_for_launch(self) -> Session | None:
        """Prepare the session for a game launch.

        Game tokens expire independently of the access token, so a new game
        session is always minted. If minting fails the cached game tokens are
        kept and the session is still returned.

        Returns:
            The session, or None if there is no valid session
        """
        async with self._current_locked() as current:
            if current is None:
                return None
            profile_name = current[1]
            session = await self._ensure_valid_locked(*current)
            if session is None:
                return None

            logger.info("Creating fresh game session for launch...")
            try:
                game_session = await create_game_session(
                    session.access_token, session.uuid, self.settings, self.http_client
                )
            except Exception as e:
                logger.warning(f"Error creating fresh game session: {e}")
                game_session = None

            if game_session is not None:
                session.apply_game_session(game_session)
                self._persist(session, profile_name)
                logger.info("Fresh game session tokens obtained")
            else:
                logger.warning("Failed to create fresh game session; using cached tokens")

            return session

    async def launch_credentials(self) -> LaunchCredentials | None:
        """Credentials for the game process, or None without a valid session."""
        session = await self.ensure_fresh_for_launch()
        if session is None:
            return None

        credentials = LaunchCredentials.from_session(session)
        if not credentials.has_game_tokens:
            logger.warning("No game session tokens available; the game may reject the session")
        return credentials

    # Multi-profile lookup

    async def _load_usable_session(self, profile_name: str) -> Session | None:
        async with self._lock_for(profile_name):
            session = self.store.load(profile_name)
            if session is None or not session.has_refresh_token():
                return None

            if session.is_expired():
                logger.info(f"Refreshing token for official profile '{profile_name}'...")
                if not await self._refresh_locked(session, profile_name):
                    logger.warning(f"Failed to refresh token for profile '{profile_name}'")
                    return None

            return session

    async def find_any_valid_official_session(self) -> Session | None:
        """Find a usable session from the active profile or any official profile.

        Candidates are tried one at a time, in configuration order.

        Returns:
            A valid session (not necessarily the active profile's), or None
        """
        tried = self._session_profile
        if self.current_session is not None:
            session = await self.ensure_valid()
            if session is not None:
                return session

        official = [p for p in self.config_store.all_profiles() if p.is_official]
        if not official:
            logger.debug("No official profiles found")
            return None

        for profile in official:
            if profile.name == tried:
                continue
            session = await self._load_usable_session(profile.name)
            if session is not None:
                logger.info(f"Using official profile '{profile.name}' for API access")
                return session

        logger.warning("No valid official session found in any profile")
        return None

    # Status

    def get_auth_status(self) -> AuthStatus:
        """Non-secret summary of the active profile's session."""
        profile = self._active_profile()
        session = self.current_session
        if session is None:
            return AuthStatus(logged_in=False, profile=profile.name if profile else None)

        remaining = session.expires_at - datetime.now(timezone.utc)
        return AuthStatus(
            logged_in=True,
            profile=self._session_profile,
            username=session.username,
            uuid=session.uuid,
            expires_at=session.expires_at.isoformat(),
            expires_in_human=_format_timedelta(remaining),
            has_game_tokens=session.has_game_tokens(),
        )
