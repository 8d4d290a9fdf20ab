"""Provider account profile lookup and game-session minting."""

import logging
from typing import Any, Callable

import httpx

from ..config import AuthSettings
from .errors import NoGameProfileError, ProfileFetchError
from .tokens import AccountProfile, GameSession

logger = logging.getLogger(__name__)

ProfileSelectionPolicy = Callable[[list[AccountProfile]], AccountProfile]


def select_first_profile(profiles: list[AccountProfile]) -> AccountProfile:
    """Default selection policy: the first profile the provider lists."""
    return profiles[0]


def parse_profiles(data: dict[str, Any]) -> list[AccountProfile]:
    """Parse the launcher-data response into AccountProfiles.

    Raises:
        ProfileFetchError: If the payload has the wrong shape
    """
    if not isinstance(data, dict):
        raise ProfileFetchError("profile_parse_error", "Launcher data is not a JSON object")

    owner = data.get("owner") or ""
    entries = data.get("profiles") or []
    if not isinstance(entries, list):
        raise ProfileFetchError("profile_parse_error", "Launcher data 'profiles' is not a list")

    profiles = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ProfileFetchError("profile_parse_error", "Malformed profile entry")
        profiles.append(
            AccountProfile(
                uuid=str(entry.get("uuid") or ""),
                username=str(entry.get("username") or ""),
                owner=str(owner),
            )
        )
    return profiles


async def fetch_profile(
    access_token: str,
    settings: AuthSettings,
    http_client: httpx.AsyncClient | None = None,
    policy: ProfileSelectionPolicy = select_first_profile,
) -> AccountProfile:
    """Fetch the account's game profiles and pick one.

    Args:
        access_token: Provider access token
        settings: Provider endpoints
        http_client: Optional HTTP client
        policy: Chooses one profile from a non-empty list

    Returns:
        The selected AccountProfile

    Raises:
        NoGameProfileError: If the account has no game profiles
        ProfileFetchError: On any HTTP, transport or parse failure
    """
    http = http_client or httpx.AsyncClient(timeout=settings.http_timeout)
    should_close = http_client is None

    try:
        response = await http.get(
            settings.launcher_data_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )

        if not response.is_success:
            logger.error(f"Profile fetch failed (HTTP {response.status_code}): {response.text}")
            raise ProfileFetchError("profile_fetch_failed", f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProfileFetchError("profile_parse_error", f"Invalid JSON: {e}") from e

        profiles = parse_profiles(data)
        if not profiles:
            logger.warning("No profiles found in provider account")
            raise NoGameProfileError("No game profiles found in this account")

        return policy(profiles)

    except httpx.RequestError as e:
        logger.error(f"Network error during profile fetch: {e}")
        raise ProfileFetchError("profile_fetch_error", str(e)) from e
    finally:
        if should_close:
            await http.aclose()


async def create_game_session(
    access_token: str,
    uuid: str,
    settings: AuthSettings,
    http_client: httpx.AsyncClient | None = None,
) -> GameSession | None:
    """Mint short-lived game credentials for a profile.

    Args:
        access_token: Provider access token
        uuid: Game profile UUID
        settings: Provider endpoints
        http_client: Optional HTTP client

    Returns:
        GameSession, or None if minting failed
    """
    http = http_client or httpx.AsyncClient(timeout=settings.http_timeout)
    should_close = http_client is None

    try:
        response = await http.post(
            settings.game_session_url,
            json={"uuid": uuid},
            headers={"Authorization": f"Bearer {access_token}"},
        )

        if not response.is_success:
            logger.warning(
                f"Game session creation failed (HTTP {response.status_code}): {response.text}"
            )
            return None

        data = response.json()
        if not isinstance(data, dict):
            logger.warning("Game session response is not a JSON object")
            return None

        game_session = GameSession.from_response(data)
        if not game_session.has_tokens():
            logger.warning("Game session response is missing sessionToken or identityToken")
            return None
        return game_session

    except httpx.RequestError as e:
        logger.warning(f"Network error during game session creation: {e}")
        return None
    except ValueError as e:
        logger.warning(f"Malformed game session response: {e}")
        return None
    finally:
        if should_close:
            await http.aclose()
