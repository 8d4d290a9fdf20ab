"""Settings and application-profile configuration for launcher-auth."""

import json
import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Protocol

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Provider contract
AUTH_URL = "https://oauth.accounts.hytale.com/oauth2/auth"
TOKEN_URL = "https://oauth.accounts.hytale.com/oauth2/token"
LAUNCHER_DATA_URL = "https://account-data.hytale.com/my-account/get-launcher-data"
GAME_SESSION_URL = "https://sessions.hytale.com/game-session/new"
CLIENT_ID = "hytale-launcher"
REDIRECT_URI = "https://accounts.hytale.com/consent/client"
SCOPES = "openid offline auth:launcher"

DEFAULT_APP_DIR = Path.home() / ".local" / "share" / "launcher-auth"

ENV_PREFIX = "LAUNCHER_AUTH_"

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".config" / "launcher-auth" / ".env",
]

# Characters that cannot appear in a folder name on any supported platform
_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


@dataclass
class AuthSettings:
    """Provider endpoints, client identity and local behavior.

    Every field can be overridden with a ``LAUNCHER_AUTH_<FIELD>`` environment
    variable (e.g. ``LAUNCHER_AUTH_CALLBACK_TIMEOUT=60``).
    """

    auth_url: str = AUTH_URL
    token_url: str = TOKEN_URL
    launcher_data_url: str = LAUNCHER_DATA_URL
    game_session_url: str = GAME_SESSION_URL
    client_id: str = CLIENT_ID
    redirect_uri: str = REDIRECT_URI
    scopes: str = SCOPES
    app_dir: Path = field(default_factory=lambda: DEFAULT_APP_DIR)
    callback_timeout: float = 900.0
    http_timeout: float = 30.0
    encrypt_tokens: bool = True


def _coerce(value: str, current: Any) -> Any:
    """Convert an environment string to the type of the default value."""
    if isinstance(current, bool):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, float):
        return float(value)
    if isinstance(current, Path):
        return Path(value).expanduser()
    return value


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking project then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def load_settings(env_path: Path | None = None, **overrides: Any) -> AuthSettings:
    """Build settings from defaults, environment variables and overrides.

    Args:
        env_path: Explicit path to a .env file (optional)
        **overrides: Field values that win over the environment

    Raises:
        ValueError: If a numeric environment variable is malformed
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)
        logger.debug(f"Loaded environment from {env_file}")

    settings = AuthSettings()
    for f in fields(settings):
        raw = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
        if raw is None:
            continue
        try:
            setattr(settings, f.name, _coerce(raw, getattr(settings, f.name)))
        except ValueError as e:
            raise ValueError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}") from e

    for name, value in overrides.items():
        if value is not None:
            setattr(settings, name, value)

    return settings


def sanitize_profile_name(name: str) -> str:
    """Turn a profile display name into a safe folder name."""
    return _INVALID_FILENAME_CHARS.sub("", name)


@dataclass
class ApplicationProfile:
    """A launcher profile. Official profiles are backed by a provider account."""

    name: str
    is_official: bool = False

    @property
    def folder_name(self) -> str:
        return sanitize_profile_name(self.name)


class ConfigStore(Protocol):
    """Application configuration consumed by the session manager."""

    def active_profile(self) -> ApplicationProfile | None: ...

    def all_profiles(self) -> list[ApplicationProfile]: ...

    def mark_official(self, name: str) -> None: ...


class JsonConfigStore:
    """ConfigStore backed by a JSON file.

    Layout::

        {"activeProfileIndex": 0,
         "profiles": [{"name": "Main", "isOfficial": true}]}
    """

    def __init__(self, path: Path):
        self.path = path
        self.active_index: int = -1
        self.profiles: list[ApplicationProfile] = []
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return

        with open(self.path) as f:
            data = json.load(f)

        self.active_index = int(data.get("activeProfileIndex", -1))
        self.profiles = [
            ApplicationProfile(
                name=entry.get("name", ""),
                is_official=bool(entry.get("isOfficial", False)),
            )
            for entry in data.get("profiles", [])
        ]

    def save(self) -> None:
        """Write the configuration back to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "activeProfileIndex": self.active_index,
            "profiles": [
                {"name": p.name, "isOfficial": p.is_official} for p in self.profiles
            ],
        }
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)

    def active_profile(self) -> ApplicationProfile | None:
        if 0 <= self.active_index < len(self.profiles):
            return self.profiles[self.active_index]
        return None

    def all_profiles(self) -> list[ApplicationProfile]:
        return list(self.profiles)

    def mark_official(self, name: str) -> None:
        for profile in self.profiles:
            if profile.name == name:
                profile.is_official = True
                self.save()
                logger.info(f"Marked profile '{name}' as official")
                return
        logger.warning(f"Cannot mark unknown profile '{name}' as official")

    def set_active(self, name: str) -> None:
        """Switch the active profile, adding it if it does not exist."""
        for index, profile in enumerate(self.profiles):
            if profile.name == name:
                self.active_index = index
                break
        else:
            self.profiles.append(ApplicationProfile(name=name))
            self.active_index = len(self.profiles) - 1
        self.save()
