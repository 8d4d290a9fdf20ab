"""Per-profile session storage.

Each launcher profile keeps its session in its own folder:

    <app_dir>/Profiles/<sanitized profile name>/hytale_session.json

The record is indented JSON so it stays human-diffable. Token fields are
encrypted individually with Fernet (key in the OS keyring, machine-derived
fallback) and stored as ``"fernet:<token>"``; usernames, UUIDs and expiry
remain readable. Files are written with 0600 permissions under a file lock.
"""

import base64
import hashlib
import json
import logging
import os
import stat
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

import keyring
from cryptography.fernet import Fernet, InvalidToken

from ..config import sanitize_profile_name
from .tokens import Session

logger = logging.getLogger(__name__)

# File locking support
if sys.platform != "win32":
    import fcntl

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire a file lock (Unix implementation using fcntl).

        Args:
            filepath: Path to the file to lock
            exclusive: If True, acquire exclusive lock; otherwise shared lock
        """
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r") as lock_file:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
else:
    import msvcrt

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire a file lock (Windows implementation using msvcrt).

        msvcrt has no shared locks, so readers lock exclusively too.
        """
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r+") as lock_file:
            try:
                msvcrt.locking(lock_file.fileno(), msvcrt.LK_LOCK, 1)
                yield
            finally:
                try:
                    msvcrt.locking(lock_file.fileno(), msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass


KEYRING_SERVICE = "launcher-auth"
KEYRING_USERNAME = "session-encryption-key"

PROFILES_DIR = "Profiles"
SESSION_FILE = "hytale_session.json"

SECRET_FIELDS = ("access_token", "refresh_token", "session_token", "identity_token")


class SessionStoreError(Exception):
    """Error in session storage operations."""

    pass


def _derive_fallback_key() -> bytes:
    """Derive a fallback encryption key from machine-specific data.

    Used when keyring is not available. Less secure than keyring but
    still provides encryption at rest.

    Returns:
        32-byte key suitable for Fernet
    """
    components = []

    machine_id_path = Path("/etc/machine-id")
    if machine_id_path.exists():
        components.append(machine_id_path.read_text().strip())

    components.append(str(Path.home()))
    components.append(os.environ.get("USER", os.environ.get("USERNAME", "launcher")))

    combined = ":".join(components)
    key_bytes = hashlib.sha256(combined.encode()).digest()

    # Fernet requires base64-encoded 32-byte key
    return base64.urlsafe_b64encode(key_bytes)


class TokenCipher:
    """Encrypts individual token values for storage."""

    PREFIX = "fernet:"

    def __init__(self, key: bytes):
        self._fernet = Fernet(key)

    @classmethod
    def from_keyring(cls) -> "TokenCipher":
        """Load (or create) the key in the OS keyring, falling back to a derived key."""
        try:
            key = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)

            if key is None:
                key = Fernet.generate_key().decode("ascii")
                keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, key)
                logger.debug("Generated new encryption key in keyring")

            logger.debug("Using keyring for encryption key storage")
            return cls(key.encode("ascii"))

        except Exception as e:
            logger.warning(
                f"Keyring not available: {type(e).__name__}: {e}. "
                f"Using fallback encryption (machine-derived key)."
            )
            return cls(_derive_fallback_key())

    def encrypt(self, value: str) -> str:
        if not value:
            return ""
        return self.PREFIX + self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, value: str) -> str:
        """Decrypt a stored value. Plain (unprefixed) values pass through.

        A value encrypted under a different key decrypts to "", which leaves
        the session unusable and forces a fresh login.
        """
        if not value.startswith(self.PREFIX):
            return value
        try:
            token = value[len(self.PREFIX):].encode("ascii")
            return self._fernet.decrypt(token).decode("utf-8")
        except (InvalidToken, UnicodeError):
            logger.warning("Failed to decrypt stored token. The encryption key may have changed.")
            return ""


class SessionStore:
    """File-backed storage of one Session per launcher profile."""

    def __init__(self, app_dir: Path, cipher: TokenCipher | None = None):
        """Initialize session store.

        Args:
            app_dir: Launcher data directory
            cipher: Optional cipher for token fields; None stores them in plain text
        """
        self.app_dir = app_dir
        self.cipher = cipher

    def profile_dir(self, profile_name: str) -> Path:
        folder = sanitize_profile_name(profile_name) or "_"
        return self.app_dir / PROFILES_DIR / folder

    def session_path(self, profile_name: str) -> Path:
        return self.profile_dir(profile_name) / SESSION_FILE

    def legacy_session_path(self) -> Path:
        """The shared session file used before sessions moved into profiles."""
        return self.app_dir / SESSION_FILE

    def exists(self, profile_name: str) -> bool:
        return self.session_path(profile_name).exists()

    def _encode(self, session: Session) -> dict[str, Any]:
        data = session.to_dict()
        if self.cipher is not None:
            for name in SECRET_FIELDS:
                data[name] = self.cipher.encrypt(data[name])
        return data

    def _decode(self, data: dict[str, Any]) -> Session:
        if self.cipher is not None:
            for name in SECRET_FIELDS:
                value = data.get(name)
                if isinstance(value, str):
                    data[name] = self.cipher.decrypt(value)
        return Session.from_dict(data)

    def read(self, path: Path) -> Session | None:
        """Read a session record from an arbitrary path.

        Returns:
            The Session, or None if the file is missing or unreadable
        """
        if not path.exists():
            return None

        try:
            with _file_lock(path, exclusive=False):
                data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load session from {path}: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed session file {path}")
            return None

        return self._decode(data)

    def write(self, path: Path, session: Session) -> None:
        """Write a session record to an arbitrary path.

        Raises:
            SessionStoreError: If the file cannot be written
        """
        payload = json.dumps(self._encode(session), indent=2)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            try:
                path.parent.chmod(stat.S_IRWXU)  # 0700
            except OSError as e:
                logger.debug(f"Could not set directory permissions: {e}")

            with _file_lock(path, exclusive=True):
                path.write_text(payload, encoding="utf-8")
                try:
                    path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600
                except OSError as e:
                    logger.warning(f"Could not set file permissions: {e}")
        except OSError as e:
            raise SessionStoreError(f"Failed to save session to {path}: {e}") from e

    def load(self, profile_name: str) -> Session | None:
        """Load the session stored for a profile."""
        session = self.read(self.session_path(profile_name))
        if session is not None:
            logger.debug(f"Loaded session for profile '{profile_name}' ({session.username})")
        return session

    def save(self, session: Session, profile_name: str) -> None:
        """Store the session for a profile, replacing any previous one."""
        self.write(self.session_path(profile_name), session)
        logger.debug(f"Stored session for profile '{profile_name}'")

    def delete(self, profile_name: str) -> bool:
        """Delete the session stored for a profile.

        Returns:
            True if a file was deleted, False if none existed
        """
        path = self.session_path(profile_name)
        if not path.exists():
            return False

        try:
            path.unlink()
        except OSError as e:
            logger.warning(f"Failed to delete session file {path}: {e}")
            return False

        lock_path = path.with_suffix(path.suffix + ".lock")
        lock_path.unlink(missing_ok=True)
        logger.debug(f"Deleted session for profile '{profile_name}'")
        return True


class LegacyMigrationPolicy:
    """Moves the pre-profile shared session file into a profile folder.

    Migration only happens when the shared file exists, parses, and the
    target profile has no session file of its own. The shared file is
    deleted afterwards.
    """

    def migrate(self, store: SessionStore, profile_name: str) -> bool:
        """Run the migration for one profile.

        Returns:
            True if a session was migrated into the profile
        """
        legacy_path = store.legacy_session_path()
        if not legacy_path.exists():
            return False

        if store.exists(profile_name):
            logger.debug(
                f"Profile '{profile_name}' already has a session; leaving legacy file alone"
            )
            return False

        session = store.read(legacy_path)
        if session is None:
            logger.warning(f"Legacy session file {legacy_path} is unreadable; not migrating")
            return False

        store.save(session, profile_name)
        logger.info(f"Migrated legacy session into profile '{profile_name}'")

        try:
            legacy_path.unlink()
            legacy_path.with_suffix(legacy_path.suffix + ".lock").unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not delete old session file: {e}")

        return True
