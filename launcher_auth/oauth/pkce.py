"""PKCE (Proof Key for Code Exchange) implementation per RFC 7636.

Also generates the anti-forgery ``state`` value. The provider's consent page
reads the loopback port out of the state, so the redirect finds its waiting
listener without any shared registry.
"""

import base64
import binascii
import hashlib
import json
import secrets
from dataclasses import dataclass


# Minimum entropy for the code verifier (32 bytes -> 43 base64url chars)
MIN_VERIFIER_BYTES = 32
DEFAULT_VERIFIER_BYTES = 32

# Alphabet and length of the random part of the state (RFC 4648 base32 chars)
STATE_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
STATE_RANDOM_LENGTH = 26


@dataclass
class PKCEPair:
    """PKCE code verifier and challenge pair.

    The verifier is a cryptographically random string sent in the token request.
    The challenge is a SHA256 hash of the verifier sent in the authorization request.
    """

    verifier: str
    challenge: str
    method: str = "S256"


def _base64url(data: bytes) -> str:
    """Base64URL encode without padding (per RFC 7636)."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier(num_bytes: int = DEFAULT_VERIFIER_BYTES) -> str:
    """Generate a cryptographically random code verifier.

    Args:
        num_bytes: Number of random bytes to encode (at least 32)

    Returns:
        URL-safe base64 string without padding

    Raises:
        ValueError: If fewer than 32 bytes are requested
    """
    if num_bytes < MIN_VERIFIER_BYTES:
        raise ValueError(
            f"Code verifier needs at least {MIN_VERIFIER_BYTES} random bytes, got {num_bytes}"
        )

    return _base64url(secrets.token_bytes(num_bytes))


def generate_code_challenge(verifier: str) -> str:
    """Generate S256 code challenge from verifier.

    Per RFC 7636 Section 4.2:
    code_challenge = BASE64URL(SHA256(code_verifier))

    Args:
        verifier: The code verifier string

    Returns:
        Base64URL-encoded SHA256 hash of the verifier
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _base64url(digest)


def generate_pkce_pair(num_bytes: int = DEFAULT_VERIFIER_BYTES) -> PKCEPair:
    """Generate a complete PKCE pair (verifier + challenge)."""
    verifier = generate_code_verifier(num_bytes)
    challenge = generate_code_challenge(verifier)

    return PKCEPair(verifier=verifier, challenge=challenge, method="S256")


def generate_state(port: int) -> str:
    """Generate the state parameter for an authorization request.

    The state is base64 of ``{"state": <random>, "port": "<port>"}``.

    Args:
        port: The loopback port the callback listener is bound to

    Returns:
        Opaque state string
    """
    random_part = "".join(secrets.choice(STATE_CHARS) for _ in range(STATE_RANDOM_LENGTH))
    payload = json.dumps({"state": random_part, "port": str(port)}, separators=(",", ":"))
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def parse_state_port(state: str | None) -> int | None:
    """Extract the callback port embedded in a state value.

    Returns:
        The port, or None if the state is missing or malformed
    """
    if not state:
        return None

    try:
        data = json.loads(base64.b64decode(state.encode("ascii"), validate=True))
        return int(data["port"])
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError):
        return None
