"""Token endpoint client: authorization-code exchange and refresh.

Expected failures (non-2xx, transport errors, malformed JSON) are logged and
reported as ``None``; callers decide what that means. Nothing here retries:
an authorization code is single-use, and a refresh token may already have
been rotated by the time a retry would run.
"""

import logging
from datetime import datetime, timezone

import httpx

from ..config import AuthSettings
from .tokens import TokenResponse

logger = logging.getLogger(__name__)


async def _post_token_request(
    settings: AuthSettings,
    form: dict[str, str],
    action: str,
    http_client: httpx.AsyncClient | None = None,
) -> TokenResponse | None:
    """POST a form-encoded token request and parse the result.

    Args:
        settings: Provider endpoints and client identity
        form: Form fields for the token endpoint
        action: Human-readable name for log messages
        http_client: Optional HTTP client

    Returns:
        TokenResponse on success, None on any expected failure
    """
    http = http_client or httpx.AsyncClient(timeout=settings.http_timeout)
    should_close = http_client is None

    try:
        response = await http.post(
            settings.token_url,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        received_at = datetime.now(timezone.utc)

        if not response.is_success:
            # Body goes to the log only; it is never surfaced to the user
            logger.error(f"{action} failed (HTTP {response.status_code}): {response.text}")
            return None

        data = response.json()
        if not isinstance(data, dict):
            logger.error(f"Malformed response during {action.lower()}: not a JSON object")
            return None
        return TokenResponse.from_response(data, received_at=received_at)

    except httpx.RequestError as e:
        logger.error(f"Network error during {action.lower()}: {e}")
        return None
    except (ValueError, KeyError, TypeError) as e:
        logger.error(f"Malformed response during {action.lower()}: {e}")
        return None
    finally:
        if should_close:
            await http.aclose()


async def exchange_code(
    code: str,
    code_verifier: str,
    settings: AuthSettings,
    http_client: httpx.AsyncClient | None = None,
) -> TokenResponse | None:
    """Exchange an authorization code for tokens.

    Args:
        code: Authorization code from the callback
        code_verifier: PKCE verifier matching the challenge sent earlier
        settings: Provider endpoints and client identity
        http_client: Optional HTTP client

    Returns:
        TokenResponse, or None if the exchange failed
    """
    form = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.redirect_uri,
        "client_id": settings.client_id,
        "code_verifier": code_verifier,
    }
    return await _post_token_request(settings, form, "Token exchange", http_client)


async def refresh_tokens(
    refresh_token: str,
    settings: AuthSettings,
    http_client: httpx.AsyncClient | None = None,
) -> TokenResponse | None:
    """Obtain a new access token from a refresh token.

    The result's refresh_token is None when the provider did not rotate it.

    Args:
        refresh_token: The current refresh token
        settings: Provider endpoints and client identity
        http_client: Optional HTTP client

    Returns:
        TokenResponse, or None if the refresh failed
    """
    if not refresh_token:
        logger.debug("No refresh token available")
        return None

    form = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": settings.client_id,
    }
    return await _post_token_request(settings, form, "Token refresh", http_client)
