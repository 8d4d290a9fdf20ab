"""Desktop integration used by the login flow."""

import logging
import webbrowser
from typing import Callable

logger = logging.getLogger(__name__)

OpenUrl = Callable[[str], bool]


def open_url_in_browser(url: str) -> bool:
    """Open a URL in the user's default browser.

    Only http(s) URLs are accepted.

    Returns:
        True if a browser was launched
    """
    if not url or not url.startswith(("http://", "https://")):
        logger.warning(f"Refusing to open non-http URL: {url!r}")
        return False

    try:
        return webbrowser.open(url)
    except webbrowser.Error as e:
        logger.warning(f"Could not open browser: {e}")
        return False
