"""launcher-auth - Browser-based sign-in and session management for a game launcher."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("launcher-auth")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    # Configuration
    "AuthSettings",
    "ApplicationProfile",
    "JsonConfigStore",
    "load_settings",
    # Session management
    "SessionManager",
    "Session",
    "LaunchCredentials",
    "OutputHandler",
]

# Lazy imports to avoid circular dependencies
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("AuthSettings", "ApplicationProfile", "JsonConfigStore", "load_settings"):
        from . import config
        return getattr(config, name)
    elif name == "SessionManager":
        from .oauth.manager import SessionManager
        return SessionManager
    elif name in ("Session", "LaunchCredentials"):
        from .oauth.tokens import LaunchCredentials, Session
        return {"Session": Session, "LaunchCredentials": LaunchCredentials}[name]
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
