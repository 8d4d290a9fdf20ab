"""Exceptions shared by the authentication modules."""


class AuthError(Exception):
    """Base class for authentication errors."""

    pass


class ProfileFetchError(AuthError):
    """The launcher-data request failed (HTTP status, network, bad payload).

    Attributes:
        error_type: Short machine-readable cause, e.g. ``profile_fetch_failed``
    """

    def __init__(self, error_type: str, message: str):
        super().__init__(message)
        self.error_type = error_type


class NoGameProfileError(AuthError):
    """The provider account has no game profile.

    Not a failure of the login machinery: the user has to create a game
    profile on the provider side and try again.
    """

    pass


class LoginInProgressError(AuthError):
    """A login attempt is already waiting for its callback."""

    pass
