"""Typed exceptions for auth failures."""

from auth.types import ResolutionReason


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class UnauthorizedError(AuthError):
    """No resolvable session. Client should send the user to login."""

    def __init__(
        self,
        message: str = "Authentication required",
        reason: ResolutionReason = ResolutionReason.NOT_AUTHENTICATED,
    ):
        self.reason = reason
        super().__init__(message)


class PartialAuthError(UnauthorizedError):
    """
    Liveness marker present but the credentials behind it are gone.

    Surfaced distinctly so the client can tell "never logged in" apart
    from "lost credentials, log in again".
    """

    def __init__(self, message: str = "Auth state present but tokens are missing"):
        super().__init__(message, reason=ResolutionReason.PARTIAL_AUTH)


class ForbiddenError(AuthError):
    """Session resolved but not allowed to act on the requested resource."""


class TransientRefreshError(UnauthorizedError):
    """Refresh failed for a reason worth retrying. Cookies are kept."""

    def __init__(self, message: str = "Session refresh temporarily failed"):
        super().__init__(message, reason=ResolutionReason.TRANSIENT_REFRESH_FAILURE)


class DefinitiveRefreshError(UnauthorizedError):
    """Refresh token is invalid, expired or malformed. Cookies are cleared."""

    def __init__(self, message: str = "Session expired"):
        super().__init__(message, reason=ResolutionReason.DEFINITIVE_REFRESH_FAILURE)


class InvalidCredentialsError(AuthError):
    """Email/password pair rejected by the identity provider."""


class EmailNotConfirmedError(AuthError):
    """Account exists but the email address has not been verified yet."""


class RegistrationError(AuthError):
    """Sign-up rejected (weak password, duplicate account, provider refusal)."""


class RateLimitedError(AuthError):
    """Too many attempts. Client should wait before retrying."""

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited. Retry after {retry_after_seconds} seconds.")
