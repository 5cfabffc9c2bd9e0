"""Tests for auth/exceptions.py - Typed exceptions for auth failures."""

import pytest

from auth.exceptions import (
    AuthError,
    DefinitiveRefreshError,
    EmailNotConfirmedError,
    ForbiddenError,
    InvalidCredentialsError,
    PartialAuthError,
    RateLimitedError,
    RegistrationError,
    TransientRefreshError,
    UnauthorizedError,
)
from auth.types import ResolutionReason


class TestExceptionInheritance:
    """All auth exceptions should inherit from AuthError."""

    @pytest.mark.parametrize("exc", [
        UnauthorizedError,
        ForbiddenError,
        InvalidCredentialsError,
        EmailNotConfirmedError,
        RegistrationError,
        RateLimitedError,
    ])
    def test_inherits_auth_error(self, exc):
        assert issubclass(exc, AuthError)

    @pytest.mark.parametrize("exc", [PartialAuthError, TransientRefreshError, DefinitiveRefreshError])
    def test_refresh_and_partial_are_unauthorized(self, exc):
        """Handlers that only catch UnauthorizedError still see these."""
        assert issubclass(exc, UnauthorizedError)


class TestReasons:
    """Each unauthorized variant carries its resolution reason."""

    def test_default_reason(self):
        assert UnauthorizedError().reason == ResolutionReason.NOT_AUTHENTICATED

    def test_partial(self):
        assert PartialAuthError().reason == ResolutionReason.PARTIAL_AUTH

    def test_transient(self):
        assert TransientRefreshError().reason == ResolutionReason.TRANSIENT_REFRESH_FAILURE

    def test_definitive(self):
        assert DefinitiveRefreshError().reason == ResolutionReason.DEFINITIVE_REFRESH_FAILURE

    def test_custom_message(self):
        assert str(DefinitiveRefreshError("gone")) == "gone"


class TestRateLimitedError:
    """RateLimitedError should carry retry timing info."""

    def test_stores_retry_seconds(self):
        """retry_after_seconds should be accessible."""
        err = RateLimitedError(30)
        assert err.retry_after_seconds == 30

    def test_message_includes_seconds(self):
        """Error message should include the retry time."""
        err = RateLimitedError(45)
        assert "45" in str(err)

    def test_can_be_caught_as_auth_error(self):
        """Should be catchable as AuthError."""
        with pytest.raises(AuthError):
            raise RateLimitedError(10)
