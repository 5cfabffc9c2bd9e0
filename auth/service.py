"""Authentication service - orchestrates password auth and session lifecycle."""

import logging

from auth.config import AuthConfig
from auth.credentials import CredentialStore
from auth.exceptions import (
    EmailNotConfirmedError,
    InvalidCredentialsError,
    PartialAuthError,
    RateLimitedError,
    RegistrationError,
    UnauthorizedError,
)
from auth.rate_limiter import RateLimiter
from auth.refresh import RefreshCoordinator
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.types import RefreshResult, User
from clients.identity_client import IdentityProviderClient, IdentityProviderError

logger = logging.getLogger(__name__)


class AuthService:
    """Orchestrates the credential lifecycle.

    Handles:
    - Password login (rate limited per email)
    - Registration
    - Logout (provider sign-out is best effort, cookies always cleared)
    - Explicit refresh requests from the client
    """

    def __init__(
        self,
        config: AuthConfig,
        identity: IdentityProviderClient,
        coordinator: RefreshCoordinator,
        rate_limiter: RateLimiter,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._identity = identity
        self._coordinator = coordinator
        self._rate_limiter = rate_limiter
        self._security_logger = security_logger

    async def login(
        self,
        email: str,
        password: str,
        store: CredentialStore,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> User:
        """Exchange email/password for a session and write it to the store.

        Flow:
        1. Check per-email rate limit
        2. Sign in with the identity provider
        3. Store the token pair and liveness marker
        4. Reset rate limit, log security event

        Raises:
            RateLimitedError: Too many attempts for this email.
            EmailNotConfirmedError: Account exists but is unverified.
            InvalidCredentialsError: Any other refusal by the provider.
            IdentityProviderError: Provider unreachable or failing (5xx).
        """
        email = email.lower().strip()

        try:
            self._rate_limiter.check_rate_limit(email)
        except RateLimitedError:
            self._security_logger.log(
                SecurityEvent.RATE_LIMITED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise

        try:
            session = await self._identity.sign_in_with_password(email, password)
        except IdentityProviderError as e:
            if e.is_network_error or e.status_code >= 500:
                raise

            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"code": e.error_code},
            )
            if e.error_code == "email_not_confirmed":
                raise EmailNotConfirmedError(
                    "Please verify your email address before logging in"
                ) from e
            raise InvalidCredentialsError("Invalid email or password") from e

        store.store_session(session)
        user = session.user or await self._identity.get_user(session.access_token)

        self._rate_limiter.reset_rate_limit(email)
        self._security_logger.log(
            SecurityEvent.LOGIN_SUCCEEDED,
            email=email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        logger.info(f"Login successful for user {user.id}")
        return user

    async def register(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> User:
        """Create an account. Does not log the user in.

        Raises:
            RegistrationError: Password too short or provider refused the sign-up.
            IdentityProviderError: Provider unreachable or failing (5xx).
        """
        email = email.lower().strip()

        if len(password) < self._config.password_min_length:
            raise RegistrationError(
                f"Password must be at least {self._config.password_min_length} characters long"
            )

        try:
            user = await self._identity.sign_up(email, password)
        except IdentityProviderError as e:
            if e.is_network_error or e.status_code >= 500:
                raise
            self._security_logger.log(
                SecurityEvent.REGISTRATION_FAILED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"code": e.error_code},
            )
            raise RegistrationError(e.message) from e

        self._security_logger.log(
            SecurityEvent.USER_REGISTERED,
            email=email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return user

    async def logout(self, store: CredentialStore, ip_address: str | None = None) -> None:
        """Revoke the provider session if possible, then clear all cookies.

        Safe to call without a session. Provider failures are logged only.
        """
        if store.access_token:
            try:
                await self._identity.sign_out(store.access_token)
            except IdentityProviderError as e:
                logger.info(f"Provider sign-out failed ({e.status_code}), clearing cookies anyway")

        store.clear()
        self._security_logger.log(SecurityEvent.LOGOUT, ip_address=ip_address)

    async def refresh(self, store: CredentialStore) -> RefreshResult:
        """Explicit refresh requested by the client.

        Raises:
            PartialAuthError: Marker present but no refresh token.
            UnauthorizedError: No refresh token at all.
        """
        if not store.refresh_token:
            if store.is_marked_authenticated:
                logger.info("Auth state cookie exists but no refresh token found")
                raise PartialAuthError()
            raise UnauthorizedError("No refresh token available")

        return await self._coordinator.refresh(store.refresh_token, store)
