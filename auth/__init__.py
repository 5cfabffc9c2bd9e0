"""Authentication and authorization modules.

Only leaf modules are re-exported here; clients import auth.types, so the
service, resolver and middleware modules are imported from their own paths.
"""

from auth.exceptions import (
    AuthError,
    UnauthorizedError,
    PartialAuthError,
    ForbiddenError,
    TransientRefreshError,
    DefinitiveRefreshError,
    InvalidCredentialsError,
    EmailNotConfirmedError,
    RegistrationError,
    RateLimitedError,
)
from auth.types import (
    AUTHENTICATED_MARKER,
    User,
    ProviderSession,
    Session,
    LoginRequest,
    RegisterRequest,
    ResolutionReason,
    Resolution,
    RefreshFailure,
    RefreshResult,
)
from auth.config import AuthConfig
