"""Pydantic models and result types for the auth domain."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


AUTHENTICATED_MARKER = "authenticated"


class User(BaseModel):
    """Identity as reported by the identity provider. Never stored locally."""

    id: UUID
    email: EmailStr | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class ProviderSession(BaseModel):
    """Token pair issued by the identity provider on login or refresh."""

    access_token: str
    refresh_token: str
    expires_in: int = Field(..., gt=0, description="Access token lifetime in seconds")
    user: User | None = None


class Session(BaseModel):
    """A resolved session: tokens the caller holds plus the identity they prove."""

    access_token: str
    refresh_token: str | None = None
    user: User


class LoginRequest(BaseModel):
    """Request payload for password login."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    """Request payload for account registration."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class ResolutionReason(str, Enum):
    """Why the resolver did or did not produce a session."""

    AUTHENTICATED = "authenticated"
    NOT_AUTHENTICATED = "not_authenticated"
    PARTIAL_AUTH = "partial_auth"
    TRANSIENT_REFRESH_FAILURE = "transient_refresh_failure"
    DEFINITIVE_REFRESH_FAILURE = "definitive_refresh_failure"


@dataclass(frozen=True)
class Resolution:
    """Resolver outcome. `session` is None unless reason is AUTHENTICATED."""

    session: Session | None
    reason: ResolutionReason

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None


class RefreshFailure(str, Enum):
    """Classification of a failed refresh."""

    TRANSIENT = "transient"
    DEFINITIVE = "definitive"
    REUSED = "reused"


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of a coordinated refresh."""

    session: ProviderSession | None = None
    failure: RefreshFailure | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.session is not None
