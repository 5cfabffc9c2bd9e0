"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    Cookie lifetimes are in days, refresh timings in seconds. The access token
    cookie has no configured lifetime: it always follows the provider's expiry.
    """

    # Cookies
    access_cookie_name: str = Field(default="access-token")
    refresh_cookie_name: str = Field(default="refresh-token")
    auth_state_cookie_name: str = Field(default="auth-state")
    refresh_cookie_max_age_days: int = Field(
        default=30,
        description="Refresh token cookie lifetime, longer than any access token",
        ge=1,
        le=365,
    )
    auth_state_cookie_max_age_days: int = Field(
        default=30,
        description="Liveness marker lifetime, matches the refresh token cookie",
        ge=1,
        le=365,
    )
    cookie_secure: bool = Field(
        default=True,
        description="Send cookies over HTTPS only (disable for local development)",
    )
    cookie_samesite: str = Field(default="lax", pattern="^(lax|strict|none)$")

    # Refresh coordination
    refresh_wait_timeout_seconds: float = Field(
        default=10.0,
        description="How long a caller waits on an in-flight refresh",
        gt=0,
        le=60,
    )
    provider_timeout_seconds: float = Field(
        default=15.0,
        description="Upper bound on a single identity provider request",
        gt=0,
        le=120,
    )
    refresh_reuse_grace_seconds: float = Field(
        default=10.0,
        description="How long a rotated refresh token maps to its replacement",
        ge=0,
        le=60,
    )

    # Rate limiting (login attempts per email)
    rate_limit_attempts: int = Field(default=5, ge=1, le=20)
    rate_limit_window_minutes: int = Field(default=15, ge=5, le=60)

    # Registration
    password_min_length: int = Field(default=6, ge=6, le=128)

    # Route guard
    protected_paths: list[str] = Field(
        default_factory=lambda: ["/cart", "/account", "/orders", "/cart/checkout"],
    )
    auth_only_paths: list[str] = Field(
        default_factory=lambda: ["/auth/login", "/auth/register"],
    )
    guard_exempt_prefixes: list[str] = Field(
        default_factory=lambda: ["/api/", "/static/", "/favicon.ico", "/health"],
    )
    login_path: str = Field(default="/auth/login")
    post_login_path: str = Field(default="/products")

    # Application
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Origin used for payment redirect URLs",
    )

    @property
    def refresh_cookie_max_age(self) -> int:
        return self.refresh_cookie_max_age_days * 86400

    @property
    def auth_state_cookie_max_age(self) -> int:
        return self.auth_state_cookie_max_age_days * 86400
