"""Cookie-backed credential store.

A session lives entirely in three cookies: the access token, the refresh
token and the script-readable auth-state marker. There is no server-side
session table; every write here is a Set-Cookie header on the response.

One CredentialStore is bound to one request. Reads see mutations made earlier
in the same request (so a handler that refreshed sees the new tokens), and
CredentialMiddleware copies the pending mutations onto the outgoing response.
"""

from collections.abc import Mapping
from dataclasses import dataclass

from starlette.responses import Response

from auth.config import AuthConfig
from auth.types import AUTHENTICATED_MARKER, ProviderSession, Resolution


@dataclass(frozen=True)
class CookieMutation:
    """A pending Set-Cookie."""

    name: str
    value: str
    max_age: int
    httponly: bool


class CredentialStore:
    """Request-scoped view of the three auth cookies with a consistent write policy."""

    def __init__(self, cookies: Mapping[str, str], config: AuthConfig):
        self._config = config
        self._values: dict[str, str | None] = {
            config.access_cookie_name: cookies.get(config.access_cookie_name) or None,
            config.refresh_cookie_name: cookies.get(config.refresh_cookie_name) or None,
            config.auth_state_cookie_name: cookies.get(config.auth_state_cookie_name) or None,
        }
        self._pending: dict[str, CookieMutation] = {}
        self.resolution: Resolution | None = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def access_token(self) -> str | None:
        return self._values[self._config.access_cookie_name]

    @property
    def refresh_token(self) -> str | None:
        return self._values[self._config.refresh_cookie_name]

    @property
    def auth_state(self) -> str | None:
        return self._values[self._config.auth_state_cookie_name]

    @property
    def is_marked_authenticated(self) -> bool:
        """Liveness marker says the user believes they are logged in."""
        return self.auth_state == AUTHENTICATED_MARKER

    @property
    def is_partial(self) -> bool:
        """Marker set but neither token present."""
        return self.is_marked_authenticated and not self.access_token and not self.refresh_token

    @property
    def has_pending_mutations(self) -> bool:
        return bool(self._pending)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _set(self, name: str, value: str, max_age: int, httponly: bool) -> None:
        self._values[name] = value or None
        self._pending[name] = CookieMutation(name, value, max_age, httponly)
        # Cached resolution no longer describes these cookies
        self.resolution = None

    def set_access_token(self, token: str, expires_in: int) -> None:
        """Secret bearer credential; lifetime follows the provider's expiry."""
        self._set(self._config.access_cookie_name, token, expires_in, httponly=True)

    def set_refresh_token(self, token: str) -> None:
        """Secret rotation credential; fixed lifetime longer than any access token."""
        self._set(
            self._config.refresh_cookie_name,
            token,
            self._config.refresh_cookie_max_age,
            httponly=True,
        )

    def mark_authenticated(self) -> None:
        """Script-readable marker; expires together with the refresh token."""
        self._set(
            self._config.auth_state_cookie_name,
            AUTHENTICATED_MARKER,
            self._config.auth_state_cookie_max_age,
            httponly=False,
        )

    def store_session(self, session: ProviderSession) -> None:
        """Write a freshly issued or rotated token pair plus the marker."""
        self.set_access_token(session.access_token, session.expires_in)
        self.set_refresh_token(session.refresh_token)
        self.mark_authenticated()

    def clear(self) -> None:
        """Expire all three cookies, unconditionally."""
        self._set(self._config.access_cookie_name, "", 0, httponly=True)
        self._set(self._config.refresh_cookie_name, "", 0, httponly=True)
        self._set(self._config.auth_state_cookie_name, "", 0, httponly=False)

    def apply(self, response: Response) -> None:
        """Copy pending mutations onto a response as Set-Cookie headers."""
        for mutation in self._pending.values():
            response.set_cookie(
                key=mutation.name,
                value=mutation.value,
                max_age=mutation.max_age,
                path="/",
                httponly=mutation.httponly,
                secure=self._config.cookie_secure,
                samesite=self._config.cookie_samesite,
            )
