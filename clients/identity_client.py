"""
Identity provider client (hosted GoTrue-style auth API).

Async wrapper around httpx. Every call is a suspension point for the event
loop, which is what lets the refresh coordinator fold concurrent refreshes
into one request. Fail-fast: provider refusals and transport failures both
raise IdentityProviderError, never return fallback values.
"""

import logging
from typing import Any

import httpx

from auth.types import ProviderSession, User

logger = logging.getLogger(__name__)


class IdentityProviderError(Exception):
    """
    Identity provider request failed.

    status_code is None when the provider was never reached (DNS, connect,
    timeout). error_code carries the provider's machine-readable code if any.
    """

    def __init__(self, message: str, status_code: int | None = None, error_code: str | None = None):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)

    @property
    def is_network_error(self) -> bool:
        return self.status_code is None


def _error_from_response(response: httpx.Response) -> IdentityProviderError:
    """Build an error from the provider's JSON error body (several shapes exist)."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    message = (
        body.get("error_description")
        or body.get("msg")
        or body.get("message")
        or body.get("error")
        or response.reason_phrase
        or "Identity provider error"
    )
    error_code = body.get("error_code") or body.get("code") or body.get("error")
    return IdentityProviderError(
        str(message),
        status_code=response.status_code,
        error_code=str(error_code) if error_code is not None else None,
    )


class IdentityProviderClient:
    """
    Async client for the identity provider's credential endpoints.

    Usage:
        client = IdentityProviderClient("https://project.example.co", anon_key)
        session = await client.sign_in_with_password(email, password)
        user = await client.get_user(session.access_token)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            base_url: Project URL of the hosted backend
            api_key: Public (anon) API key sent as the 'apikey' header
            timeout_seconds: Bound on every request to the provider
            transport: Optional httpx transport (tests use httpx.MockTransport)

        Raises:
            ValueError: If base_url or api_key is empty
        """
        if not base_url:
            raise ValueError("base_url is required")
        if not api_key:
            raise ValueError("api_key is required")

        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/auth/v1",
            headers={"apikey": api_key, "Content-Type": "application/json"},
            timeout=timeout_seconds,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
        access_token: str | None = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {access_token or self._api_key}"}
        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            logger.warning(f"Identity provider unreachable ({method} {path}): {e!r}")
            raise IdentityProviderError(f"Identity provider unreachable: {e}") from e

        if response.status_code >= 400:
            error = _error_from_response(response)
            logger.info(
                f"Identity provider rejected {method} {path}: "
                f"{response.status_code} {error.error_code}"
            )
            raise error

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _session_from_payload(payload: dict) -> ProviderSession:
        user = payload.get("user")
        return ProviderSession(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            expires_in=int(payload.get("expires_in") or 3600),
            user=User.model_validate(user) if user else None,
        )

    async def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        """Exchange email/password for a token pair."""
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return self._session_from_payload(payload)

    async def refresh_session(self, refresh_token: str) -> ProviderSession:
        """
        Rotate a refresh token.

        The old refresh token is spent by this call. Presenting it again
        yields an 'already used' error from the provider.
        """
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return self._session_from_payload(payload)

    async def get_user(self, access_token: str) -> User:
        """Derive the identity behind an access token."""
        payload = await self._request("GET", "/user", access_token=access_token)
        return User.model_validate(payload)

    async def sign_up(self, email: str, password: str) -> User:
        """Create an account. The provider may require email confirmation."""
        payload = await self._request(
            "POST", "/signup", json={"email": email, "password": password}
        )
        # Confirmation-required projects return the bare user, others a session.
        return User.model_validate(payload.get("user") or payload)

    async def sign_out(self, access_token: str) -> None:
        """Revoke the provider-side session behind an access token."""
        await self._request("POST", "/logout", access_token=access_token)

    async def close(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()
        logger.info("IdentityProviderClient closed")
