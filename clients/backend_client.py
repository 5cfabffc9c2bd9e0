"""
Hosted backend REST client (PostgREST-style data API).

Every call is made with the end user's access token, so the backend's row
level security sees the same identity the session resolver verified. The
project API key only identifies the project, it grants nothing.
"""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """REST call failed. status_code is None when the backend was never reached."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class BackendClient:
    """
    Async client for the orders tables behind the hosted REST interface.

    Usage:
        backend = BackendClient("https://project.example.co", anon_key)
        row = await backend.insert_order(access_token, {...})
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url:
            raise ValueError("base_url is required")
        if not api_key:
            raise ValueError("api_key is required")

        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/rest/v1",
            headers={"apikey": api_key, "Content-Type": "application/json"},
            timeout=timeout_seconds,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        json: Any = None,
        params: dict | None = None,
        prefer: str | None = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {access_token}"}
        if prefer:
            headers["Prefer"] = prefer

        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            logger.warning(f"Backend unreachable ({method} {path}): {e!r}")
            raise BackendError(f"Backend unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
                message = body.get("message") or body.get("hint") or response.text
            except ValueError:
                message = response.text
            logger.info(f"Backend rejected {method} {path}: {response.status_code} {message}")
            raise BackendError(str(message), status_code=response.status_code)

        if not response.content:
            return None
        return response.json()

    async def insert_order(self, access_token: str, row: dict) -> dict:
        """Insert one order row and return it as stored."""
        rows = await self._request(
            "POST", "/orders", access_token, json=row, prefer="return=representation"
        )
        if not rows:
            raise BackendError("Order insert returned no row")
        return rows[0]

    async def insert_order_items(self, access_token: str, rows: list[dict]) -> None:
        """Insert all item rows of an order in one request."""
        await self._request(
            "POST", "/order_items", access_token, json=rows, prefer="return=minimal"
        )

    async def list_orders(self, access_token: str) -> list[dict]:
        """Caller's orders with embedded items, newest first. RLS does the filtering."""
        return await self._request(
            "GET",
            "/orders",
            access_token,
            params={"select": "*,order_items(*)", "order": "created_at.desc"},
        ) or []

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("BackendClient closed")
