"""Security event logging for the auth audit trail.

Append-only log to the security_events table (no RLS). Token values are
never written here, only the fact that something happened to a session.
"""

import asyncio
import logging
from enum import Enum
from typing import Any
from uuid import UUID

import psycopg2
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    """Auth security event types."""

    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    USER_REGISTERED = "user_registered"
    REGISTRATION_FAILED = "registration_failed"
    SESSION_REFRESHED = "session_refreshed"
    REFRESH_FAILED = "refresh_failed"
    REFRESH_TOKEN_REUSED = "refresh_token_reused"
    CREDENTIALS_CLEARED = "credentials_cleared"
    RATE_LIMITED = "rate_limited"
    ORDER_IDENTITY_MISMATCH = "order_identity_mismatch"


class SecurityLogger:
    """Append-only security event logger.

    Inside a running event loop the insert is handed to a worker thread, so
    a slow or failing audit table never delays or breaks the auth flow that
    produced the event. A failed insert is logged and dropped.
    """

    def __init__(self, postgres: PostgresClient):
        self._db = postgres
        self._pending: set[asyncio.Future] = set()

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record a security event. Never raises for database errors."""
        logger.info(f"Security event {event.value} user={user_id}")
        params = (
            event.value,
            email,
            str(user_id) if user_id else None,
            ip_address,
            user_agent,
            Json(details) if details else None,
            now_utc(),
        )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(params)
            return

        future = loop.run_in_executor(None, self._write, params)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    def _write(self, params: tuple) -> None:
        try:
            self._db.execute_returning(
                """INSERT INTO security_events
                   (event_type, email, user_id, ip_address, user_agent, details, created_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s)
                   RETURNING id""",
                params,
            )
        except (psycopg2.Error, RuntimeError):
            logger.exception(f"Failed to record security event {params[0]}")

    async def drain(self) -> None:
        """Wait for writes still running in worker threads (shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
