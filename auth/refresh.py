"""Single-flight refresh of rotating refresh tokens.

The identity provider rotates the refresh token on every use and treats a
second use of the old value as reuse. Two requests that both notice an
expired access token must therefore not both call the provider with the same
refresh token. RefreshCoordinator keeps one in-flight task per refresh-token
value; later callers await that task instead of starting their own.

Callers wait at most refresh_wait_timeout_seconds. A timeout abandons the
wait, not the provider call: the task is shielded, keeps running, and its
result is remembered for refresh_reuse_grace_seconds so the next request
presenting the same (now rotated) token receives the new pair.
"""

import asyncio
import hashlib
import logging
import time

from auth.config import AuthConfig
from auth.credentials import CredentialStore
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.types import ProviderSession, RefreshFailure, RefreshResult
from clients.identity_client import IdentityProviderClient, IdentityProviderError

logger = logging.getLogger(__name__)

DEFINITIVE_MARKERS = ("invalid refresh token", "expired", "malformed")
DEFINITIVE_CODES = {"refresh_token_not_found", "session_expired", "session_not_found", "bad_jwt"}


def classify_refresh_failure(error: IdentityProviderError) -> RefreshFailure:
    """
    Decide whether a refresh failure should end the session.

    - Network errors and provider 5xx are TRANSIENT.
    - 'Already used' is REUSED: expected when requests race, not a compromise
      signal, so it is handled like a transient failure.
    - Invalid, expired or malformed refresh tokens are DEFINITIVE.
    - Anything unrecognized is TRANSIENT; cookies are only dropped on proof.
    """
    if error.is_network_error:
        return RefreshFailure.TRANSIENT

    message = error.message.lower()
    if "already used" in message or error.error_code == "refresh_token_already_used":
        return RefreshFailure.REUSED

    if error.status_code >= 500:
        return RefreshFailure.TRANSIENT

    if error.error_code in DEFINITIVE_CODES:
        return RefreshFailure.DEFINITIVE
    if any(marker in message for marker in DEFINITIVE_MARKERS):
        return RefreshFailure.DEFINITIVE

    return RefreshFailure.TRANSIENT


class RefreshCoordinator:
    """Per-process single-flight coordinator for token refresh.

    Construct one per process and pass it to whatever needs to refresh.
    """

    def __init__(
        self,
        identity: IdentityProviderClient,
        config: AuthConfig,
        security_logger: SecurityLogger | None = None,
    ):
        self._identity = identity
        self._config = config
        self._security_logger = security_logger
        self._in_flight: dict[str, asyncio.Task] = {}
        self._rotated: dict[str, tuple[float, ProviderSession]] = {}

    @staticmethod
    def _key(refresh_token: str) -> str:
        """Index by digest so raw refresh tokens are not kept as dict keys."""
        return hashlib.sha256(refresh_token.encode("utf-8")).hexdigest()

    def is_refreshing(self, refresh_token: str) -> bool:
        """Whether a refresh for this token value is currently in flight."""
        return self._key(refresh_token) in self._in_flight

    async def refresh(self, refresh_token: str, store: CredentialStore) -> RefreshResult:
        """Refresh once per token value and write the outcome to the caller's store.

        Success stores the rotated pair, a definitive failure clears the store,
        transient and reuse failures leave the cookies untouched.
        """
        result = await self._shared_result(self._key(refresh_token), refresh_token)

        if result.ok:
            store.store_session(result.session)
        elif result.failure == RefreshFailure.DEFINITIVE:
            logger.info("Clearing credentials after definitive refresh failure")
            store.clear()
            self._log_event(SecurityEvent.CREDENTIALS_CLEARED)

        return result

    async def _shared_result(self, key: str, refresh_token: str) -> RefreshResult:
        recent = self._recently_rotated(key)
        if recent is not None:
            logger.debug("Refresh token already rotated in this process, reusing result")
            return RefreshResult(session=recent)

        task = self._in_flight.get(key)
        if task is None:
            task = self._start(key, refresh_token)
        else:
            logger.debug("Refresh already in flight, waiting for its result")

        try:
            return await asyncio.wait_for(
                asyncio.shield(task), self._config.refresh_wait_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for in-flight refresh, retrying once")

        # The abandoned task may have finished between the timeout and now.
        recent = self._recently_rotated(key)
        if recent is not None:
            return RefreshResult(session=recent)
        if task.done() and not task.cancelled() and task.exception() is None:
            return task.result()

        # A still-running call owns the token; a second call would only see reuse.
        current = self._in_flight.get(key)
        if current is None:
            current = self._start(key, refresh_token)

        try:
            return await asyncio.wait_for(
                asyncio.shield(current), self._config.refresh_wait_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("Refresh retry timed out, giving up for this request")
            return RefreshResult(
                failure=RefreshFailure.TRANSIENT,
                message="Timed out waiting for session refresh",
            )

    def _start(self, key: str, refresh_token: str) -> asyncio.Task:
        task = asyncio.ensure_future(self._perform(refresh_token))
        self._in_flight[key] = task
        task.add_done_callback(lambda done: self._finish(key, done))
        return task

    def _finish(self, key: str, task: asyncio.Task) -> None:
        """Clear the in-flight marker and remember successful rotations."""
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

        if task.cancelled() or task.exception() is not None:
            return

        result: RefreshResult = task.result()
        if result.ok and self._config.refresh_reuse_grace_seconds > 0:
            self._rotated[key] = (time.monotonic(), result.session)

    def _recently_rotated(self, key: str) -> ProviderSession | None:
        now = time.monotonic()
        grace = self._config.refresh_reuse_grace_seconds
        for stale in [k for k, (at, _) in self._rotated.items() if now - at > grace]:
            del self._rotated[stale]

        entry = self._rotated.get(key)
        return entry[1] if entry else None

    async def _perform(self, refresh_token: str) -> RefreshResult:
        """The one network round-trip per token value."""
        try:
            session = await self._identity.refresh_session(refresh_token)
        except IdentityProviderError as e:
            failure = classify_refresh_failure(e)
            logger.info(f"Refresh failed ({failure.value}): {e.message}")
            self._log_event(
                SecurityEvent.REFRESH_TOKEN_REUSED
                if failure == RefreshFailure.REUSED
                else SecurityEvent.REFRESH_FAILED,
                details={"failure": failure.value, "status": e.status_code},
            )
            return RefreshResult(failure=failure, message=e.message)

        user_id = session.user.id if session.user else None
        logger.info(f"Session refreshed for user {user_id}")
        self._log_event(SecurityEvent.SESSION_REFRESHED, user_id=user_id)
        return RefreshResult(session=session)

    def _log_event(self, event: SecurityEvent, user_id=None, details=None) -> None:
        if self._security_logger is None:
            return
        self._security_logger.log(event, user_id=user_id, details=details)
