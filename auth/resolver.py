"""Session resolution: cookies in, verified identity (or a reason) out.

This is the authoritative auth check. The route guard only looks at the
liveness marker; every handler that needs a user goes through here.
"""

import logging

from auth.credentials import CredentialStore
from auth.exceptions import (
    DefinitiveRefreshError,
    PartialAuthError,
    TransientRefreshError,
    UnauthorizedError,
)
from auth.refresh import RefreshCoordinator
from auth.types import RefreshFailure, Resolution, ResolutionReason, Session
from clients.identity_client import IdentityProviderClient, IdentityProviderError

logger = logging.getLogger(__name__)


def http_status_for(reason: ResolutionReason) -> int:
    """Status for a failed resolution. Partial auth is 204, not 401."""
    if reason == ResolutionReason.AUTHENTICATED:
        return 200
    if reason == ResolutionReason.PARTIAL_AUTH:
        return 204
    return 401


class SessionResolver:
    """Turns a request's CredentialStore into a Session.

    Flow:
    1. No liveness marker -> NOT_AUTHENTICATED, no network call
    2. Marker but no tokens at all -> PARTIAL_AUTH
    3. Access token -> ask the provider who it belongs to
    4. Otherwise (or if that failed) refresh via the coordinator, then ask again
    5. Nothing worked -> None with the most specific reason available

    The result is cached on the store, so resolving twice in one request
    costs one round of network calls.
    """

    def __init__(self, identity: IdentityProviderClient, coordinator: RefreshCoordinator):
        self._identity = identity
        self._coordinator = coordinator

    async def resolve(self, store: CredentialStore) -> Resolution:
        if store.resolution is not None:
            return store.resolution

        resolution = await self._resolve(store)
        # Refresh writes reset the cache, so set it after the fact
        store.resolution = resolution
        return resolution

    async def _resolve(self, store: CredentialStore) -> Resolution:
        if not store.is_marked_authenticated:
            return Resolution(None, ResolutionReason.NOT_AUTHENTICATED)

        if store.is_partial:
            logger.info("Auth state cookie present but no tokens found")
            return Resolution(None, ResolutionReason.PARTIAL_AUTH)

        if store.access_token:
            try:
                user = await self._identity.get_user(store.access_token)
                return Resolution(
                    Session(
                        access_token=store.access_token,
                        refresh_token=store.refresh_token,
                        user=user,
                    ),
                    ResolutionReason.AUTHENTICATED,
                )
            except IdentityProviderError as e:
                logger.info(f"Access token rejected ({e.status_code}), trying refresh")

        if not store.refresh_token:
            return Resolution(None, ResolutionReason.NOT_AUTHENTICATED)

        result = await self._coordinator.refresh(store.refresh_token, store)
        if not result.ok:
            if result.failure == RefreshFailure.DEFINITIVE:
                return Resolution(None, ResolutionReason.DEFINITIVE_REFRESH_FAILURE)
            return Resolution(None, ResolutionReason.TRANSIENT_REFRESH_FAILURE)

        try:
            user = await self._identity.get_user(result.session.access_token)
        except IdentityProviderError as e:
            logger.warning(f"Refreshed access token rejected ({e.status_code})")
            return Resolution(None, ResolutionReason.TRANSIENT_REFRESH_FAILURE)

        return Resolution(
            Session(
                access_token=result.session.access_token,
                refresh_token=result.session.refresh_token,
                user=user,
            ),
            ResolutionReason.AUTHENTICATED,
        )

    async def require(self, store: CredentialStore) -> Session:
        """Resolve or raise the exception matching the failure reason.

        Raises:
            PartialAuthError: Marker present, tokens missing.
            DefinitiveRefreshError: Refresh token was rejected for good.
            TransientRefreshError: Refresh failed but may succeed later.
            UnauthorizedError: No session at all.
        """
        resolution = await self.resolve(store)
        if resolution.session is not None:
            return resolution.session

        if resolution.reason == ResolutionReason.PARTIAL_AUTH:
            raise PartialAuthError()
        if resolution.reason == ResolutionReason.DEFINITIVE_REFRESH_FAILURE:
            raise DefinitiveRefreshError()
        if resolution.reason == ResolutionReason.TRANSIENT_REFRESH_FAILURE:
            raise TransientRefreshError()
        raise UnauthorizedError()
