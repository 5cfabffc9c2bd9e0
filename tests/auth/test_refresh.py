"""Tests for RefreshCoordinator - single-flight refresh and failure classification."""

import asyncio
from unittest.mock import Mock

import psycopg2
import pytest

from auth.credentials import CredentialStore
from auth.refresh import RefreshCoordinator, classify_refresh_failure
from auth.resolver import SessionResolver
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.types import AUTHENTICATED_MARKER, RefreshFailure
from clients.identity_client import IdentityProviderError
from clients.postgres_client import PostgresClient

from conftest import TEST_USER_EMAIL


def _store(config, refresh_token: str) -> CredentialStore:
    return CredentialStore(
        {"refresh-token": refresh_token, "auth-state": AUTHENTICATED_MARKER},
        config,
    )


class TestClassifyRefreshFailure:
    """Which provider errors end a session."""

    def test_network_error_is_transient(self):
        assert classify_refresh_failure(IdentityProviderError("unreachable")) == RefreshFailure.TRANSIENT

    def test_server_error_is_transient(self):
        error = IdentityProviderError("Service Unavailable", status_code=503)
        assert classify_refresh_failure(error) == RefreshFailure.TRANSIENT

    def test_invalid_refresh_token_is_definitive(self):
        error = IdentityProviderError("Invalid Refresh Token: Refresh Token Not Found", status_code=400)
        assert classify_refresh_failure(error) == RefreshFailure.DEFINITIVE

    def test_expired_is_definitive(self):
        error = IdentityProviderError("Session expired", status_code=400)
        assert classify_refresh_failure(error) == RefreshFailure.DEFINITIVE

    def test_malformed_is_definitive(self):
        error = IdentityProviderError("malformed token", status_code=400)
        assert classify_refresh_failure(error) == RefreshFailure.DEFINITIVE

    def test_definitive_error_code(self):
        error = IdentityProviderError("whatever", status_code=400, error_code="session_not_found")
        assert classify_refresh_failure(error) == RefreshFailure.DEFINITIVE

    def test_already_used_is_reuse(self):
        """Checked before the 'invalid refresh token' marker it also contains."""
        error = IdentityProviderError("Invalid Refresh Token: Already Used", status_code=400)
        assert classify_refresh_failure(error) == RefreshFailure.REUSED

    def test_unrecognized_is_transient(self):
        error = IdentityProviderError("Something odd", status_code=400)
        assert classify_refresh_failure(error) == RefreshFailure.TRANSIENT


class TestRefresh:
    """Outcome of a single refresh on the caller's store."""

    def test_success_rotates_and_stores(self, identity, provider, config):
        coordinator = RefreshCoordinator(identity, config)
        _, refresh = provider.issue(TEST_USER_EMAIL)
        store = _store(config, refresh)

        result = asyncio.run(coordinator.refresh(refresh, store))

        assert result.ok
        assert result.session.refresh_token != refresh
        assert store.refresh_token == result.session.refresh_token
        assert store.access_token == result.session.access_token
        assert store.is_marked_authenticated

    def test_definitive_failure_clears_all_cookies(self, identity, config):
        coordinator = RefreshCoordinator(identity, config)
        store = _store(config, "unknown-refresh-token")
        store.set_access_token("old-access", 60)

        result = asyncio.run(coordinator.refresh("unknown-refresh-token", store))

        assert result.failure == RefreshFailure.DEFINITIVE
        assert store.access_token is None
        assert store.refresh_token is None
        assert not store.is_marked_authenticated

    def test_service_unavailable_keeps_cookies(self, identity, provider, config):
        provider.refresh_failure = (503, {"msg": "service unavailable"})
        coordinator = RefreshCoordinator(identity, config)
        _, refresh = provider.issue(TEST_USER_EMAIL)
        store = _store(config, refresh)

        result = asyncio.run(coordinator.refresh(refresh, store))

        assert result.failure == RefreshFailure.TRANSIENT
        assert not store.has_pending_mutations
        assert store.refresh_token == refresh

    def test_network_failure_keeps_cookies(self, identity, provider, config):
        provider.unreachable = True
        coordinator = RefreshCoordinator(identity, config)
        store = _store(config, "refresh-x")

        result = asyncio.run(coordinator.refresh("refresh-x", store))

        assert result.failure == RefreshFailure.TRANSIENT
        assert not store.has_pending_mutations

    def test_reuse_keeps_cookies(self, identity, provider, config):
        """A spent token seen after the grace period is not treated as compromise."""
        no_grace = config.model_copy(update={"refresh_reuse_grace_seconds": 0})
        coordinator = RefreshCoordinator(identity, no_grace)
        _, refresh = provider.issue(TEST_USER_EMAIL)
        provider.spent.add(refresh)
        store = _store(no_grace, refresh)

        result = asyncio.run(coordinator.refresh(refresh, store))

        assert result.failure == RefreshFailure.REUSED
        assert not store.has_pending_mutations

    def test_logs_security_events(self, identity, provider, config, security_logger):
        coordinator = RefreshCoordinator(identity, config, security_logger)
        store = _store(config, "unknown")

        asyncio.run(coordinator.refresh("unknown", store))

        events = [c.args[0] for c in security_logger.log.call_args_list]
        assert SecurityEvent.REFRESH_FAILED in events
        assert SecurityEvent.CREDENTIALS_CLEARED in events


class TestSingleFlight:
    """At most one provider call per refresh-token value."""

    def test_concurrent_callers_share_one_call(self, identity, provider, config):
        provider.refresh_delay = 0.05
        coordinator = RefreshCoordinator(identity, config)
        _, refresh = provider.issue(TEST_USER_EMAIL)
        stores = [_store(config, refresh) for _ in range(5)]

        async def run():
            return await asyncio.gather(*(coordinator.refresh(refresh, s) for s in stores))

        results = asyncio.run(run())

        assert provider.refresh_calls == 1
        assert all(r.ok for r in results)
        assert len({r.session.refresh_token for r in results}) == 1
        assert all(s.refresh_token == results[0].session.refresh_token for s in stores)

    def test_in_flight_entry_removed_after_completion(self, identity, provider, config):
        coordinator = RefreshCoordinator(identity, config)
        _, refresh = provider.issue(TEST_USER_EMAIL)

        async def run():
            task = asyncio.ensure_future(coordinator.refresh(refresh, _store(config, refresh)))
            await asyncio.sleep(0)
            during = coordinator.is_refreshing(refresh)
            await task
            return during

        assert asyncio.run(run()) is True
        assert not coordinator.is_refreshing(refresh)

    def test_late_caller_gets_rotated_session_within_grace(self, identity, provider, config):
        """A request still holding the just-rotated token is not sent to the provider again."""
        coordinator = RefreshCoordinator(identity, config)
        _, refresh = provider.issue(TEST_USER_EMAIL)

        async def run():
            first = await coordinator.refresh(refresh, _store(config, refresh))
            second = await coordinator.refresh(refresh, _store(config, refresh))
            return first, second

        first, second = asyncio.run(run())

        assert provider.refresh_calls == 1
        assert second.ok
        assert second.session.refresh_token == first.session.refresh_token

    def test_different_tokens_refresh_independently(self, identity, provider, config):
        coordinator = RefreshCoordinator(identity, config)
        _, refresh_a = provider.issue(TEST_USER_EMAIL)
        _, refresh_b = provider.issue(TEST_USER_EMAIL)

        async def run():
            return await asyncio.gather(
                coordinator.refresh(refresh_a, _store(config, refresh_a)),
                coordinator.refresh(refresh_b, _store(config, refresh_b)),
            )

        results = asyncio.run(run())

        assert provider.refresh_calls == 2
        assert all(r.ok for r in results)


class TestBoundedWait:
    """Callers stop waiting; the provider call keeps going."""

    @pytest.fixture
    def impatient(self, config):
        return config.model_copy(update={"refresh_wait_timeout_seconds": 0.05})

    def test_timeout_is_transient_and_keeps_cookies(self, identity, provider, impatient):
        provider.refresh_delay = 0.3
        coordinator = RefreshCoordinator(identity, impatient)
        _, refresh = provider.issue(TEST_USER_EMAIL)
        store = _store(impatient, refresh)

        async def run():
            result = await coordinator.refresh(refresh, store)
            await asyncio.sleep(0.4)
            return result

        result = asyncio.run(run())

        assert result.failure == RefreshFailure.TRANSIENT
        assert not store.has_pending_mutations
        assert provider.refresh_calls == 1

    def test_abandoned_refresh_result_is_reused(self, identity, provider, impatient):
        provider.refresh_delay = 0.2
        coordinator = RefreshCoordinator(identity, impatient)
        _, refresh = provider.issue(TEST_USER_EMAIL)

        async def run():
            await coordinator.refresh(refresh, _store(impatient, refresh))
            await asyncio.sleep(0.3)
            provider.refresh_delay = 0.0
            later = _store(impatient, refresh)
            return await coordinator.refresh(refresh, later), later

        result, later = asyncio.run(run())

        assert result.ok
        assert later.refresh_token == result.session.refresh_token


class TestFailingEventSink:
    """A broken security_events table never costs the caller a rotated session."""

    @pytest.fixture
    def failing_logger(self):
        postgres = Mock(spec=PostgresClient)
        postgres.execute_returning.side_effect = psycopg2.OperationalError("db down")
        return SecurityLogger(postgres)

    def test_rotated_session_still_stored(self, identity, provider, config, failing_logger):
        coordinator = RefreshCoordinator(identity, config, failing_logger)
        resolver = SessionResolver(identity, coordinator)
        _, refresh = provider.issue(TEST_USER_EMAIL)
        store = _store(config, refresh)

        async def run():
            resolution = await resolver.resolve(store)
            await failing_logger.drain()
            return resolution

        resolution = asyncio.run(run())

        assert resolution.is_authenticated
        assert provider.refresh_calls == 1
        assert store.refresh_token == resolution.session.refresh_token
        assert store.refresh_token != refresh
        assert store.has_pending_mutations

    def test_grace_cache_still_filled(self, identity, provider, config, failing_logger):
        coordinator = RefreshCoordinator(identity, config, failing_logger)
        _, refresh = provider.issue(TEST_USER_EMAIL)

        async def run():
            first = await coordinator.refresh(refresh, _store(config, refresh))
            second = await coordinator.refresh(refresh, _store(config, refresh))
            await failing_logger.drain()
            return first, second

        first, second = asyncio.run(run())

        assert second.ok
        assert second.session.refresh_token == first.session.refresh_token
        assert provider.refresh_calls == 1
