"""Shared test fixtures for the storefront test suite."""

import asyncio
import json
from pathlib import Path
from unittest.mock import Mock
from uuid import UUID

import httpx
import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

import clients.vault_client as vault_module
vault_module.reset_secret_cache()

from auth.config import AuthConfig
from auth.security_logger import SecurityLogger
from clients.identity_client import IdentityProviderClient
from clients.valkey_client import ValkeyClient
from utils.user_context import clear_current_user_id


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_USER_EMAIL = "testuser@test.example.com"
TEST_USER_PASSWORD = "correct-horse"

TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")
TEST_USER_B_EMAIL = "testuser-b@test.example.com"

IDENTITY_URL = "https://project.test"


# =============================================================================
# FAKE IDENTITY PROVIDER
# =============================================================================


def _json(status: int, body: dict) -> httpx.Response:
    return httpx.Response(status, json=body)


class FakeIdentityProvider:
    """
    In-memory GoTrue-style provider served through httpx.MockTransport.

    Refresh tokens rotate on use; presenting a spent one returns the
    provider's 'already used' error, the same as the real thing.
    """

    def __init__(self):
        self.users: dict[str, dict] = {}
        self.passwords: dict[str, str] = {}
        self.unconfirmed: set[str] = set()
        self.access_tokens: dict[str, str] = {}
        self.refresh_tokens: dict[str, str] = {}
        self.spent: set[str] = set()
        self.refresh_calls = 0
        self.user_calls = 0
        self.sign_out_calls: list[str] = []
        self.refresh_delay = 0.0
        self.refresh_failure: tuple[int, dict] | None = None
        self.unreachable = False
        self._counter = 0

    def add_user(self, user_id: UUID, email: str, password: str = TEST_USER_PASSWORD) -> dict:
        user = {"id": str(user_id), "email": email, "created_at": "2024-01-01T00:00:00Z"}
        self.users[email] = user
        self.passwords[email] = password
        return user

    def issue(self, email: str) -> tuple[str, str]:
        """Mint a token pair for a known user."""
        self._counter += 1
        access = f"access-{self._counter}"
        refresh = f"refresh-{self._counter}"
        self.access_tokens[access] = email
        self.refresh_tokens[refresh] = email
        return access, refresh

    def _session_body(self, email: str) -> dict:
        access, refresh = self.issue(email)
        return {
            "access_token": access,
            "refresh_token": refresh,
            "expires_in": 3600,
            "token_type": "bearer",
            "user": self.users[email],
        }

    def _bearer(self, request: httpx.Request) -> str:
        return request.headers.get("Authorization", "").removeprefix("Bearer ")

    async def handle(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        if path == "/auth/v1/token":
            grant = request.url.params.get("grant_type")
            if grant == "password":
                return self._password_grant(body)
            if grant == "refresh_token":
                return await self._refresh_grant(body)

        if path == "/auth/v1/user" and request.method == "GET":
            self.user_calls += 1
            email = self.access_tokens.get(self._bearer(request))
            if email is None:
                return _json(401, {"code": 401, "error_code": "bad_jwt", "msg": "invalid JWT"})
            return _json(200, self.users[email])

        if path == "/auth/v1/signup":
            email = body["email"]
            if email in self.users:
                return _json(422, {"code": 422, "error_code": "user_already_exists", "msg": "User already registered"})
            user = self.add_user(UUID(int=len(self.users) + 100), email, body["password"])
            self.unconfirmed.add(email)
            return _json(200, user)

        if path == "/auth/v1/logout":
            self.sign_out_calls.append(self._bearer(request))
            return httpx.Response(204)

        return _json(404, {"msg": "not found"})

    def _password_grant(self, body: dict) -> httpx.Response:
        email = body.get("email")
        if self.passwords.get(email) != body.get("password"):
            return _json(400, {
                "error": "invalid_grant",
                "error_code": "invalid_credentials",
                "error_description": "Invalid login credentials",
            })
        if email in self.unconfirmed:
            return _json(400, {"error_code": "email_not_confirmed", "msg": "Email not confirmed"})
        return _json(200, self._session_body(email))

    async def _refresh_grant(self, body: dict) -> httpx.Response:
        self.refresh_calls += 1
        token = body.get("refresh_token")

        if token in self.spent:
            return _json(400, {
                "error_code": "refresh_token_already_used",
                "msg": "Invalid Refresh Token: Already Used",
            })
        email = self.refresh_tokens.get(token)
        if email is not None:
            # Consumed at the start of the call, as the real provider does
            self.spent.add(token)

        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_failure is not None:
            status, failure = self.refresh_failure
            return _json(status, failure)
        if email is None:
            return _json(400, {
                "error_code": "refresh_token_not_found",
                "msg": "Invalid Refresh Token: Refresh Token Not Found",
            })
        return _json(200, self._session_body(email))


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


# =============================================================================
# AUTH FIXTURES
# =============================================================================


@pytest.fixture
def config():
    """Test config: plain-HTTP cookies, short refresh waits."""
    return AuthConfig(
        cookie_secure=False,
        refresh_wait_timeout_seconds=2.0,
        rate_limit_attempts=3,
        rate_limit_window_minutes=5,
        app_base_url="https://shop.test",
    )


@pytest.fixture
def provider():
    """Fake identity provider with the primary test user registered."""
    fake = FakeIdentityProvider()
    fake.add_user(TEST_USER_ID, TEST_USER_EMAIL)
    fake.add_user(TEST_USER_B_ID, TEST_USER_B_EMAIL)
    return fake


@pytest.fixture
def identity(provider):
    """IdentityProviderClient talking to the fake provider."""
    return IdentityProviderClient(IDENTITY_URL, "anon-key", transport=httpx.MockTransport(provider.handle))


@pytest.fixture
def security_logger():
    """Security events are asserted on, not persisted."""
    return Mock(spec=SecurityLogger)


@pytest.fixture
def valkey():
    """In-memory stand-in for the counter operations of ValkeyClient."""
    counters: dict[str, int] = {}
    mock = Mock(spec=ValkeyClient)

    def incr(key):
        counters[key] = counters.get(key, 0) + 1
        return counters[key]

    mock.incr.side_effect = incr
    mock.get.side_effect = lambda key: str(counters[key]) if key in counters else None
    mock.delete.side_effect = lambda key: counters.pop(key, None) is not None
    mock.expire.return_value = True
    mock.ttl.return_value = 300
    mock.counters = counters
    return mock
