"""Client-side auth state: {user, is_authenticated, is_loading}.

The server is the truth, but asking it costs a round-trip, so the client
keeps a cached view and re-checks when something suggests it is stale:
mount, navigation, another tab changing the marker, and registered triggers
(polling is one of them).

Two signals feed the view:
- primary: GET /api/auth/me, the session as the server resolves it
- secondary: the script-readable auth-state cookie in the local jar

They are merged by merge_auth_signals. Either one being true renders
"logged in" UI; a stale logged-in header is preferred over flashing
"logged out" at someone whose access token just expired.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

import httpx

from auth.config import AuthConfig
from auth.types import AUTHENTICATED_MARKER, User
from browser.triggers import AuthTrigger, CrossTabChannel, Navigator

logger = logging.getLogger(__name__)

Listener = Callable[["AuthSnapshot"], object]


def merge_auth_signals(session_user: User | None, marker: str | None) -> bool:
    """OR-merge of the server session and the liveness cookie."""
    return session_user is not None or marker == AUTHENTICATED_MARKER


@dataclass(frozen=True)
class AuthSnapshot:
    user: User | None = None
    is_authenticated: bool = False
    is_loading: bool = True


@dataclass(frozen=True)
class LoginOutcome:
    success: bool
    error: str | None = None


class ClientAuthState:
    """
    Cached auth view for one tab.

    Usage:
        state = ClientAuthState(http, navigator, channel=tabs)
        state.add_trigger(PollingTrigger(60))
        state.subscribe(render_header)
        await state.mount()
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        navigator: Navigator,
        channel: CrossTabChannel | None = None,
        config: AuthConfig | None = None,
    ):
        self._http = http
        self._navigator = navigator
        self._channel = channel
        self._config = config or AuthConfig()
        self._snapshot = AuthSnapshot()
        self._primary_user: User | None = None
        self._listeners: list[Listener] = []
        self._triggers: list[AuthTrigger] = []
        self._unsubscribe_channel: Callable[[], None] | None = None
        self._check_task: asyncio.Task | None = None
        self._generation = 0
        self._mounted = False
        self.current_path: str | None = None

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._snapshot

    @property
    def marker(self) -> str | None:
        return self._http.cookies.get(self._config.auth_state_cookie_name)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener` with every new snapshot. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def add_trigger(self, trigger: AuthTrigger) -> None:
        self._triggers.append(trigger)
        if self._mounted:
            trigger.start(self)

    def _publish(self, snapshot: AuthSnapshot) -> None:
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def mount(self) -> bool:
        self._mounted = True
        if self._channel is not None and self._unsubscribe_channel is None:
            self._unsubscribe_channel = self._channel.subscribe(self.on_storage_event)
        for trigger in self._triggers:
            trigger.start(self)
        return await self.check_auth_status()

    def unmount(self) -> None:
        self._mounted = False
        for trigger in self._triggers:
            trigger.stop()
        if self._unsubscribe_channel is not None:
            self._unsubscribe_channel()
            self._unsubscribe_channel = None

    async def navigate(self, path: str) -> bool:
        """Client-side route change."""
        self.current_path = path
        return await self.check_auth_status()

    def on_storage_event(self, key: str, value: str | None) -> None:
        """Another tab changed a shared key. Only the marker key matters."""
        if key != self._config.auth_state_cookie_name:
            return
        logger.debug("Auth state changed in another tab, re-checking")
        self._start_check()

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def check_auth_status(self, force: bool = False) -> bool:
        """Re-run the full check. Concurrent callers share one check.

        force starts a new check even if one is in flight, for callers that
        know the cookies changed after that check was sent.
        """
        if force or self._check_task is None or self._check_task.done():
            self._start_check()
        return await asyncio.shield(self._check_task)

    def _start_check(self) -> asyncio.Task:
        """Start a check that supersedes any earlier one."""
        self._generation += 1
        task = asyncio.ensure_future(self._check(self._generation))
        task.add_done_callback(_log_check_failure)
        self._check_task = task
        return task

    async def _check(self, generation: int) -> bool:
        self._publish(replace(self._snapshot, is_loading=True))
        user = await self._fetch_session_user()
        is_authenticated = merge_auth_signals(user, self.marker)
        if generation != self._generation:
            # A newer check or a logout owns the snapshot now
            return is_authenticated

        self._primary_user = user
        self._publish(AuthSnapshot(
            user=self._primary_user,
            is_authenticated=is_authenticated,
            is_loading=False,
        ))
        return is_authenticated

    async def _fetch_session_user(self) -> User | None:
        try:
            response = await self._http.get("/api/auth/me")
        except httpx.HTTPError as e:
            logger.warning(f"Auth check failed: {e!r}")
            return None

        if response.status_code != 200:
            logger.debug(f"Auth check returned {response.status_code}")
            return None
        try:
            return User.model_validate(response.json()["data"]["user"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Unexpected auth check payload: {e!r}")
            return None

    async def self_heal(self) -> bool:
        """Re-check only while the cookie claims a session the server did not confirm."""
        if self._primary_user is None and self.marker == AUTHENTICATED_MARKER:
            return await self.check_auth_status()
        return self._snapshot.is_authenticated

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> LoginOutcome:
        """Log in, then trust only a fresh check. Errors come back, never raise."""
        self._publish(replace(self._snapshot, is_loading=True))
        try:
            response = await self._http.post(
                "/api/auth/login", json={"email": email, "password": password}
            )
        except httpx.HTTPError as e:
            logger.error(f"Login error: {e!r}")
            self._publish(replace(self._snapshot, is_loading=False))
            return LoginOutcome(success=False, error="An unexpected error occurred")

        if response.status_code != 200:
            self._publish(replace(self._snapshot, is_loading=False))
            return LoginOutcome(success=False, error=_error_message(response) or "Login failed")

        await self.check_auth_status(force=True)
        if self._channel is not None:
            self._channel.publish(
                self._config.auth_state_cookie_name, AUTHENTICATED_MARKER, source=self.on_storage_event
            )
        self._navigator.refresh()
        return LoginOutcome(success=True)

    async def logout(self) -> None:
        """Clear locally first, then tell the server. The UI never stays logged in."""
        self._primary_user = None
        self._generation += 1
        self._check_task = None
        self._publish(AuthSnapshot(user=None, is_authenticated=False, is_loading=False))
        if self._channel is not None:
            self._channel.publish(
                self._config.auth_state_cookie_name, None, source=self.on_storage_event
            )

        try:
            await self._http.post("/api/auth/logout")
        except httpx.HTTPError as e:
            logger.warning(f"Server logout failed, cleared locally only: {e!r}")

        for name in (
            self._config.access_cookie_name,
            self._config.refresh_cookie_name,
            self._config.auth_state_cookie_name,
        ):
            self._http.cookies.delete(name)

        self._navigator.push(self._config.login_path)


def _error_message(response: httpx.Response) -> str | None:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return None


def _log_check_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Auth check failed: {error!r}")
