"""Resynchronization triggers for ClientAuthState.

A trigger is anything that decides *when* the client should look at the
server again. Each one is started with the state it drives and stopped on
unmount; the state itself decides *what* a check does.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from browser.auth_state import ClientAuthState

logger = logging.getLogger(__name__)

StorageListener = Callable[[str, str | None], object]


class AuthTrigger(Protocol):
    def start(self, state: "ClientAuthState") -> None: ...

    def stop(self) -> None: ...


class Navigator(Protocol):
    """Routing side of the host UI."""

    def refresh(self) -> None:
        """Re-fetch data for the current route."""
        ...

    def push(self, path: str) -> None:
        """Navigate to another route."""
        ...


class PollingTrigger:
    """Periodic self-heal: re-check only while the signals disagree."""

    def __init__(self, interval_seconds: float = 60.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, state: "ClientAuthState") -> None:
        if self.running:
            return
        self._task = asyncio.ensure_future(self._run(state))

    async def _run(self, state: "ClientAuthState") -> None:
        while True:
            await asyncio.sleep(self._interval)
            await state.self_heal()

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None


class CrossTabChannel:
    """
    Shared key/value signal between tabs of one browser profile.

    Stands in for window storage events: a publish reaches every other
    subscriber, never the publisher itself.
    """

    def __init__(self):
        self._values: dict[str, str] = {}
        self._listeners: list[StorageListener] = []

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, key: str, value: str | None, source: StorageListener | None = None) -> None:
        """Set (or remove, with None) a key and notify everyone but `source`."""
        if value is None:
            self._values.pop(key, None)
        else:
            self._values[key] = value

        for listener in list(self._listeners):
            # Bound methods are rebuilt on access, so compare by equality
            if source is None or listener != source:
                listener(key, value)

