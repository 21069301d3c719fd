"""Per-resource fetch state machines with retry, backoff and cancellation.

A fetcher moves Idle -> Loading -> Success | Error. Changing its parameters
cancels the running task and starts over; every run carries a generation
number and may only write state while that generation is current, so a
late response from a superseded run is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

from ..errors import DashboardError, RateLimitedError, UnknownUpstreamError
from .api import DashboardClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchState:
    data: Any = None
    is_loading: bool = False
    error: DashboardError | None = None
    retry_count: int = 0

    @property
    def status(self) -> str:
        if self.is_loading:
            return "loading"
        if self.error is not None:
            return "error"
        if self.data is not None:
            return "success"
        return "idle"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    backoff: float = 2.0
    max_delay: float = 10.0

    def delay_for(self, attempt: int, error: DashboardError | None = None) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay = min(self.base_delay * self.backoff**attempt, self.max_delay)
        if isinstance(error, RateLimitedError) and error.retry_after:
            delay = max(delay, error.retry_after)
        return delay


Listener = Callable[[FetchState], None]


class ResourceFetcher:
    """Drive one loader through the fetch lifecycle.

    ``load`` is called with the current params as keyword arguments.
    Nothing runs until :meth:`start`, :meth:`set_params` or :meth:`refetch`.
    """

    def __init__(
        self,
        load: Callable[..., Awaitable[Any]],
        *,
        params: dict[str, Any] | None = None,
        policy: RetryPolicy | None = None,
        enabled: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._load = load
        self.params: dict[str, Any] = dict(params or {})
        self.policy = policy or RetryPolicy()
        self.enabled = enabled
        self._sleep = sleep
        self._state = FetchState()
        self._generation = 0
        self._task: asyncio.Task | None = None
        self._listeners: list[Listener] = []
        self.attempts = 0

    @property
    def state(self) -> FetchState:
        return self._state

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, generation: int, **changes: Any) -> bool:
        if generation != self._generation:
            return False
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)
        return True

    def _cancel_running(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def start(self) -> asyncio.Task | None:
        """Begin a fresh fetch with the current params (no-op when disabled)."""
        self._cancel_running()
        self._generation += 1
        generation = self._generation
        if not self.enabled:
            self._set_state(generation, data=None, is_loading=False, error=None, retry_count=0)
            return None
        self._set_state(generation, data=None, is_loading=True, error=None, retry_count=0)
        self._task = asyncio.create_task(self._run(generation, dict(self.params)))
        return self._task

    def set_params(self, **params: Any) -> asyncio.Task | None:
        self.params.update(params)
        return self.start()

    def set_enabled(self, enabled: bool) -> asyncio.Task | None:
        self.enabled = enabled
        return self.start()

    def refetch(self) -> asyncio.Task | None:
        return self.start()

    async def wait(self) -> FetchState:
        """Await the running fetch, if any, and return the resulting state."""
        if self._task is not None:
            await asyncio.wait([self._task])
        return self._state

    async def close(self) -> None:
        task = self._task
        self._cancel_running()
        self._generation += 1
        self._listeners.clear()
        if task is not None:
            await asyncio.wait([task])

    async def _run(self, generation: int, params: dict[str, Any]) -> None:
        retries = 0
        while generation == self._generation:
            self.attempts += 1
            try:
                data = await self._load(**params)
            except DashboardError as exc:
                error = exc
            except Exception as exc:
                logger.exception("fetcher.unexpected_error")
                error = UnknownUpstreamError(str(exc) or "Unexpected error")
            else:
                self._set_state(generation, data=data, is_loading=False, error=None, retry_count=0)
                return

            if generation != self._generation:
                return
            if not error.retryable or retries >= self.policy.max_retries:
                logger.info(
                    "fetcher.failed",
                    extra={"meta": {"code": error.code, "retries": retries}},
                )
                self._set_state(generation, data=None, is_loading=False, error=error, retry_count=retries)
                return

            delay = self.policy.delay_for(retries, error)
            retries += 1
            logger.info(
                "fetcher.retry",
                extra={"meta": {"code": error.code, "attempt": retries, "delay": delay}},
            )
            self._set_state(generation, retry_count=retries)
            await self._sleep(delay)


class TopTracksFetcher(ResourceFetcher):
    def __init__(
        self,
        client: DashboardClient,
        time_range: str = "medium_term",
        limit: int = 25,
        *,
        start_date: str | None = None,
        end_date: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            client.get_top_tracks,
            params={"time_range": time_range, "limit": limit, "start_date": start_date, "end_date": end_date},
            **kwargs,
        )


class TopArtistsFetcher(ResourceFetcher):
    def __init__(
        self,
        client: DashboardClient,
        time_range: str = "medium_term",
        limit: int = 25,
        *,
        start_date: str | None = None,
        end_date: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            client.get_top_artists,
            params={"time_range": time_range, "limit": limit, "start_date": start_date, "end_date": end_date},
            **kwargs,
        )


class RecentlyPlayedFetcher(ResourceFetcher):
    def __init__(self, client: DashboardClient, limit: int = 25, **kwargs: Any) -> None:
        super().__init__(client.get_recently_played, params={"limit": limit}, **kwargs)


class ListeningStatsFetcher(ResourceFetcher):
    def __init__(self, client: DashboardClient, **kwargs: Any) -> None:
        super().__init__(client.get_listening_stats, **kwargs)
