
# StatusMonitor: the top-level engine.

# Responsibilities:
#   - own the shared aiohttp session and connection pool
#   - wire fetcher -> poller -> cache together and hand rounds to the scheduler
#   - push one RoundNotification per completed round to every subscriber
#   - answer queries from the rendering side (current records, last round time)
#
# Nothing here is a process-wide singleton: whoever drives the engine builds
# a StatusMonitor and holds on to it.
#
# Concurrency model:
#   One event loop, at most one round at a time (the scheduler's lock).
#   Inside a round every server is its own coroutine; they share the
#   connection pool and nothing else until the results are merged.

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Iterable

import aiohttp

from oce_status.cache import StatusCache
from oce_status.config import (
    CONNECTION_LIMIT,
    POLL_INTERVAL_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    USER_AGENT,
)
from oce_status.fetcher import ServerFetcher
from oce_status.models import CanonicalStatus, RoundNotification, ServerConfig, utcnow
from oce_status.poller import PollOrchestrator
from oce_status.scheduler import Scheduler

log = logging.getLogger(__name__)

# sync or async; an awaitable result is awaited before the next subscriber runs
Subscriber = Callable[[RoundNotification], Any]


class StatusMonitor:
    """
    Usage:

        async with StatusMonitor(servers) as monitor:
            monitor.subscribe(handler.handle)
            await monitor.run()

    A session can be injected (tests, or an app that already has one); an
    injected session is never closed by the monitor.
    """

    def __init__(
        self,
        servers: Iterable[ServerConfig],
        *,
        interval: float = POLL_INTERVAL_SECONDS,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._servers: tuple[ServerConfig, ...] = tuple(servers)
        self._interval = interval
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

        self._cache = StatusCache()
        self._subscribers: list[Subscriber] = []
        self._poller: PollOrchestrator | None = None
        self._scheduler = Scheduler(self._round)
        self._stopped = asyncio.Event()

        if session is not None:
            self._poller = PollOrchestrator(ServerFetcher(session, timeout=timeout))

    # ─── lifecycle ────────────────────────────────────────────────────────────

    async def open(self) -> None:
        if self._poller is not None:
            return
        connector = aiohttp.TCPConnector(limit=CONNECTION_LIMIT)
        self._session = aiohttp.ClientSession(
            connector=connector,
            headers={"User-Agent": USER_AGENT},
        )
        self._poller = PollOrchestrator(ServerFetcher(self._session, timeout=self._timeout))

    async def close(self) -> None:
        self.stop()
        await self._scheduler.wait_closed()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
            self._poller = None
        elif self._poller is not None:
            self._poller.reset()
        self._cache.clear()

    async def __aenter__(self) -> "StatusMonitor":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def start(self) -> None:
        self._require_open()
        self._stopped.clear()
        self._scheduler.start(self._interval)

    def stop(self) -> None:
        self._scheduler.stop()
        self._stopped.set()

    async def run(self) -> None:
        """Start polling and block until stop() is called."""
        self.start()
        log.info(
            "StatusMonitor running, polling %d server(s) every %ss.",
            len(self._servers), self._interval,
        )
        await self._stopped.wait()
        await self._scheduler.wait_closed()

    async def refresh_now(self) -> RoundNotification:
        return await self.run_round()

    # ─── configuration ────────────────────────────────────────────────────────

    def set_servers(self, servers: Iterable[ServerConfig]) -> None:
        """Replace the server list. Takes effect from the next round."""
        self._servers = tuple(servers)
        log.info("Server list updated: %d server(s).", len(self._servers))

    @property
    def servers(self) -> tuple[ServerConfig, ...]:
        return self._servers

    # ─── subscriptions ────────────────────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register for round notifications. Returns a function that unsubscribes."""
        self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    async def _notify(self, notification: RoundNotification) -> None:
        # copy: a callback may (un)subscribe while we iterate
        for callback in list(self._subscribers):
            try:
                result = callback(notification)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.exception("Subscriber %r failed: %s", callback, exc)

    # ─── rounds ───────────────────────────────────────────────────────────────

    async def run_round(self) -> RoundNotification:
        """
        Run one round now and return its notification.

        Goes through the scheduler, so it waits for a round already in flight
        instead of overlapping it.
        """
        self._require_open()
        return await self._scheduler.refresh_now()

    async def _round(self) -> RoundNotification:
        """
        One full round: poll, merge into the cache, notify.

        The server list is captured up front so a set_servers() call during
        the round only affects the next one.
        """
        self._require_open()
        servers = self._servers
        results = await self._poller.run_round(servers)
        changes = self._cache.apply(results, configured_ids=[s.id for s in servers])

        notification = RoundNotification(
            statuses=results,
            changes=changes,
            completed_at=self._cache.last_updated or utcnow(),
        )
        changed = notification.changed_ids()
        if changed:
            log.debug("Changed this round: %s", ", ".join(changed))
        await self._notify(notification)
        return notification

    def _require_open(self) -> None:
        if self._poller is None:
            raise RuntimeError("StatusMonitor is not open; use 'async with' or await open()")

    # ─── queries ──────────────────────────────────────────────────────────────

    def get_status(self, server_id: str) -> CanonicalStatus | None:
        """Latest record, a LOADING placeholder if not polled yet, None if unknown."""
        status = self._cache.get(server_id)
        if status is not None:
            return status
        for server in self._servers:
            if server.id == server_id:
                return CanonicalStatus.loading(server, utcnow())
        return None

    def get_all_statuses(self) -> dict[str, CanonicalStatus]:
        """One record per configured server, in config order."""
        cached = self._cache.all()
        now = utcnow()
        return {
            server.id: cached.get(server.id) or CanonicalStatus.loading(server, now)
            for server in self._servers
        }

    def get_changes(self, server_id: str) -> frozenset[str]:
        return self._cache.changes_for(server_id)

    @property
    def last_round_at(self) -> datetime | None:
        return self._cache.last_updated

    @property
    def next_round_at(self) -> datetime | None:
        """When the next scheduled round is due; None when not polling."""
        return self._scheduler.next_run_at

    @property
    def is_running(self) -> bool:
        return self._scheduler.is_running

    @property
    def is_round_in_flight(self) -> bool:
        return self._scheduler.round_in_flight

    def polling_status(self) -> dict[str, Any]:
        return {
            "is_polling": self.is_running,
            "round_in_flight": self.is_round_in_flight,
            "last_round_at": self.last_round_at,
            "next_round_at": self.next_round_at,
            "next_round_in": self._scheduler.seconds_until_next_run,
            "cached_servers": len(self._cache),
            "total_retries": self._poller.total_retries if self._poller else 0,
        }
