
# PollOrchestrator: one round = every configured server fetched once.

# responsibilities:
#   - fan the fetches out concurrently, one coroutine per server
#   - wait for every outcome; a slow or failing server never delays or
#     cancels the result of another
#   - keep the consecutive-failure count per server and stamp it on the
#     record so the renderer can show "failing for N rounds"
#
# The round itself cannot fail: it always returns one record per server,
# even when every server is down.

import asyncio
import dataclasses
import logging
from typing import Sequence

from oce_status.fetcher import ServerFetcher
from oce_status.models import CanonicalStatus, ServerConfig, utcnow

log = logging.getLogger(__name__)


class PollOrchestrator:

    def __init__(self, fetcher: ServerFetcher) -> None:
        self._fetcher = fetcher
        self._retry_counts: dict[str, int] = {}   # server id -> consecutive failures

    async def run_round(self, servers: Sequence[ServerConfig]) -> dict[str, CanonicalStatus]:
        """Poll every server once. Results are keyed by id, in config order."""
        if not servers:
            log.debug("No servers configured; skipping round.")
            return {}

        outcomes = await asyncio.gather(
            *(self._fetcher.fetch(server) for server in servers),
            return_exceptions=True,
        )

        results: dict[str, CanonicalStatus] = {}
        for server, outcome in zip(servers, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                log.error(
                    "Unexpected error polling %s", server.id,
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                )
                outcome = CanonicalStatus.error(server, "unexpected error", utcnow())
            results[server.id] = self._track(outcome)

        # forget servers that were removed from the configuration
        for stale in self._retry_counts.keys() - results.keys():
            del self._retry_counts[stale]

        failed = sum(1 for status in results.values() if not status.ok)
        log.info("Round complete: %d ok, %d failed.", len(results) - failed, failed)
        return results

    def _track(self, status: CanonicalStatus) -> CanonicalStatus:
        if status.ok:
            self._retry_counts[status.id] = 0
            return status

        count = self._retry_counts.get(status.id, 0) + 1
        self._retry_counts[status.id] = count
        log.warning(
            "%s failed (%s), %d consecutive failure(s).",
            status.id, status.error_detail, count,
        )
        return dataclasses.replace(status, retry_count=count)

    def retry_count(self, server_id: str) -> int:
        return self._retry_counts.get(server_id, 0)

    @property
    def total_retries(self) -> int:
        return sum(self._retry_counts.values())

    def reset(self) -> None:
        self._retry_counts.clear()
