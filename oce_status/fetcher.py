
# ServerFetcher: one bounded-time GET per server, failure returned as a value.

# Every way a request can go wrong ends up as an ERROR CanonicalStatus with a
# short machine-readable cause:
#
#   timeout         the request exceeded the total timeout
#   http <status>   the server answered with a non-2xx status
#   invalid json    the body could not be decoded as JSON
#   unreachable     connect / DNS / reset / any other client-side failure
#
# Timeouts are reported separately from other network failures so that slow
# servers can be told apart from dead ones in the retry diagnostics.
# No retries here: the poller decides what a failure means.

import asyncio
import json
import logging
from datetime import datetime
from typing import Callable

import aiohttp

from oce_status.config import REQUEST_TIMEOUT_SECONDS
from oce_status.models import CanonicalStatus, ServerConfig, utcnow
from oce_status.normalizer import normalize

log = logging.getLogger(__name__)


class ServerFetcher:
    """
    Wraps a shared aiohttp.ClientSession; one instance serves every server.

    `clock` supplies the observation timestamp and exists so tests can pin it.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._clock = clock

    async def fetch(self, config: ServerConfig) -> CanonicalStatus:
        """Fetch and normalize one server. Never raises (except on cancellation)."""
        url = config.endpoint
        try:
            async with self._session.get(
                url,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            ) as resp:
                if not 200 <= resp.status < 300:
                    log.warning("HTTP error fetching %s (%s): %s", config.id, url, resp.status)
                    return self._failed(config, f"http {resp.status}")

                body = await resp.read()

        except asyncio.TimeoutError:
            log.warning("Timeout fetching %s (%s)", config.id, url)
            return self._failed(config, "timeout")
        except aiohttp.ClientError as exc:
            log.warning("Cannot reach %s (%s): %s", config.id, url, exc)
            return self._failed(config, "unreachable")

        try:
            data = json.loads(body)
        except ValueError:
            log.warning("Invalid JSON from %s (%s)", config.id, url)
            return self._failed(config, "invalid json")

        status = normalize(data, config, self._clock())
        if not status.ok:
            log.warning("Unusable payload from %s (%s): %s", config.id, url, status.error_detail)
        return status

    def _failed(self, config: ServerConfig, detail: str) -> CanonicalStatus:
        return CanonicalStatus.error(config, detail, self._clock())
