import time

import pytest

from oce_status.fetcher import ServerFetcher
from oce_status.models import CanonicalStatus, Outcome
from oce_status.poller import PollOrchestrator

TIMEOUT = 0.3


@pytest.fixture
def poller(session, fixed_now):
    return PollOrchestrator(ServerFetcher(session, timeout=TIMEOUT, clock=lambda: fixed_now))


async def test_empty_round_makes_no_calls(poller, game_api):
    assert await poller.run_round([]) == {}
    assert game_api.hits == {}


async def test_one_failure_does_not_leak_into_another(poller, game_api, make_config):
    servers = [
        make_config("good", game_api.url("/ok")),
        make_config("bad", game_api.url("/unavailable")),
    ]
    results = await poller.run_round(servers)

    assert list(results) == ["good", "bad"]
    assert results["good"].outcome is Outcome.SUCCESS
    assert results["good"].error_detail is None
    assert results["good"].retry_count == 0
    assert results["bad"].outcome is Outcome.ERROR
    assert results["bad"].error_detail == "http 503"
    assert results["bad"].current_map == "Unknown"


async def test_timeouts_run_in_parallel(poller, game_api, make_config):
    servers = [
        make_config("first", game_api.url("/ok")),
        make_config("second", game_api.url("/slow")),
        make_config("third", game_api.url("/ok")),
    ]

    started = time.monotonic()
    results = await poller.run_round(servers)
    elapsed = time.monotonic() - started

    assert len(results) == 3
    assert results["second"].error_detail == "timeout"
    assert results["first"].ok and results["third"].ok
    assert elapsed < 2 * TIMEOUT


async def test_every_server_failing_still_returns_a_record_each(poller, make_config, unused_port_url):
    servers = [make_config(f"dead-{n}", unused_port_url) for n in range(3)]
    results = await poller.run_round(servers)

    assert set(results) == {"dead-0", "dead-1", "dead-2"}
    assert all(status.error_detail == "unreachable" for status in results.values())


async def test_retry_count_grows_and_resets(poller, game_api, make_config):
    server = make_config("flaky", game_api.url("/live"))
    game_api.payload = {}

    first = await poller.run_round([server])
    second = await poller.run_round([server])
    assert first["flaky"].retry_count == 1
    assert second["flaky"].retry_count == 2
    assert poller.retry_count("flaky") == 2
    assert poller.total_retries == 2

    game_api.payload = {"allies": 5}
    third = await poller.run_round([server])
    assert third["flaky"].ok
    assert third["flaky"].retry_count == 0
    assert poller.retry_count("flaky") == 0


async def test_removed_server_forgets_its_retries(poller, game_api, make_config):
    bad = make_config("bad", game_api.url("/unavailable"))
    good = make_config("good", game_api.url("/ok"))

    await poller.run_round([bad, good])
    assert poller.retry_count("bad") == 1

    await poller.run_round([good])
    assert poller.retry_count("bad") == 0
    assert poller.total_retries == 0


class ExplodingFetcher:
    def __init__(self, fixed_now):
        self.fixed_now = fixed_now

    async def fetch(self, config):
        if config.id == "boom":
            raise RuntimeError("bug in fetcher")
        return CanonicalStatus(id=config.id, name=config.name, outcome=Outcome.SUCCESS, timestamp=self.fixed_now)


async def test_unexpected_exception_becomes_error_record(make_config, fixed_now, caplog):
    poller = PollOrchestrator(ExplodingFetcher(fixed_now))
    servers = [make_config("boom"), make_config("fine")]

    results = await poller.run_round(servers)

    assert results["boom"].outcome is Outcome.ERROR
    assert results["boom"].error_detail == "unexpected error"
    assert results["boom"].retry_count == 1
    assert results["fine"].ok
    assert "bug in fetcher" in caplog.text
