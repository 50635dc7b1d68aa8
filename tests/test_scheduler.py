import asyncio

import pytest

from oce_status.scheduler import Scheduler, SchedulerState

INTERVAL = 0.2


class RecordingRound:
    """Round function that records when it ran and how many overlapped."""

    def __init__(self, duration: float = 0.0, fail: bool = False) -> None:
        self.duration = duration
        self.fail = fail
        self.started: list[float] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self) -> int:
        self.started.append(asyncio.get_running_loop().time())
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.duration)
            if self.fail:
                raise RuntimeError("round blew up")
            return len(self.started)
        finally:
            self.in_flight -= 1


@pytest.fixture
async def make_scheduler():
    created: list[Scheduler] = []

    def factory(round_fn):
        scheduler = Scheduler(round_fn)
        created.append(scheduler)
        return scheduler

    yield factory

    for scheduler in created:
        scheduler.stop()
        await scheduler.wait_closed()


async def test_start_runs_immediately_then_on_interval(make_scheduler):
    rounds = RecordingRound()
    scheduler = make_scheduler(rounds)

    scheduler.start(INTERVAL)
    await asyncio.sleep(0.05)
    assert len(rounds.started) == 1

    await asyncio.sleep(INTERVAL * 2 + 0.05)
    assert len(rounds.started) == 3


async def test_start_is_idempotent(make_scheduler):
    rounds = RecordingRound()
    scheduler = make_scheduler(rounds)

    scheduler.start(INTERVAL)
    scheduler.start(INTERVAL)
    await asyncio.sleep(0.05)

    assert len(rounds.started) == 1
    assert scheduler.state is SchedulerState.RUNNING


async def test_stop_when_idle_is_safe(make_scheduler):
    scheduler = make_scheduler(RecordingRound())
    scheduler.stop()
    await scheduler.wait_closed()
    assert scheduler.state is SchedulerState.IDLE


async def test_stop_cancels_pending_interval(make_scheduler):
    rounds = RecordingRound()
    scheduler = make_scheduler(rounds)

    scheduler.start(INTERVAL)
    await asyncio.sleep(0.05)
    scheduler.stop()
    await scheduler.wait_closed()
    await asyncio.sleep(INTERVAL * 1.5)

    assert len(rounds.started) == 1
    assert not scheduler.is_running


async def test_restart_after_stop(make_scheduler):
    rounds = RecordingRound()
    scheduler = make_scheduler(rounds)

    scheduler.start(INTERVAL)
    await asyncio.sleep(0.05)
    scheduler.stop()
    scheduler.start(INTERVAL)
    await asyncio.sleep(0.05)

    assert scheduler.is_running
    assert len(rounds.started) == 2


async def test_refresh_does_not_move_the_next_tick(make_scheduler):
    rounds = RecordingRound()
    scheduler = make_scheduler(rounds)

    scheduler.start(INTERVAL)
    await asyncio.sleep(INTERVAL / 2)
    await scheduler.refresh_now()
    await asyncio.sleep(INTERVAL / 2 + 0.05)

    first, manual, tick = rounds.started[:3]
    assert manual - first == pytest.approx(INTERVAL / 2, abs=0.05)
    # still due one interval after the first round, not after the refresh
    assert tick - first == pytest.approx(INTERVAL, abs=0.05)


async def test_next_run_at_is_none_when_idle(make_scheduler):
    scheduler = make_scheduler(RecordingRound())

    assert scheduler.next_run_at is None
    assert scheduler.seconds_until_next_run is None


async def test_next_run_at_is_not_moved_by_refresh(make_scheduler):
    scheduler = make_scheduler(RecordingRound())

    scheduler.start(INTERVAL)
    await asyncio.sleep(INTERVAL / 4)
    before = scheduler.next_run_at
    assert 0 < scheduler.seconds_until_next_run <= INTERVAL

    await scheduler.refresh_now()

    after = scheduler.next_run_at
    assert abs((after - before).total_seconds()) < 0.02

    scheduler.stop()
    assert scheduler.next_run_at is None


async def test_refresh_when_idle_runs_one_round(make_scheduler):
    rounds = RecordingRound()
    scheduler = make_scheduler(rounds)

    result = await scheduler.refresh_now()

    assert result == 1
    assert not scheduler.is_running


async def test_never_more_than_one_round_in_flight(make_scheduler):
    rounds = RecordingRound(duration=INTERVAL * 1.5)
    scheduler = make_scheduler(rounds)

    scheduler.start(INTERVAL)
    await asyncio.sleep(0.05)
    assert scheduler.round_in_flight
    await asyncio.gather(scheduler.refresh_now(), asyncio.sleep(INTERVAL * 4))

    assert rounds.max_in_flight == 1
    assert len(rounds.started) >= 3


async def test_failing_round_does_not_stop_the_loop(make_scheduler, caplog):
    rounds = RecordingRound(fail=True)
    scheduler = make_scheduler(rounds)

    scheduler.start(INTERVAL)
    await asyncio.sleep(INTERVAL * 1.5)

    assert len(rounds.started) == 2
    assert scheduler.is_running
    assert "round blew up" in caplog.text


def test_interval_must_be_positive():
    scheduler = Scheduler(RecordingRound())
    with pytest.raises(ValueError):
        scheduler.start(0)
