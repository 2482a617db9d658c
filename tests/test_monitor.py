import asyncio
import itertools
import threading
from datetime import datetime, timedelta, timezone

import pytest

from relay_reindexer.errors import (
    CHAIN_NOT_FOUND_MESSAGE,
    INVALID_URL_MESSAGE,
    IndexingError,
    UNAVAILABLE_MESSAGE,
    UpstreamError,
)
from relay_reindexer.models import MonitorPhase, TrackingRequest
from relay_reindexer.monitor import TransactionMonitor, latest_request

from fakes import (
    BASESCAN_URL,
    ETHERSCAN_URL,
    HASH,
    OTHER_HASH,
    BlockingSleep,
    FakeRelayClient,
    GatedSleep,
    RecordingRepository,
    RecordingSleep,
    tracking,
)


def make_monitor(client, sleep=None, repository=None):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    ticks = itertools.count()
    return TransactionMonitor(
        client,
        repository=repository,
        fast_interval=2.0,
        slow_interval=10.0,
        max_fast_polls=30,
        sleep=sleep or RecordingSleep(),
        clock=lambda: start + timedelta(seconds=next(ticks)),
    )


def run(coro):
    return asyncio.run(coro)


def test_immediate_result_resolves_without_polling():
    client = FakeRelayClient(requests=[[tracking("req-1")]])
    sleep = RecordingSleep()
    monitor = make_monitor(client, sleep=sleep)

    snapshot = run(monitor.start(ETHERSCAN_URL))

    assert client.submitted == [(HASH, 1)]
    assert snapshot.phase == MonitorPhase.RESOLVED
    assert snapshot.error is None
    assert not snapshot.is_loading
    session = snapshot.session
    assert session.transaction_hash == HASH
    assert not session.is_active
    assert session.request_id == "req-1"
    assert session.latest_status.request_id == "req-1"
    assert session.consecutive_polls == 0
    assert sleep.delays == []


def test_resolves_after_three_empty_checks():
    client = FakeRelayClient(requests=[[], [], [], [tracking("req-9")]])
    repository = RecordingRepository()
    monitor = make_monitor(client, repository=repository)

    async def scenario():
        first = await monitor.start(ETHERSCAN_URL)
        assert first.phase == MonitorPhase.POLLING
        assert first.session.is_active
        return await monitor.wait()

    snapshot = run(scenario())

    assert snapshot.phase == MonitorPhase.RESOLVED
    assert snapshot.session.request_id == "req-9"
    assert snapshot.poll_count == 0
    assert repository.history == [
        (True, 0),
        (True, 0),
        (True, 1),
        (True, 2),
        (False, 0),
    ]


def test_poll_counter_only_drops_on_reset():
    responses = [[], RuntimeError("boom"), [], RuntimeError("again"), [], [tracking("req-2")]]
    repository = RecordingRepository()
    monitor = make_monitor(FakeRelayClient(requests=responses), repository=repository)

    async def scenario():
        await monitor.start(ETHERSCAN_URL)
        return await monitor.wait()

    run(scenario())

    counts = [count for _, count in repository.history]
    for (was_active, before), (is_active, after) in zip(repository.history, repository.history[1:]):
        assert after >= before or (after == 0 and not is_active)
    assert max(counts) == 4


def test_first_thirty_polls_use_short_interval():
    responses = [[]] * 35 + [[tracking("req-late")]]
    sleep = RecordingSleep()
    monitor = make_monitor(FakeRelayClient(requests=responses), sleep=sleep)

    async def scenario():
        await monitor.start(ETHERSCAN_URL)
        return await monitor.wait()

    snapshot = run(scenario())

    assert snapshot.phase == MonitorPhase.RESOLVED
    assert sleep.delays == [2.0] * 30 + [10.0] * 5


def test_poll_errors_keep_session_active_and_silent():
    responses = [[], RuntimeError("502"), RuntimeError("timeout"), [tracking("req-3")]]
    repository = RecordingRepository()
    monitor = make_monitor(FakeRelayClient(requests=responses), repository=repository)

    async def scenario():
        await monitor.start(ETHERSCAN_URL)
        return await monitor.wait()

    snapshot = run(scenario())

    assert snapshot.error is None
    assert snapshot.phase == MonitorPhase.RESOLVED
    assert repository.history[2:] == [(True, 1), (True, 2), (False, 0)]


def test_immediate_check_error_falls_back_to_polling():
    responses = [RuntimeError("flaky"), [tracking("req-4")]]
    monitor = make_monitor(FakeRelayClient(requests=responses))

    async def scenario():
        first = await monitor.start(ETHERSCAN_URL)
        assert first.phase == MonitorPhase.POLLING
        assert first.error is None
        return await monitor.wait()

    assert run(scenario()).session.request_id == "req-4"


def test_request_without_id_is_no_result():
    responses = [[TrackingRequest(status="pending")], [tracking("req-5")]]
    client = FakeRelayClient(requests=responses)
    monitor = make_monitor(client)

    async def scenario():
        await monitor.start(ETHERSCAN_URL)
        return await monitor.wait()

    snapshot = run(scenario())

    assert client.status_calls == ["req-5"]
    assert snapshot.session.request_id == "req-5"


def test_bare_hash_fails_without_calling_client():
    client = FakeRelayClient()
    monitor = make_monitor(client)

    snapshot = run(monitor.start(HASH))

    assert snapshot.phase == MonitorPhase.FAILED
    assert snapshot.error == CHAIN_NOT_FOUND_MESSAGE
    assert snapshot.session is None
    assert client.submitted == []
    assert client.lookups == []


def test_unrecognized_url_reports_invalid_url():
    monitor = make_monitor(FakeRelayClient())
    snapshot = run(monitor.start("https://example.com/not-a-tx"))
    assert snapshot.error == INVALID_URL_MESSAGE
    assert snapshot.session is None


def test_index_failure_discards_session():
    client = FakeRelayClient(
        submit_error=IndexingError("Internal error", status_code=500, reason="Internal Server Error")
    )
    monitor = make_monitor(client)

    snapshot = run(monitor.start(ETHERSCAN_URL))

    assert snapshot.phase == MonitorPhase.FAILED
    assert snapshot.error == UNAVAILABLE_MESSAGE
    assert snapshot.session is None
    assert monitor.session is None
    assert not snapshot.is_loading
    assert client.lookups == []


def test_manual_refresh_without_session():
    monitor = make_monitor(FakeRelayClient())
    assert run(monitor.manual_refresh()) is None


def test_manual_refresh_without_result_only_touches_last_checked():
    monitor = make_monitor(FakeRelayClient(requests=[[], []]), sleep=BlockingSleep())

    async def scenario():
        started = await monitor.start(ETHERSCAN_URL)
        refreshed = await monitor.manual_refresh()
        monitor.stop()
        return started, refreshed

    started, refreshed = run(scenario())

    assert refreshed.session.is_active
    assert refreshed.session.consecutive_polls == started.session.consecutive_polls == 0
    assert refreshed.session.last_checked_at > started.session.last_checked_at
    assert refreshed.session.latest_status is None


def test_manual_refresh_result_resolves_and_stops_timer():
    client = FakeRelayClient(requests=[[], [tracking("req-6")]])
    monitor = make_monitor(client, sleep=BlockingSleep())

    async def scenario():
        await monitor.start(ETHERSCAN_URL)
        refreshed = await monitor.manual_refresh()
        await monitor.wait()
        return refreshed

    refreshed = run(scenario())

    assert refreshed.phase == MonitorPhase.RESOLVED
    assert refreshed.session.request_id == "req-6"
    assert not refreshed.session.is_active


def test_manual_refresh_error_is_silent():
    monitor = make_monitor(
        FakeRelayClient(requests=[[], RuntimeError("down")]), sleep=BlockingSleep()
    )

    async def scenario():
        await monitor.start(ETHERSCAN_URL)
        refreshed = await monitor.manual_refresh()
        monitor.stop()
        return refreshed

    refreshed = run(scenario())

    assert refreshed.error is None
    assert refreshed.session.is_active
    assert refreshed.session.consecutive_polls == 0


@pytest.mark.parametrize("answer", [[], RuntimeError("down")], ids=["empty", "error"])
def test_manual_refresh_keeps_poll_count(answer):
    monitor = make_monitor(
        FakeRelayClient(requests=[[], [], [], answer]), sleep=GatedSleep(free=2)
    )

    async def scenario():
        await monitor.start(ETHERSCAN_URL)
        while monitor.poll_count < 2:
            await asyncio.sleep(0.01)
        before = monitor.snapshot()
        refreshed = await monitor.manual_refresh()
        monitor.stop()
        return before, refreshed

    before, refreshed = run(asyncio.wait_for(scenario(), 5))

    assert before.poll_count == 2
    assert refreshed.poll_count == 2
    assert refreshed.session.consecutive_polls == 2
    assert refreshed.session.is_active
    assert refreshed.error is None


def test_start_fetches_chain_list_once_when_it_is_down():
    client = FakeRelayClient(chains=UpstreamError("down", status_code=503))
    monitor = make_monitor(client)

    snapshot = run(monitor.start(ETHERSCAN_URL))

    assert snapshot.phase == MonitorPhase.FAILED
    assert snapshot.error == CHAIN_NOT_FOUND_MESSAGE
    assert client.chain_fetches == 1
    assert client.submitted == []

    run(monitor.start(ETHERSCAN_URL))
    assert client.chain_fetches == 2


def test_stop_discards_late_response():
    entered = threading.Event()
    release = threading.Event()

    def slow_lookup():
        entered.set()
        release.wait(5)
        return [tracking("req-late")]

    client = FakeRelayClient(requests=[[], slow_lookup])
    monitor = make_monitor(client)

    async def scenario():
        await monitor.start(ETHERSCAN_URL)
        await asyncio.to_thread(entered.wait, 5)
        stopped = monitor.stop()
        release.set()
        await asyncio.sleep(0.05)
        return stopped

    stopped = run(scenario())

    assert stopped.phase == MonitorPhase.STOPPED
    assert stopped.session is None
    assert monitor.session is None
    assert monitor.phase == MonitorPhase.STOPPED
    assert client.status_calls == []


def test_new_session_ignores_response_for_previous_one():
    entered = threading.Event()
    release = threading.Event()

    def slow_lookup():
        entered.set()
        release.wait(5)
        return [tracking("req-old")]

    client = FakeRelayClient(requests=[[], slow_lookup, [tracking("req-new")]])
    monitor = make_monitor(client)

    async def scenario():
        await monitor.start(ETHERSCAN_URL)
        await asyncio.to_thread(entered.wait, 5)
        second = await monitor.start(BASESCAN_URL)
        release.set()
        await asyncio.sleep(0.05)
        return second

    second = run(scenario())

    assert second.phase == MonitorPhase.RESOLVED
    session = monitor.session
    assert session.transaction_hash == OTHER_HASH
    assert session.chain_id == 8453
    assert session.request_id == "req-new"
    assert client.status_calls == ["req-new"]


def test_stop_clears_error():
    monitor = make_monitor(FakeRelayClient())
    run(monitor.start(HASH))
    assert monitor.error is not None

    snapshot = monitor.stop()

    assert snapshot.error is None
    assert not snapshot.is_loading
    assert snapshot.phase == MonitorPhase.STOPPED


def test_snapshot_is_a_copy():
    monitor = make_monitor(FakeRelayClient(requests=[[tracking()]]))
    snapshot = run(monitor.start(ETHERSCAN_URL))
    snapshot.session.consecutive_polls = 99
    assert monitor.session.consecutive_polls == 0


@pytest.mark.parametrize(
    "requests, expected",
    [
        (
            [
                tracking("old", datetime(2024, 1, 1, tzinfo=timezone.utc)),
                tracking("new", datetime(2024, 3, 1, tzinfo=timezone.utc)),
            ],
            "new",
        ),
        ([tracking("first"), tracking("second")], "first"),
        (
            [tracking("undated"), tracking("dated", datetime(2024, 1, 1, tzinfo=timezone.utc))],
            "dated",
        ),
    ],
)
def test_latest_request_orders_by_creation(requests, expected):
    assert latest_request(requests).id == expected
