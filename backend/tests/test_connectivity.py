import asyncio

import pytest

from fieldsync.services.connectivity import ConnectivityMode, ConnectivityMonitor

DEBOUNCE = 0.05


def _recorder():
    events = []

    async def handler(previous, current):
        events.append((previous, current))

    return events, handler


@pytest.mark.asyncio
async def test_flapping_inside_window_emits_nothing():
    """offline -> online -> offline within one window is not a transition."""
    monitor = ConnectivityMonitor(debounce_seconds=DEBOUNCE)
    events, handler = _recorder()
    monitor.subscribe(handler)

    monitor.report(True)
    await asyncio.sleep(DEBOUNCE / 5)
    monitor.report(False)
    await monitor.wait_settled()

    assert events == []
    assert monitor.current_mode is ConnectivityMode.OFFLINE


@pytest.mark.asyncio
async def test_settled_signal_emits_one_transition():
    monitor = ConnectivityMonitor(debounce_seconds=DEBOUNCE)
    events, handler = _recorder()
    monitor.subscribe(handler)

    monitor.report(True)
    await monitor.wait_settled()

    assert events == [(ConnectivityMode.OFFLINE, ConnectivityMode.ONLINE)]
    assert monitor.is_online


@pytest.mark.asyncio
async def test_repeated_signals_do_not_duplicate_events():
    monitor = ConnectivityMonitor(debounce_seconds=DEBOUNCE)
    events, handler = _recorder()
    monitor.subscribe(handler)

    for _ in range(3):
        monitor.report(True)
        await asyncio.sleep(DEBOUNCE / 5)
    await monitor.wait_settled()
    monitor.report(True)
    await monitor.wait_settled()

    assert len(events) == 1


@pytest.mark.asyncio
async def test_round_trip_emits_both_transitions():
    monitor = ConnectivityMonitor(initial_mode=ConnectivityMode.ONLINE, debounce_seconds=DEBOUNCE)
    events, handler = _recorder()
    monitor.subscribe(handler)

    monitor.report(False)
    await monitor.wait_settled()
    monitor.report(True)
    await monitor.wait_settled()

    assert events == [
        (ConnectivityMode.ONLINE, ConnectivityMode.OFFLINE),
        (ConnectivityMode.OFFLINE, ConnectivityMode.ONLINE),
    ]


@pytest.mark.asyncio
async def test_recompute_sets_mode_without_event():
    monitor = ConnectivityMonitor(debounce_seconds=DEBOUNCE)
    events, handler = _recorder()
    monitor.subscribe(handler)

    async def check_reachable():
        return True

    mode = await monitor.recompute(check_reachable)

    assert mode is ConnectivityMode.ONLINE
    assert monitor.is_online
    assert events == []


@pytest.mark.asyncio
async def test_failing_handler_does_not_block_others():
    monitor = ConnectivityMonitor(debounce_seconds=DEBOUNCE)
    events, handler = _recorder()

    async def broken(previous, current):
        raise RuntimeError("ui crashed")

    monitor.subscribe(broken)
    monitor.subscribe(handler)
    monitor.report(True)
    await monitor.wait_settled()

    assert len(events) == 1


@pytest.mark.asyncio
async def test_unsubscribe():
    monitor = ConnectivityMonitor(debounce_seconds=DEBOUNCE)
    events, handler = _recorder()
    unsubscribe = monitor.subscribe(handler)
    unsubscribe()

    monitor.report(True)
    await monitor.wait_settled()

    assert events == []
    assert monitor.is_online
