from __future__ import annotations

import asyncio

import pytest
from fakes import DummyResponse, DummySession, add_capture

from kat_mobile.cloudsync import BackgroundSyncScheduler, ConnectivityMonitor, SyncEngine
from kat_mobile.storage import LocalStore


def _queue(store: LocalStore) -> str:
    session = store.create_session()
    add_capture(store, session.id)
    store.enqueue(session.id)
    return session.id


async def _wait_for(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


def test_connectivity_listeners_fire_on_transition_only() -> None:
    monitor = ConnectivityMonitor(online=True)
    events: list[str] = []
    remove = monitor.add_listener(events.append)

    assert monitor.set_online(True) is False
    monitor.set_online(False)
    assert monitor.set_online(True) is True
    monitor.notify_visible()
    remove()
    monitor.notify_visible()

    assert events == ["online", "visible"]
    assert monitor.listener_count == 0


@pytest.mark.asyncio
async def test_trigger_runs_batch_when_gate_open(configured_store: LocalStore) -> None:
    session_id = _queue(configured_store)
    session = DummySession()
    scheduler = BackgroundSyncScheduler(SyncEngine(configured_store, session=session))

    result = await scheduler.async_trigger("timer")

    assert result is not None
    assert result.synced == 1
    assert configured_store.get_queue_item(session_id) is None


@pytest.mark.asyncio
async def test_trigger_is_noop_without_auto_sync(configured_store: LocalStore) -> None:
    _queue(configured_store)
    configured_store.update_settings({"auto_sync": False})
    session = DummySession()
    scheduler = BackgroundSyncScheduler(SyncEngine(configured_store, session=session))

    assert await scheduler.async_handle_online() is None
    assert session.posts == []
    assert configured_store.count_pending() == 1


@pytest.mark.asyncio
async def test_trigger_is_noop_without_token(configured_store: LocalStore) -> None:
    _queue(configured_store)
    configured_store.update_settings({"sync_token": ""})
    session = DummySession()
    scheduler = BackgroundSyncScheduler(SyncEngine(configured_store, session=session))

    assert await scheduler.async_handle_visible() is None
    assert session.posts == []


@pytest.mark.asyncio
async def test_trigger_is_noop_offline_or_empty(configured_store: LocalStore) -> None:
    session = DummySession()
    monitor = ConnectivityMonitor(online=False)
    scheduler = BackgroundSyncScheduler(SyncEngine(configured_store, session=session, connectivity=monitor))

    _queue(configured_store)
    assert await scheduler.async_trigger("timer") is None

    monitor.set_online(True)
    first = await scheduler.async_trigger("timer")
    assert first is not None
    assert first.synced == 1
    assert await scheduler.async_trigger("timer") is None
    assert len(session.posts) == 1


@pytest.mark.asyncio
async def test_trigger_while_syncing_is_dropped(configured_store: LocalStore) -> None:
    _queue(configured_store)
    session = DummySession()
    engine = SyncEngine(configured_store, session=session)
    scheduler = BackgroundSyncScheduler(engine)
    engine.syncing = True

    assert await scheduler.async_trigger("visible") is None
    assert session.posts == []


@pytest.mark.asyncio
async def test_online_transition_starts_batch(configured_store: LocalStore) -> None:
    session_id = _queue(configured_store)
    session = DummySession()
    monitor = ConnectivityMonitor(online=False)
    engine = SyncEngine(configured_store, session=session, connectivity=monitor)
    scheduler = BackgroundSyncScheduler(engine, interval=3600)
    await scheduler.async_start()
    try:
        assert engine.status()["background_running"] is True
        monitor.set_online(True)
        await _wait_for(lambda: bool(session.posts))
        await scheduler.async_wait_idle()
    finally:
        await scheduler.async_stop()

    assert configured_store.get_queue_item(session_id) is None


@pytest.mark.asyncio
async def test_visible_signal_starts_batch(configured_store: LocalStore) -> None:
    _queue(configured_store)
    session = DummySession()
    engine = SyncEngine(configured_store, session=session)
    scheduler = BackgroundSyncScheduler(engine, interval=3600)
    await scheduler.async_start()
    try:
        engine.connectivity.notify_visible()
        await _wait_for(lambda: bool(session.posts))
        await scheduler.async_wait_idle()
    finally:
        await scheduler.async_stop()

    assert configured_store.count_pending() == 0


@pytest.mark.asyncio
async def test_timer_starts_batch(configured_store: LocalStore) -> None:
    _queue(configured_store)
    session = DummySession()
    scheduler = BackgroundSyncScheduler(SyncEngine(configured_store, session=session), interval=0.01)
    await scheduler.async_start()
    try:
        await _wait_for(lambda: configured_store.count_pending() == 0)
    finally:
        await scheduler.async_stop()
        await scheduler.async_wait_idle()

    assert len(session.posts) == 1


@pytest.mark.asyncio
async def test_start_is_idempotent(configured_store: LocalStore) -> None:
    engine = SyncEngine(configured_store, session=DummySession())
    scheduler = BackgroundSyncScheduler(engine, interval=3600)

    await scheduler.async_start()
    await scheduler.async_start()

    assert scheduler.running
    assert engine.connectivity.listener_count == 1
    await scheduler.async_stop()


@pytest.mark.asyncio
async def test_stop_detaches_but_lets_batch_finish(configured_store: LocalStore) -> None:
    session_id = _queue(configured_store)
    gate = asyncio.Event()
    session = DummySession([DummyResponse(201, {"ok": True, "id": "a", "rev": "1-a"}, gate=gate)])
    engine = SyncEngine(configured_store, session=session)
    scheduler = BackgroundSyncScheduler(engine, interval=3600)
    await scheduler.async_start()
    engine.connectivity.notify_visible()
    await _wait_for(lambda: engine.syncing)

    await scheduler.async_stop()

    assert not scheduler.running
    assert engine.connectivity.listener_count == 0
    assert engine.status()["background_running"] is False
    assert engine.syncing is True
    gate.set()
    await scheduler.async_wait_idle()
    assert engine.syncing is False
    assert configured_store.get_queue_item(session_id) is None
    assert configured_store.get_session(session_id).synced_at is not None


@pytest.mark.asyncio
async def test_signal_from_worker_thread_starts_batch(configured_store: LocalStore) -> None:
    _queue(configured_store)
    session = DummySession()
    engine = SyncEngine(configured_store, session=session, connectivity=ConnectivityMonitor(online=False))
    scheduler = BackgroundSyncScheduler(engine, interval=3600)
    await scheduler.async_start()
    try:
        assert await asyncio.to_thread(engine.connectivity.set_online, True) is True
        await _wait_for(lambda: bool(session.posts))
        await scheduler.async_wait_idle()
    finally:
        await scheduler.async_stop()

    assert configured_store.count_pending() == 0


def test_signal_before_start_is_ignored(configured_store: LocalStore) -> None:
    _queue(configured_store)
    session = DummySession()
    engine = SyncEngine(configured_store, session=session)
    scheduler = BackgroundSyncScheduler(engine)

    scheduler._handle_signal("visible")

    assert session.posts == []
