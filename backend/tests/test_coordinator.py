import asyncio
from datetime import datetime

import pytest

from fieldsync.core.errors import (
    AuthExpired,
    NotAuthenticated,
    RemoteServerError,
    RemoteUnavailable,
    UnexpectedRemoteResponse,
)
from fieldsync.models import Mission, QueueStatus
from fieldsync.services.capture import CaptureService
from fieldsync.services.connectivity import ConnectivityMode
from fieldsync.services.coordinator import build_sync_core
from fieldsync.services.offline_auth import AuthMode
from fieldsync.services.remote_client import Rejected, RemoteSession

from conftest import FakeRemote, add_collection

DEBOUNCE = 0.01


def _core(engine, remote, mode=ConnectivityMode.OFFLINE):
    return build_sync_core(bind=engine, remote=remote, initial_mode=mode, debounce_seconds=DEBOUNCE)


def _login(core, remote, token="tok"):
    core.auth.save_session(RemoteSession(user=dict(remote.user), token=token))


class BlockingRemote(FakeRemote):
    """Holds every mutation until released, to observe a drain in flight."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def apply_mutation(self, mutation, token=None):
        self.entered.set()
        await self.release.wait()
        return await super().apply_mutation(mutation, token)


@pytest.mark.asyncio
async def test_going_online_refreshes_session_then_drains(engine, remote):
    core = _core(engine, remote)
    _login(core, remote)
    core.auth.set_offline_mode(True)
    add_collection(core.store, "c1")

    core.monitor.report(True)
    await core.monitor.wait_settled()

    assert remote.validate_calls == 1
    assert remote.called_ids() == ["c1"]
    assert remote.tokens == ["tok"]
    assert core.last_result.completed == 1
    assert core.auth.is_offline_mode is False
    core.close()


@pytest.mark.asyncio
async def test_going_offline_sets_flag_and_keeps_queue(engine, remote):
    core = _core(engine, remote, mode=ConnectivityMode.ONLINE)
    _login(core, remote)
    add_collection(core.store, "c1")

    core.monitor.report(False)
    await core.monitor.wait_settled()

    assert core.auth.is_offline_mode is True
    assert remote.calls == []
    assert core.store.queue_stats()["pending"] == 1
    core.close()


@pytest.mark.asyncio
async def test_rejected_session_blocks_drains_until_login(engine, remote):
    core = _core(engine, remote)
    _login(core, remote)
    add_collection(core.store, "c1")
    prompts = []
    core.on_auth_expired(lambda: prompts.append("login"))
    remote.session_error = AuthExpired("revoked")

    core.monitor.report(True)
    await core.monitor.wait_settled()

    assert prompts == ["login"]
    assert core.auth_expired is True
    assert remote.calls == []
    with pytest.raises(AuthExpired):
        await core.drain()

    remote.session_error = None
    await core.login("agent", "secret")

    assert core.auth_expired is False
    assert remote.called_ids() == ["c1"]
    assert remote.tokens == ["token-agent"]
    core.close()


@pytest.mark.asyncio
async def test_unreachable_refresh_postpones_drain(engine, remote):
    core = _core(engine, remote)
    _login(core, remote)
    add_collection(core.store, "c1")
    remote.session_error = RemoteUnavailable("timed out")

    core.monitor.report(True)
    await core.monitor.wait_settled()

    assert core.auth_expired is False
    assert remote.calls == []
    assert core.auth.get_cached_session() is not None
    core.close()


@pytest.mark.asyncio
async def test_auth_expiry_during_drain_clears_session(engine, remote):
    core = _core(engine, remote, mode=ConnectivityMode.ONLINE)
    _login(core, remote)
    add_collection(core.store, "c1")
    remote.script["c1"] = [AuthExpired("token revoked")]

    with pytest.raises(AuthExpired):
        await core.drain()

    assert core.auth_expired is True
    assert core.auth.get_cached_session() is None
    assert core.store.queue_stats()["pending"] == 1
    core.close()


@pytest.mark.asyncio
async def test_only_one_drain_at_a_time(engine):
    remote = BlockingRemote()
    core = _core(engine, remote, mode=ConnectivityMode.ONLINE)
    _login(core, remote)
    add_collection(core.store, "c1")

    first = asyncio.create_task(core.drain())
    await remote.entered.wait()

    assert core.draining is True
    assert await core.drain() is None

    remote.release.set()
    result = await first
    assert result.completed == 1
    assert core.draining is False
    assert remote.called_ids() == ["c1"]
    core.close()


@pytest.mark.asyncio
async def test_drain_requires_session(engine, remote):
    core = _core(engine, remote, mode=ConnectivityMode.ONLINE)
    add_collection(core.store, "c1")

    mode = await core.start()

    assert mode is AuthMode.UNAUTHENTICATED
    assert remote.calls == []
    with pytest.raises(NotAuthenticated):
        await core.drain()
    core.close()


@pytest.mark.asyncio
async def test_drain_skipped_while_offline(engine, remote):
    core = _core(engine, remote)
    _login(core, remote)
    add_collection(core.store, "c1")

    assert await core.drain() is None
    assert remote.calls == []
    core.close()


@pytest.mark.asyncio
async def test_start_checks_connectivity_and_drains(engine, remote):
    core = _core(engine, remote)
    _login(core, remote)
    add_collection(core.store, "c1")

    mode = await core.start(check_reachable=remote.ping)

    assert mode is AuthMode.ONLINE_PENDING
    assert core.monitor.is_online
    assert remote.called_ids() == ["c1"]
    core.close()


@pytest.mark.asyncio
async def test_offline_start_with_cached_session(engine, remote):
    core = _core(engine, remote, mode=ConnectivityMode.ONLINE)
    _login(core, remote)

    async def unreachable():
        return False

    mode = await core.start(check_reachable=unreachable)

    assert mode is AuthMode.OFFLINE_AUTHENTICATED
    assert core.status()["authenticated"] is True
    assert core.status()["offline_mode"] is True
    core.close()


@pytest.mark.asyncio
async def test_manual_retry_drains_when_online(engine, remote):
    core = _core(engine, remote, mode=ConnectivityMode.ONLINE)
    _login(core, remote)
    item = add_collection(core.store, "c1")
    remote.script["c1"] = [Rejected("missing owner")]
    await core.drain()
    assert core.store.get_queue_item(item.id).status == QueueStatus.FAILED

    retried = await core.retry_failed_item(item.id)

    assert retried.status == QueueStatus.COMPLETED
    assert remote.called_ids() == ["c1", "c1"]
    core.close()


@pytest.mark.asyncio
async def test_status_reports_queue_and_last_drain(engine, remote):
    core = _core(engine, remote, mode=ConnectivityMode.ONLINE)
    _login(core, remote)
    add_collection(core.store, "c1")
    await core.drain()

    status = core.status()

    assert status["mode"] == "online"
    assert status["queue"]["completed"] == 1
    assert status["last_drain"]["completed"] == 1
    assert status["draining"] is False
    core.close()


@pytest.mark.asyncio
async def test_going_online_pulls_missions_and_forms(engine, remote):
    core = _core(engine, remote)
    _login(core, remote)
    remote.missions = [
        {"id": "m1", "assigned_to": "agent-1", "priority": "high", "status": "new",
         "deadline": "2026-03-10T17:00:00Z", "address": "Rua Augusta 100"},
        {"status": "new"},
    ]
    remote.forms = [{"id": "f1", "version": 3, "title": "Residential", "schema_json": {"fields": ["area_m2"]}}]

    core.monitor.report(True)
    await core.monitor.wait_settled()

    missions = core.store.list_missions()
    assert [m.id for m in missions] == ["m1"]
    assert missions[0].deadline == datetime(2026, 3, 10, 17, 0, 0)
    assert missions[0].sync_status == "synced"
    forms = core.store.list_forms()
    assert [(f.id, f.version) for f in forms] == [("f1", "3")]
    core.close()


@pytest.mark.asyncio
async def test_pull_keeps_unsynced_mission_edit(engine, remote):
    core = _core(engine, remote, mode=ConnectivityMode.ONLINE)
    _login(core, remote)
    core.store.cache_missions([Mission(id="m1", assigned_to="agent-1", status="new")])
    CaptureService(core.store).update_mission_status("m1", "completed")
    remote.script["m1"] = [RemoteServerError(503, "maintenance")]
    remote.missions = [{"id": "m1", "assigned_to": "agent-1", "status": "new"}]

    await core.drain()
    counts = await core.refresh_reference_data()

    assert counts == {"mission": 0, "form": 0}
    mission = core.store.get("mission", "m1")
    assert mission.status == "completed"
    assert mission.sync_status == "pending"
    core.close()


@pytest.mark.asyncio
async def test_failed_pull_keeps_cached_copy(engine, remote):
    core = _core(engine, remote, mode=ConnectivityMode.ONLINE)
    _login(core, remote)
    core.store.cache_missions([Mission(id="m1", status="new")])
    remote.reference_error = RemoteUnavailable("timed out")

    assert await core.refresh_reference_data() is None
    assert [m.id for m in core.store.list_missions()] == ["m1"]
    assert core.auth_expired is False
    core.close()


@pytest.mark.asyncio
async def test_pull_with_revoked_token_prompts_login(engine, remote):
    core = _core(engine, remote, mode=ConnectivityMode.ONLINE)
    _login(core, remote)
    prompts = []
    core.on_auth_expired(lambda: prompts.append("login"))
    remote.reference_error = AuthExpired("revoked")

    assert await core.refresh_reference_data() is None
    assert prompts == ["login"]
    assert core.auth.get_cached_session() is None
    core.close()


@pytest.mark.asyncio
async def test_unexpected_refresh_status_postpones_drain(engine, remote):
    """A 404 from the session endpoint must not escape the startup path."""
    core = _core(engine, remote)
    _login(core, remote)
    add_collection(core.store, "c1")
    remote.session_error = UnexpectedRemoteResponse(404, "not found")

    mode = await core.start(check_reachable=remote.ping)

    assert mode is AuthMode.ONLINE_PENDING
    assert remote.calls == []
    assert core.auth.get_cached_session() is not None
    assert core.auth_expired is False
    core.close()
