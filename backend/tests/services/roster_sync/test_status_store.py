"""
Tests for sync status tracking and persistence.
"""

import pytest
from datetime import datetime, timedelta

from memberhub.core.circuit_breaker import CircuitBreaker
from memberhub.models.sync_run import RosterSyncStatus
from memberhub.services.roster_sync.status_store import SyncStatusStore
from memberhub.services.roster_sync.types import SyncMode, SyncRun


STARTED = datetime(2024, 3, 1, 10, 0, 0)


def make_run(run_id: str, mode=SyncMode.FULL, is_fallback=False, success=True, **counts) -> SyncRun:
    return SyncRun(
        id=run_id,
        started_at=STARTED,
        finished_at=STARTED + timedelta(seconds=3),
        mode=mode,
        is_fallback=is_fallback,
        success=success,
        **counts
    )


@pytest.fixture
def status_store(session_factory):
    return SyncStatusStore(session_factory, CircuitBreaker(name="roster"), history_size=3)


class TestSyncStatusStore:
    """Test counters, history and persistence."""

    async def test_initial_status(self, status_store):
        status = status_store.get_status()

        assert status['is_running'] is False
        assert status['last_sync_time'] is None
        assert status['last_run'] is None
        assert status['stats']['total_syncs'] == 0
        assert status['circuit_breaker']['state'] == "CLOSED"
        assert status['recent_errors'] == []

    async def test_counts_by_outcome(self, status_store):
        await status_store.record(make_run("sync_1", created=2))
        await status_store.record(make_run("sync_2", mode=SyncMode.DATABASE_ONLY, cleaned=1))
        await status_store.record(
            make_run("sync_3", mode=SyncMode.DATABASE_ONLY, is_fallback=True, errors=("Full sync failed: x",)),
            error="x"
        )

        stats = status_store.get_status()['stats']
        assert stats == {
            'total_syncs': 3,
            'successful_syncs': 1,
            'failed_syncs': 1,
            'database_only_syncs': 1,
            'last_error': "x",
        }

    async def test_last_sync_time_only_on_success(self, status_store):
        await status_store.record(make_run("sync_1"))
        await status_store.record(make_run("sync_2", success=False), error="boom")

        status = status_store.get_status()
        assert status['last_sync_time'] == STARTED + timedelta(seconds=3)
        assert status['last_run']['id'] == "sync_2"

    async def test_history_is_bounded(self, status_store):
        for i in range(5):
            await status_store.record(make_run(f"sync_{i}"))

        assert status_store.last_run.id == "sync_4"
        assert len(status_store._history) == 3

    async def test_runs_are_persisted(self, status_store, session_factory):
        await status_store.record(make_run("sync_1", created=1, errors=("Row 2: bad",)))
        await status_store.record(make_run("sync_2", success=False), error="boom")

        records = await status_store.recent_runs(limit=10)
        assert {r.run_id for r in records} == {"sync_1", "sync_2"}
        first = next(r for r in records if r.run_id == "sync_1")
        assert first.created == 1
        assert first.errors == ["Row 2: bad"]

        async with session_factory() as session:
            status = await session.get(RosterSyncStatus, 1)
        assert status.sync_count == 2
        assert status.last_sync_success is False
        assert status.last_error == "boom"

    async def test_restore_seeds_last_sync(self, status_store, session_factory):
        await status_store.record(make_run("sync_1"))

        restored = SyncStatusStore(session_factory, CircuitBreaker(name="roster"))
        await restored.restore()

        assert restored.get_status()['last_sync_time'] == STARTED + timedelta(seconds=3)

    async def test_running_flag(self, status_store):
        status_store.set_running(True)
        assert status_store.get_status()['is_running'] is True

        status_store.set_running(False)
        assert status_store.get_status()['is_running'] is False
