"""
Tests for sync run orchestration.
"""

import asyncio
import pytest
from datetime import datetime
from unittest.mock import AsyncMock, Mock

from memberhub.core.circuit_breaker import CircuitBreaker, CircuitState
from memberhub.core.exceptions import (
    LocalStoreUnavailableError, SyncAlreadyRunningError
)
from memberhub.core.retry import RetryConfig, RetryExecutor
from memberhub.integrations.roster.error_handler import RosterErrorHandler, RosterNetworkError
from memberhub.models.member import Member, MemberStatus, Provenance
from memberhub.services.roster_sync.health_probe import HealthProbeResult
from memberhub.services.roster_sync.orchestrator import SyncOrchestrator
from memberhub.services.roster_sync.status_store import SyncStatusStore
from memberhub.services.roster_sync.types import SyncMode, SyncOptions

from support import ROSTER_HEADER, add_members, load_members


VALID_ROW = ["Ayse Yilmaz", "12345678901", "R-1", "5551234", "Physics", "IBAN", "01.02.2024"]


@pytest.fixture
def breaker():
    return CircuitBreaker(failure_threshold=5, reset_timeout=60.0, name="roster")


@pytest.fixture
def error_handler():
    return RosterErrorHandler()


@pytest.fixture
def status_store(session_factory, breaker, error_handler):
    return SyncStatusStore(session_factory, breaker, error_handler=error_handler)


@pytest.fixture
def orchestrator(session_factory, roster, breaker, status_store, error_handler, recording_sleep):
    """Create an orchestrator over the in-memory database and fake roster."""
    return SyncOrchestrator(
        session_factory=session_factory,
        roster_client=roster,
        circuit_breaker=breaker,
        retry_executor=RetryExecutor(RetryConfig(max_attempts=3), sleep=recording_sleep),
        status_store=status_store,
        error_handler=error_handler,
    )


def approved(name: str, **fields) -> Member:
    fields.setdefault('status', MemberStatus.APPROVED)
    fields.setdefault('provenance', Provenance.WEBSITE)
    fields.setdefault('created_at', datetime(2024, 2, 10))
    return Member(full_name=name, **fields)


class TestFullSync:
    """Test runs with a reachable roster."""

    async def test_imports_new_roster_row(self, orchestrator, roster, session_factory):
        roster.rows.append(list(VALID_ROW))

        run = await orchestrator.run(SyncOptions())

        assert run.mode == SyncMode.FULL
        assert run.is_fallback is False
        assert run.success is True
        assert run.created == 1
        assert run.updated == 0
        assert run.errors == ()

        [member] = await load_members(session_factory)
        assert member.national_id == "12345678901"
        assert member.status == MemberStatus.APPROVED
        assert member.provenance == Provenance.IMPORT
        assert member.synced_to_external is True

    async def test_second_run_is_idempotent(self, orchestrator, roster):
        roster.rows.append(list(VALID_ROW))

        first = await orchestrator.run(SyncOptions(push_pending_to_external=True))
        second = await orchestrator.run(SyncOptions(push_pending_to_external=True))

        assert first.created == 1
        assert second.created == 0
        assert second.updated == 0
        assert second.unchanged == 1
        assert second.pushed == 0
        assert roster.appended == []

    async def test_changed_row_updates_member(self, orchestrator, roster, session_factory):
        await add_members(session_factory, approved("Old Name", national_id="12345678901"))
        roster.rows.append(list(VALID_ROW))

        run = await orchestrator.run()

        assert run.created == 0
        assert run.updated == 1
        [member] = await load_members(session_factory)
        assert member.full_name == "Ayse Yilmaz"
        assert member.department == "Physics"

    async def test_row_joining_two_members_keeps_both(self, orchestrator, roster, session_factory):
        first_id, second_id = await add_members(
            session_factory,
            approved("Ayse", national_id="12345678901", created_at=datetime(2024, 1, 1)),
            approved("Mehmet", registration_number="R-9", provenance=Provenance.MANUAL,
                     created_at=datetime(2024, 1, 2)),
        )
        roster.rows.append(["Ayse", "12345678901", "R-9", "", "", "IBAN", ""])

        run = await orchestrator.run(SyncOptions(push_pending_to_external=False))
        await orchestrator.run(SyncOptions(push_pending_to_external=False))

        assert run.updated == 0
        assert run.errors == (f"Row 2: Ayse: registration_number=R-9 already belongs to member {second_id}",)

        members = {m.id: m for m in await load_members(session_factory)}
        assert set(members) == {first_id, second_id}
        assert [m.registration_number for m in members.values()].count("R-9") == 1
        assert members[second_id].provenance == Provenance.MANUAL

    async def test_bad_rows_do_not_abort_run(self, orchestrator, roster):
        roster.rows.extend([
            ["Nameless", "", "", "555"],
            ["", "", ""],
            list(VALID_ROW),
            ["Bad Id", "123", "", ""],
        ])

        run = await orchestrator.run()

        assert run.success is True
        assert run.created == 1
        assert run.errors == (
            "Row 2: Nameless: No unique identifier provided",
            "Row 5: Bad Id: Invalid national ID '123'",
        )

    async def test_pushes_approved_members_once(self, orchestrator, roster, session_factory):
        await add_members(
            session_factory,
            approved("Local Member", registration_number="R-7", department="Chemistry"),
            approved("Pending Member", registration_number="R-8", status=MemberStatus.PENDING),
        )

        first = await orchestrator.run()
        second = await orchestrator.run()

        assert first.pushed == 1
        assert roster.appended == [
            ["Local Member", "", "R-7", "", "Chemistry", "IBAN", "10.02.2024"]
        ]
        assert second.pushed == 0
        assert second.created == 0
        assert second.updated == 0
        assert second.unchanged == 1

        members = {m.full_name: m for m in await load_members(session_factory)}
        assert members["Local Member"].synced_to_external is True
        assert members["Pending Member"].synced_to_external is False

    async def test_push_can_be_disabled(self, orchestrator, roster, session_factory):
        await add_members(session_factory, approved("Local Member", registration_number="R-7"))

        run = await orchestrator.run(SyncOptions(push_pending_to_external=False))

        assert run.pushed == 0
        assert roster.appended == []

    async def test_push_failure_is_recorded_per_member(self, orchestrator, roster, session_factory):
        await add_members(session_factory, approved("Local Member", registration_number="R-7"))
        roster.append_error = ConnectionError("append rejected")

        run = await orchestrator.run()

        assert run.mode == SyncMode.FULL
        assert run.pushed == 0
        assert len(run.errors) == 1
        assert "append rejected" in run.errors[0]

    async def test_records_circuit_snapshot(self, orchestrator):
        run = await orchestrator.run()

        assert run.circuit_breaker['state'] == "CLOSED"
        assert run.circuit_breaker['name'] == "roster"


class TestDatabaseOnly:
    """Test runs without a usable roster."""

    async def _seed_repairs(self, session_factory):
        await add_members(
            session_factory,
            approved("first", registration_number="R-1", created_at=datetime(2024, 1, 1)),
            approved("dup", registration_number="R-1", created_at=datetime(2024, 1, 2)),
        )

    async def test_mock_mode_runs_database_only(self, orchestrator, roster, session_factory):
        roster.mock_mode = True
        await self._seed_repairs(session_factory)

        run = await orchestrator.run()

        assert run.mode == SyncMode.DATABASE_ONLY
        assert run.is_fallback is False
        assert run.success is True
        assert run.cleaned == 1
        assert roster.read_calls == 0

    async def test_unreachable_roster_runs_database_only(self, orchestrator, roster, status_store):
        roster.init_error = RosterNetworkError("connection refused")

        run = await orchestrator.run()

        assert run.mode == SyncMode.DATABASE_ONLY
        assert run.is_fallback is False
        assert status_store.get_status()['stats']['database_only_syncs'] == 1

    async def test_read_failure_falls_back(
        self, orchestrator, roster, breaker, status_store, recording_sleep, session_factory
    ):
        roster.read_error = RosterNetworkError("connection reset")
        await self._seed_repairs(session_factory)

        run = await orchestrator.run()

        assert run.mode == SyncMode.DATABASE_ONLY
        assert run.is_fallback is True
        assert run.success is True
        assert run.cleaned == 1
        assert run.errors[0] == "Full sync failed: connection reset"
        assert roster.read_calls == 3
        assert recording_sleep.delays == [1.0, 2.0]
        assert breaker.snapshot().consecutive_failures == 1

        stats = status_store.get_status()['stats']
        assert stats['failed_syncs'] == 1
        assert stats['last_error'] == "connection reset"

    async def test_circuit_opens_after_repeated_failures(self, orchestrator, roster, breaker):
        roster.read_error = RosterNetworkError("connection reset")

        for _ in range(5):
            await orchestrator.run()
        assert breaker.state == CircuitState.OPEN
        assert roster.read_calls == 15

        run = await orchestrator.run()

        assert roster.read_calls == 15
        assert run.is_fallback is True
        assert run.errors[0].startswith("Full sync failed: Circuit breaker is OPEN for roster")
        assert run.circuit_breaker['state'] == "OPEN"

    async def test_fallback_failure_reraises_original(self, orchestrator, roster, status_store, monkeypatch):
        roster.read_error = RosterNetworkError("connection reset")
        monkeypatch.setattr(
            "memberhub.services.roster_sync.orchestrator.IntegrityMaintainer.run_all",
            AsyncMock(side_effect=RuntimeError("disk full"))
        )

        with pytest.raises(RosterNetworkError):
            await orchestrator.run()

        last = status_store.last_run
        assert last.success is False
        assert last.is_fallback is True
        assert "Fallback failed: disk full" in last.errors
        assert orchestrator.is_running is False

    async def test_deadline_counts_as_external_failure(self, orchestrator, roster, breaker):
        async def hanging_read(range_=None):
            await asyncio.sleep(5)

        roster.read = hanging_read

        run = await orchestrator.run(SyncOptions(timeout_seconds=0.05))

        assert run.is_fallback is True
        assert "exceeded deadline" in run.errors[0]
        assert breaker.snapshot().consecutive_failures == 1


class TestRunGuard:
    """Test mutual exclusion and local store failures."""

    async def test_concurrent_run_rejected(self, orchestrator, roster, status_store):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_read(range_=None):
            started.set()
            await release.wait()
            return [list(ROSTER_HEADER)]

        roster.read = slow_read

        task = asyncio.create_task(orchestrator.run())
        await started.wait()

        assert orchestrator.is_running
        assert status_store.get_status()['is_running'] is True
        with pytest.raises(SyncAlreadyRunningError):
            await orchestrator.run()

        release.set()
        run = await task

        assert run.mode == SyncMode.FULL
        assert orchestrator.is_running is False
        assert status_store.get_status()['is_running'] is False

    async def test_local_store_unavailable_fails_run(self, orchestrator, roster, status_store):
        orchestrator.health_probe = Mock()
        orchestrator.health_probe.probe = AsyncMock(return_value=HealthProbeResult(
            local_available=False,
            external_available=True,
            error="Database unavailable: locked"
        ))

        with pytest.raises(LocalStoreUnavailableError):
            await orchestrator.run()

        assert roster.read_calls == 0
        assert status_store.last_run.success is False
        assert status_store.get_status()['stats']['failed_syncs'] == 1
        assert orchestrator.is_running is False
