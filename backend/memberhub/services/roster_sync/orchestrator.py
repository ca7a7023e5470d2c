"""
Top-level controller of a roster sync run.

A run probes connectivity, then either performs a full sync (pull roster rows
into the member table, push approved members back) behind the circuit breaker
and retry executor, or falls back to local integrity maintenance. Only one
run is active per orchestrator at a time.
"""

import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from memberhub.core.circuit_breaker import CircuitBreaker
from memberhub.core.exceptions import (
    LocalStoreUnavailableError, SyncAlreadyRunningError, SyncTimeoutError
)
from memberhub.core.retry import RetryExecutor
from memberhub.integrations.roster.client import BaseRosterClient
from memberhub.integrations.roster.error_handler import RosterErrorHandler
from memberhub.models.member import MemberStatus
from memberhub.services.member_store import MemberStore
from memberhub.services.roster_sync.health_probe import ConnectionHealthProbe, HealthProbeResult
from memberhub.services.roster_sync.integrity import IntegrityMaintainer
from memberhub.services.roster_sync.reconciler import (
    RecordReconciler, ReconcileAction, RosterKeyIndex, parse_row
)
from memberhub.services.roster_sync.status_store import SyncStatusStore
from memberhub.services.roster_sync.types import (
    SyncMode, SyncOptions, SyncRun, SyncRunAccumulator
)


logger = logging.getLogger(__name__)


class SyncOrchestrator:

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        roster_client: BaseRosterClient,
        circuit_breaker: CircuitBreaker,
        retry_executor: RetryExecutor,
        status_store: SyncStatusStore,
        health_probe: Optional[ConnectionHealthProbe] = None,
        error_handler: Optional[RosterErrorHandler] = None,
        payment_marker: str = "IBAN"
    ):
        self.session_factory = session_factory
        self.roster_client = roster_client
        self.circuit_breaker = circuit_breaker
        self.retry_executor = retry_executor
        self.status_store = status_store
        self.health_probe = health_probe or ConnectionHealthProbe(session_factory, roster_client)
        self.error_handler = error_handler or RosterErrorHandler()
        self.payment_marker = payment_marker
        self._run_lock = asyncio.Lock()
        self.last_health: Optional[HealthProbeResult] = None

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    async def run(self, options: Optional[SyncOptions] = None) -> SyncRun:
        """
        Execute one sync run.

        Raises:
            SyncAlreadyRunningError: Another run is active
            LocalStoreUnavailableError: The member database is unreachable
            Exception: The full-sync error, when the fallback also failed
        """
        options = options or SyncOptions()

        if self._run_lock.locked():
            raise SyncAlreadyRunningError()

        async with self._run_lock:
            self.status_store.set_running(True)
            try:
                return await self._execute(options)
            finally:
                self.status_store.set_running(False)

    async def _execute(self, options: SyncOptions) -> SyncRun:
        acc = SyncRunAccumulator.start()
        logger.info(f"Starting sync operation: {acc.id}")

        health = await self.health_probe.probe()
        self.last_health = health

        if not health.local_available:
            message = health.error or "Database connection unavailable"
            acc.mode = SyncMode.DATABASE_ONLY
            acc.success = False
            acc.errors.append(message)
            await self._finish(acc, error=message)
            raise LocalStoreUnavailableError(message)

        if not health.external_available:
            logger.warning(f"{acc.id}: Roster unavailable - performing database-only operations")
            acc.mode = SyncMode.DATABASE_ONLY
            try:
                await self._database_only(acc)
            except Exception as e:
                acc.success = False
                acc.errors.append(str(e))
                await self._finish(acc, error=str(e))
                raise
            return await self._finish(acc)

        try:
            full = await self.circuit_breaker.call(self._full_sync_with_retry, options, acc.id)
        except Exception as e:
            error = str(e)
            logger.error(f"Sync failed: {acc.id}: {error}")
            self.error_handler.log_error(e, {'run_id': acc.id})

            acc.mode = SyncMode.DATABASE_ONLY
            acc.is_fallback = True
            acc.errors.append(f"Full sync failed: {error}")

            try:
                logger.info(f"{acc.id}: Attempting fallback database-only sync")
                await self._database_only(acc)
            except Exception as fallback_error:
                logger.error(f"{acc.id}: Fallback sync also failed: {fallback_error}")
                acc.success = False
                acc.errors.append(f"Fallback failed: {fallback_error}")
                await self._finish(acc, error=error)
                raise e

            return await self._finish(acc, error=error)

        acc.merge_full_sync(full)
        logger.info(
            f"Sync completed successfully: {acc.id} "
            f"(created={acc.created}, updated={acc.updated}, pushed={acc.pushed}, "
            f"errors={len(acc.errors)})"
        )
        return await self._finish(acc)

    async def _finish(self, acc: SyncRunAccumulator, error: Optional[str] = None) -> SyncRun:
        run = acc.freeze(self.circuit_breaker.snapshot().to_dict())
        await self.status_store.record(run, error=error)
        return run

    async def _full_sync_with_retry(self, options: SyncOptions, run_id: str) -> SyncRunAccumulator:
        attempts = self.retry_executor.execute(
            lambda: self._full_sync(options, run_id),
            "Full Sync Operation"
        )
        if not options.timeout_seconds:
            return await attempts

        try:
            return await asyncio.wait_for(attempts, timeout=options.timeout_seconds)
        except asyncio.TimeoutError:
            raise SyncTimeoutError(options.timeout_seconds)

    async def _full_sync(self, options: SyncOptions, run_id: str) -> SyncRunAccumulator:
        """One full-sync attempt. Only a failed roster read aborts the attempt."""
        result = SyncRunAccumulator.start()

        logger.info(f"{run_id}: Syncing from roster to database")
        rows = await self.roster_client.read()
        data_rows = self.roster_client.data_rows(rows)

        roster_index = RosterKeyIndex()
        for row in data_rows:
            roster_index.add(parse_row(row))

        async with self.session_factory() as db:
            store = MemberStore(db)
            reconciler = RecordReconciler(store, self.roster_client, payment_marker=self.payment_marker)

            first_row_number = self.roster_client.header_rows + 1
            for row_number, row in enumerate(data_rows, start=first_row_number):
                if not any(str(cell).strip() for cell in row):
                    continue
                await self._pull_row(reconciler, store, row, row_number, result)

            if options.push_pending_to_external:
                logger.info(f"{run_id}: Syncing approved members to roster")
                await self._push_pending(reconciler, store, roster_index, result)

        return result

    async def _pull_row(
        self,
        reconciler: RecordReconciler,
        store: MemberStore,
        row: list,
        row_number: int,
        result: SyncRunAccumulator
    ) -> None:
        try:
            decision = await reconciler.reconcile_external_row(row)

            if decision.action == ReconcileAction.SKIP:
                if decision.error:
                    result.errors.append(f"Row {row_number}: {decision.error}")
                else:
                    result.unchanged += 1
                return

            await reconciler.apply(decision)
            if decision.action == ReconcileAction.CREATE:
                result.created += 1
            else:
                result.updated += 1

        except Exception as e:
            await store.rollback()
            name = row[0] if row else "<empty>"
            logger.error(f"Failed to sync roster row {row_number} ({name}): {e}")
            result.errors.append(f"Row {row_number} ({name}): {e}")

    async def _push_pending(
        self,
        reconciler: RecordReconciler,
        store: MemberStore,
        roster_index: RosterKeyIndex,
        result: SyncRunAccumulator
    ) -> None:
        try:
            pending_ids = [m.id for m in await store.find_pending_push()]
        except Exception as e:
            logger.error(f"Failed to load members pending push: {e}")
            result.errors.append(f"Pending members: {e}")
            return

        for member_id in pending_ids:
            try:
                member = await store.get(member_id)
                if member is None or member.synced_to_external or member.status != MemberStatus.APPROVED:
                    continue
                if await reconciler.push_local_to_external(member, roster_index):
                    result.pushed += 1
            except Exception as e:
                await store.rollback()
                logger.error(f"Failed to push member {member_id} to roster: {e}")
                result.errors.append(f"Member {member_id}: {e}")

    async def _database_only(self, acc: SyncRunAccumulator) -> None:
        async with self.session_factory() as db:
            report = await IntegrityMaintainer(MemberStore(db)).run_all()

        acc.cleaned = report.cleaned
        acc.validated = report.fixed
        acc.errors.extend(report.errors)
        logger.info(f"{acc.id}: Database-only sync completed")
