"""
Last-run metadata and rolling counters for roster sync observability.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from prometheus_client import Counter, Gauge
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from memberhub.core.circuit_breaker import CircuitBreaker, CircuitState
from memberhub.integrations.roster.error_handler import RosterErrorHandler
from memberhub.models.sync_run import SyncRunRecord, RosterSyncStatus
from memberhub.services.roster_sync.types import SyncMode, SyncRun


logger = logging.getLogger(__name__)

SYNC_RUNS = Counter(
    "memberhub_roster_sync_runs_total",
    "Roster sync runs by mode and outcome",
    ["mode", "outcome"],
)
SYNC_RUNNING = Gauge("memberhub_roster_sync_running", "1 while a roster sync run is active")
CIRCUIT_STATE = Gauge(
    "memberhub_roster_circuit_state",
    "Roster circuit breaker state (0=closed, 1=half_open, 2=open)",
)

_CIRCUIT_STATE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}

STATUS_ROW_ID = 1


class SyncStatusStore:
    """
    Records finished runs and serves the status snapshot.

    Reads take a thread lock and return copies, so status endpoints may call
    ``get_status`` while a run is updating the store.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        circuit_breaker: CircuitBreaker,
        error_handler: Optional[RosterErrorHandler] = None,
        history_size: int = 20
    ):
        self.session_factory = session_factory
        self.circuit_breaker = circuit_breaker
        self.error_handler = error_handler
        self._lock = threading.Lock()
        self._is_running = False
        self._last_sync_time: Optional[datetime] = None
        self._history: deque = deque(maxlen=history_size)
        self._stats = {
            'total_syncs': 0,
            'successful_syncs': 0,
            'failed_syncs': 0,
            'database_only_syncs': 0,
            'last_error': None,
        }

    def set_running(self, running: bool) -> None:
        with self._lock:
            self._is_running = running
        SYNC_RUNNING.set(1 if running else 0)

    async def record(self, run: SyncRun, error: Optional[str] = None) -> None:
        """Update counters for a finished run and persist it."""
        outcome = self._outcome(run)

        with self._lock:
            self._stats['total_syncs'] += 1
            if outcome == 'success':
                self._stats['successful_syncs'] += 1
                self._last_sync_time = run.finished_at
            elif outcome == 'database_only':
                self._stats['database_only_syncs'] += 1
                self._last_sync_time = run.finished_at
            else:
                self._stats['failed_syncs'] += 1
                self._stats['last_error'] = error or (run.errors[0] if run.errors else None)
            self._history.append(run)

        SYNC_RUNS.labels(mode=run.mode.value, outcome=outcome).inc()
        CIRCUIT_STATE.set(_CIRCUIT_STATE_VALUES[self.circuit_breaker.snapshot().state])

        await self._persist(run, error)

    @staticmethod
    def _outcome(run: SyncRun) -> str:
        if not run.success or run.is_fallback:
            return 'failed'
        if run.mode == SyncMode.DATABASE_ONLY:
            return 'database_only'
        return 'success'

    async def _persist(self, run: SyncRun, error: Optional[str]) -> None:
        try:
            async with self.session_factory() as db:
                db.add(SyncRunRecord(
                    run_id=run.id,
                    mode=run.mode.value,
                    is_fallback=run.is_fallback,
                    success=run.success,
                    created=run.created,
                    updated=run.updated,
                    unchanged=run.unchanged,
                    pushed=run.pushed,
                    cleaned=run.cleaned,
                    validated=run.validated,
                    errors=list(run.errors),
                    circuit_breaker=run.circuit_breaker,
                    started_at=run.started_at,
                    finished_at=run.finished_at,
                ))

                status = await db.get(RosterSyncStatus, STATUS_ROW_ID)
                if status is None:
                    status = RosterSyncStatus(id=STATUS_ROW_ID, sync_count=0)
                    db.add(status)

                status.last_sync = run.finished_at
                status.last_sync_success = run.success and not run.is_fallback
                status.sync_count = (status.sync_count or 0) + 1
                status.last_error = error

                await db.commit()
        except Exception as e:
            logger.error(f"Failed to persist sync run {run.id}: {e}")

    async def restore(self) -> None:
        """Seed the last sync time from the persisted status row."""
        try:
            async with self.session_factory() as db:
                status = await db.get(RosterSyncStatus, STATUS_ROW_ID)
        except Exception as e:
            logger.warning(f"Could not restore roster sync status: {e}")
            return

        if status is not None:
            with self._lock:
                self._last_sync_time = status.last_sync
                if not status.last_sync_success:
                    self._stats['last_error'] = status.last_error

    async def recent_runs(self, limit: int = 20) -> List[SyncRunRecord]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(SyncRunRecord)
                .order_by(SyncRunRecord.started_at.desc(), SyncRunRecord.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    @property
    def last_run(self) -> Optional[SyncRun]:
        with self._lock:
            return self._history[-1] if self._history else None

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            status = {
                'is_running': self._is_running,
                'last_sync_time': self._last_sync_time,
                'stats': dict(self._stats),
                'last_run': self._history[-1].to_dict() if self._history else None,
            }

        status['circuit_breaker'] = self.circuit_breaker.snapshot().to_dict()
        status['recent_errors'] = (
            self.error_handler.get_recent_errors(limit=10) if self.error_handler else []
        )
        return status
