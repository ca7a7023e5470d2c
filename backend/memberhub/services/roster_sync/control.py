"""
Entry point used by the HTTP layer and the scheduler to drive roster sync.
"""

import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from memberhub.core.circuit_breaker import CircuitBreaker
from memberhub.core.config import Settings
from memberhub.core.retry import RetryConfig, RetryExecutor
from memberhub.integrations.roster.client import BaseRosterClient
from memberhub.integrations.roster.error_handler import RosterErrorHandler, is_non_retryable
from memberhub.integrations.roster.sheets import SheetsRosterClient
from memberhub.services.roster_sync.health_probe import ConnectionHealthProbe
from memberhub.services.roster_sync.orchestrator import SyncOrchestrator
from memberhub.services.roster_sync.status_store import SyncStatusStore
from memberhub.services.roster_sync.types import SyncOptions, SyncRun


logger = logging.getLogger(__name__)


class SyncControl:
    """Trigger runs, read status and query the roster for a single member."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        default_push_pending: bool = True,
        default_timeout_seconds: Optional[float] = None
    ):
        self.orchestrator = orchestrator
        self.default_push_pending = default_push_pending
        self.default_timeout_seconds = default_timeout_seconds

    @property
    def status_store(self) -> SyncStatusStore:
        return self.orchestrator.status_store

    @property
    def roster_client(self) -> BaseRosterClient:
        return self.orchestrator.roster_client

    def default_options(self) -> SyncOptions:
        return SyncOptions(
            push_pending_to_external=self.default_push_pending,
            timeout_seconds=self.default_timeout_seconds
        )

    async def trigger_run(self, options: Optional[SyncOptions] = None) -> SyncRun:
        return await self.orchestrator.run(options or self.default_options())

    def get_status(self) -> Dict[str, Any]:
        """Status snapshot; ``health.database`` is None until the first probe."""
        status = self.status_store.get_status()
        last_health = self.orchestrator.last_health
        status['health'] = {
            'database': last_health.local_available if last_health else None,
            'roster': self.roster_client.is_initialized,
        }
        return status

    async def test_connection(self) -> Dict[str, Any]:
        result = await self.orchestrator.health_probe.probe()
        self.orchestrator.last_health = result
        return {
            'database': result.local_available,
            'roster': result.external_available,
            'mock_mode': result.mock_mode,
            'error': result.error,
        }

    async def validate_member(
        self,
        national_id: Optional[str] = None,
        registration_number: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Check whether the roster lists a member with the given keys.

        The lookup reads the roster through the circuit breaker; an open
        circuit or roster error propagates to the caller.
        """
        if not (national_id or "").strip() and not (registration_number or "").strip():
            raise ValueError("national_id or registration_number is required")

        if getattr(self.roster_client, 'mock_mode', False):
            return {
                'is_valid': False,
                'message': "Roster not configured",
                'data': None,
            }

        match = await self.orchestrator.circuit_breaker.call(
            self.roster_client.search_member, national_id, registration_number
        )

        return {
            'is_valid': match is not None,
            'message': "Member found in roster" if match else "Member not found in roster",
            'data': match,
        }

    async def shutdown(self) -> None:
        await self.roster_client.close()


def build_sync_control(
    settings: Settings,
    session_factory: Callable[[], AsyncSession],
    roster_client: Optional[BaseRosterClient] = None
) -> SyncControl:
    """Wire one independent sync engine from settings."""
    roster_client = roster_client or SheetsRosterClient.from_settings(settings)
    error_handler = RosterErrorHandler()

    circuit_breaker = CircuitBreaker(
        failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
        reset_timeout=settings.CIRCUIT_RESET_TIMEOUT,
        name="roster"
    )
    retry_executor = RetryExecutor(
        RetryConfig(
            max_attempts=settings.SYNC_RETRY_MAX_ATTEMPTS,
            base_delay=settings.SYNC_RETRY_BASE_DELAY,
            max_delay=settings.SYNC_RETRY_MAX_DELAY,
            multiplier=settings.SYNC_RETRY_MULTIPLIER,
        ),
        give_up_on=is_non_retryable if settings.SYNC_RETRY_FAIL_FAST else None
    )
    status_store = SyncStatusStore(
        session_factory,
        circuit_breaker,
        error_handler=error_handler,
        history_size=settings.SYNC_HISTORY_SIZE
    )
    orchestrator = SyncOrchestrator(
        session_factory=session_factory,
        roster_client=roster_client,
        circuit_breaker=circuit_breaker,
        retry_executor=retry_executor,
        status_store=status_store,
        health_probe=ConnectionHealthProbe(session_factory, roster_client),
        error_handler=error_handler,
        payment_marker=settings.ROSTER_PAYMENT_MARKER,
    )

    logger.info(
        f"Roster sync configured (mock_mode={getattr(roster_client, 'mock_mode', False)}, "
        f"retries={settings.SYNC_RETRY_MAX_ATTEMPTS}, "
        f"circuit_threshold={settings.CIRCUIT_FAILURE_THRESHOLD})"
    )
    return SyncControl(
        orchestrator,
        default_push_pending=settings.SYNC_PUSH_PENDING,
        default_timeout_seconds=settings.SYNC_RUN_TIMEOUT_SECONDS
    )
