"""
Readiness check for the local database and the external roster.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from memberhub.integrations.roster.client import BaseRosterClient
from memberhub.services.member_store import MemberStore


logger = logging.getLogger(__name__)


@dataclass
class HealthProbeResult:
    local_available: bool
    external_available: bool
    error: Optional[str] = None
    mock_mode: bool = False


class ConnectionHealthProbe:
    """Cheap connectivity check run before every sync. Never raises."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        roster_client: BaseRosterClient
    ):
        self.session_factory = session_factory
        self.roster_client = roster_client

    async def probe(self) -> HealthProbeResult:
        errors = []

        local_available = await self._check_local(errors)
        external_available, mock_mode = await self._check_external(errors)

        return HealthProbeResult(
            local_available=local_available,
            external_available=external_available,
            error="; ".join(errors) or None,
            mock_mode=mock_mode
        )

    async def _check_local(self, errors: list) -> bool:
        try:
            async with self.session_factory() as db:
                await MemberStore(db).count()
            return True
        except Exception as e:
            logger.error(f"Local database health check failed: {e}")
            errors.append(f"Database unavailable: {e}")
            return False

    async def _check_external(self, errors: list) -> tuple:
        try:
            handshake = await self.roster_client.initialize()
        except Exception as e:
            logger.error(f"Roster health check failed: {e}")
            errors.append(f"Roster unavailable: {e}")
            return False, False

        if handshake.success:
            return True, False

        if handshake.mock_mode:
            logger.warning("Roster in mock mode - sync will be database-only")
            return False, True

        errors.append(f"Roster initialization failed: {handshake.message}")
        return False, False
