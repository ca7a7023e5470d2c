"""
Background tasks for roster synchronization.

Runs the sync engine on a fixed interval. Manual runs through the API share
the same orchestrator, so a timer tick that lands on an active run is skipped.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from memberhub.core.exceptions import SyncAlreadyRunningError
from memberhub.services.roster_sync.control import SyncControl

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Periodically triggers roster sync runs.
    """

    def __init__(self, control: SyncControl, interval_minutes: float):
        self.control = control
        self.interval_seconds = interval_minutes * 60
        self._running_tasks: Dict[str, asyncio.Task] = {}
        self._shutdown_event = asyncio.Event()
        self.last_tick: Optional[datetime] = None

    @property
    def enabled(self) -> bool:
        return self.interval_seconds > 0

    @property
    def is_started(self) -> bool:
        task = self._running_tasks.get('scheduler')
        return task is not None and not task.done()

    async def start(self) -> None:
        """Start the scheduler loop if an interval is configured."""
        if not self.enabled:
            logger.info("Roster sync scheduler disabled (interval is 0)")
            return

        logger.info(f"Starting roster sync scheduler (every {self.interval_seconds}s)")
        self._shutdown_event.clear()
        self._running_tasks['scheduler'] = asyncio.create_task(self._scheduler_loop())

    async def stop(self) -> None:
        """Stop the scheduler loop and wait for it to exit."""
        logger.info("Stopping roster sync scheduler")

        self._shutdown_event.set()

        for task_name, task in self._running_tasks.items():
            if not task.done():
                logger.info(f"Cancelling task: {task_name}")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._running_tasks.clear()
        logger.info("Roster sync scheduler stopped")

    async def _scheduler_loop(self) -> None:
        logger.info("Started roster sync scheduler loop")

        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.interval_seconds
                )
                break  # Shutdown event was set
            except asyncio.TimeoutError:
                pass

            await self.tick()

        logger.info("Roster sync scheduler loop stopped")

    async def tick(self) -> None:
        """Trigger one scheduled run."""
        self.last_tick = datetime.utcnow()
        try:
            run = await self.control.trigger_run()
            logger.info(
                f"Scheduled sync {run.id} finished: mode={run.mode.value}, "
                f"success={run.success}"
            )
        except SyncAlreadyRunningError:
            logger.info("Scheduled sync skipped: a sync is already in progress")
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}")
