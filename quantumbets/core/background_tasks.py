# quantumbets/core/background_tasks.py
"""
Background tasks for periodic delivery sweeps.

Disabled unless DELIVERY_WORKER_ENABLED is set; deployments that trigger
the pipeline from cron or the HTTP endpoints leave it off.
"""
import asyncio
import logging
from typing import Optional

from quantumbets.database.engine import get_db
from quantumbets.core.config import settings

logger = logging.getLogger(__name__)


class BackgroundTaskManager:
    """Manages periodic background tasks."""

    def __init__(self):
        self.tasks: list[asyncio.Task] = []
        self._running = False

    async def start(self):
        """Start all background tasks."""
        if self._running:
            logger.warning("Background tasks already running")
            return

        self._running = True
        logger.info("Starting background tasks...")

        self.tasks.append(asyncio.create_task(self.process_pending_deliveries_task()))
        self.tasks.append(asyncio.create_task(self.retry_failed_deliveries_task()))

        logger.info(f"Started {len(self.tasks)} background tasks")

    async def stop(self):
        """Stop all background tasks."""
        if not self._running:
            return

        logger.info("Stopping background tasks...")
        self._running = False

        for task in self.tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.tasks.clear()
        logger.info("Background tasks stopped")

    async def process_pending_deliveries_task(self):
        """
        Send pending deliveries.
        Runs every DELIVERY_PROCESS_INTERVAL_SECONDS.
        """
        while self._running:
            try:
                await asyncio.sleep(settings.DELIVERY_PROCESS_INTERVAL_SECONDS)

                # Get a database session
                db_gen = get_db()
                db = next(db_gen)

                try:
                    from quantumbets.services.delivery_service import delivery_service

                    result = await delivery_service.process_pending_deliveries(db)
                    if result["processed"] or result["failed"]:
                        logger.info(
                            f"Delivery sweep: {result['processed']} sent, {result['failed']} failed"
                        )
                finally:
                    # Close the database session
                    try:
                        next(db_gen)
                    except StopIteration:
                        pass

            except asyncio.CancelledError:
                logger.info("Delivery processing task cancelled")
                break
            except Exception as e:
                logger.error(f"Error in delivery processing task: {e}")
                # Wait before retrying
                await asyncio.sleep(30)

    async def retry_failed_deliveries_task(self):
        """
        Reset failed deliveries under the retry ceiling to pending.
        Runs every DELIVERY_RETRY_INTERVAL_SECONDS.
        """
        while self._running:
            try:
                await asyncio.sleep(settings.DELIVERY_RETRY_INTERVAL_SECONDS)

                db_gen = get_db()
                db = next(db_gen)

                try:
                    from quantumbets.services.delivery_service import delivery_service

                    result = delivery_service.retry_failed_deliveries(db, settings.DELIVERY_MAX_RETRIES)
                    if result["retried"] > 0:
                        logger.info(f"Retry sweep: {result['retried']} deliveries reset to pending")
                finally:
                    try:
                        next(db_gen)
                    except StopIteration:
                        pass

            except asyncio.CancelledError:
                logger.info("Delivery retry task cancelled")
                break
            except Exception as e:
                logger.error(f"Error in delivery retry task: {e}")
                await asyncio.sleep(60)


# Global background task manager instance
background_task_manager: Optional[BackgroundTaskManager] = None
