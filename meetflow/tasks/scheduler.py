"""
Task Scheduler for Periodic Jobs
Runs in-process periodic jobs without an external queue
"""

import asyncio
from datetime import datetime, time, timedelta
from typing import Callable, List, Optional

import structlog

from ..config import Settings
from ..retention.cleanup import RetentionScheduler

logger = structlog.get_logger("meetflow.scheduler")


def seconds_until(run_time: time, now: Optional[datetime] = None) -> float:
    """Seconds until the next occurrence of run_time"""
    now = now or datetime.now()
    target = datetime.combine(now.date(), run_time)
    if now.time() >= run_time:
        target = datetime.combine(now.date() + timedelta(days=1), run_time)
    return (target - now).total_seconds()


class TaskScheduler:
    """Periodic job scheduler"""

    def __init__(self, settings: Settings, retention: RetentionScheduler):
        self.settings = settings
        self.retention = retention
        self.running = False
        self.tasks: List[asyncio.Task] = []

    async def start(self):
        """Start scheduled jobs"""
        logger.info("Starting task scheduler")
        self.running = True

        if self.settings.enable_retention_scheduler:
            self.tasks.append(asyncio.create_task(self._run_daily_task(
                "recording_retention",
                self.retention.run_daily,
                run_time=self.settings.retention_run_time
            )))

        logger.info(f"Scheduler started with {len(self.tasks)} tasks")

    async def stop(self):
        """Stop scheduled jobs"""
        logger.info("Stopping task scheduler")
        self.running = False

        for task in self.tasks:
            task.cancel()

        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        logger.info("Scheduler stopped")

    async def _run_daily_task(
        self,
        name: str,
        func: Callable,
        run_time: time
    ):
        """Run a job every day at run_time"""
        logger.info(f"Started daily task: {name}", run_time=run_time.strftime('%H:%M'))

        while self.running:
            try:
                delay = seconds_until(run_time)
                logger.debug(f"Daily task {name} scheduled", seconds_until=delay)

                await asyncio.sleep(delay)

                logger.info(f"Running daily task: {name}")
                await func()

            except asyncio.CancelledError:
                logger.info(f"Daily task cancelled: {name}")
                break

            except Exception as e:
                logger.error(f"Daily task failed: {name}", error=str(e))
                # Back off for an hour before the next attempt
                await asyncio.sleep(3600)
