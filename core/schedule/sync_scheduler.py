# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 ScheduleSync Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Schedule Sync Scheduler for ScheduleSync.

Runs the reconciliation engine's bulk sync periodically on the event loop.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config.constants import DEFAULT_SYNC_INTERVAL_MINUTES, MAX_SYNC_RETRY_ATTEMPTS
from utils.time_utils import now_utc

logger = logging.getLogger("schedulesync.schedule.sync_scheduler")

SYNC_JOB_ID = "schedule_sync"
MANUAL_SYNC_JOB_ID = "schedule_sync_manual"
RETRY_SYNC_JOB_ID = "schedule_sync_retry"


class SyncScheduler:
    """
    Manages automatic periodic synchronization with the remote calendar.

    Uses APScheduler's AsyncIOScheduler so sync jobs run on the same event
    loop as the engine. Failed syncs are retried with exponential backoff.
    """

    def __init__(self, engine, interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES):
        """
        Initialize the sync scheduler.

        Args:
            engine: ReconciliationEngine instance
            interval_minutes: Sync interval in minutes (default: 15)
        """
        self.engine = engine
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler()
        self.is_running = False

        # Format: {'attempts': int}; empty when the last sync succeeded
        self.retry_state: Dict[str, int] = {}

        logger.info(f"SyncScheduler initialized with {interval_minutes}min interval")

    def start(self):
        """
        Start the automatic sync scheduler.

        Must be called while the asyncio event loop is running.
        """
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler.add_job(
            func=self._sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=SYNC_JOB_ID,
            name="Schedule Sync Job",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping syncs
        )

        self.scheduler.start()
        self.is_running = True

        client = self.engine.client
        if client is not None:
            client.add_auth_listener(self._on_auth_state_changed)

        logger.info("Sync scheduler started")

    def stop(self):
        """Stop the automatic sync scheduler."""
        if not self.is_running:
            logger.warning("Scheduler is not running")
            return

        client = self.engine.client
        if client is not None:
            client.remove_auth_listener(self._on_auth_state_changed)

        self.scheduler.shutdown(wait=False)
        self.is_running = False
        logger.info("Sync scheduler stopped")

    def sync_now(self):
        """Trigger an immediate sync in addition to scheduled syncs."""
        if not self.is_running:
            logger.warning("Scheduler is not running, cannot trigger manual sync")
            return

        self.scheduler.add_job(
            func=self._sync_job,
            id=MANUAL_SYNC_JOB_ID,
            name="Manual Schedule Sync",
            replace_existing=True,
        )
        logger.info("Manual sync triggered")

    async def _sync_job(self):
        """
        Run one bulk sync.

        Called by the scheduler; errors are logged and turned into a
        retry so the scheduler keeps running.
        """
        logger.info("Starting scheduled sync")
        try:
            report = await self.engine.sync()
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}")
            self._handle_sync_failure()
            return

        if report is None:
            logger.info("Scheduled sync skipped")
            return

        if self.retry_state:
            logger.info("Clearing retry state after successful sync")
            self.retry_state.clear()

    def _handle_sync_failure(self):
        """
        Schedule a retry with exponential backoff (1min, 2min, 4min).

        After the maximum number of attempts the retry state is reset and
        the next interval sync tries again.
        """
        attempts = self.retry_state.get("attempts", 0) + 1
        self.retry_state["attempts"] = attempts

        if attempts > MAX_SYNC_RETRY_ATTEMPTS:
            logger.error(
                f"Maximum retry attempts ({MAX_SYNC_RETRY_ATTEMPTS}) reached. "
                f"Giving up until next scheduled sync."
            )
            self.retry_state.clear()
            return

        delay_minutes = 2 ** (attempts - 1)
        run_time = now_utc() + timedelta(minutes=delay_minutes)

        self.scheduler.add_job(
            func=self._retry_sync,
            trigger="date",
            run_date=run_time,
            id=RETRY_SYNC_JOB_ID,
            name=f"Retry Schedule Sync (attempt {attempts}/{MAX_SYNC_RETRY_ATTEMPTS})",
            replace_existing=True,
        )

        logger.info(
            f"Scheduled retry {attempts}/{MAX_SYNC_RETRY_ATTEMPTS} "
            f"in {delay_minutes} minute(s) at {run_time.strftime('%H:%M:%S')}"
        )

    async def _retry_sync(self):
        attempts = self.retry_state.get("attempts", 0)
        logger.info(f"Retrying sync (attempt {attempts}/{MAX_SYNC_RETRY_ATTEMPTS})")

        try:
            await self.engine.sync()
        except Exception as e:
            logger.error(f"Retry failed: {e}")
            self._handle_sync_failure()
            return

        logger.info("Retry successful")
        self.retry_state.clear()

        try:
            self.scheduler.remove_job(RETRY_SYNC_JOB_ID)
        except JobLookupError:
            pass  # date jobs remove themselves once run

    def _on_auth_state_changed(self, connected: bool):
        if connected and self.is_running:
            self.sync_now()

    def get_next_sync_time(self) -> Optional[str]:
        """
        Get the next scheduled sync time.

        Returns:
            ISO format timestamp of next sync, or None if not scheduled
        """
        if not self.is_running:
            return None

        job = self.scheduler.get_job(SYNC_JOB_ID)
        if job and job.next_run_time:
            return job.next_run_time.isoformat()
        return None

    def get_status(self) -> Dict[str, Any]:
        """Get the current status of the scheduler."""
        return {
            "is_running": self.is_running,
            "interval_minutes": self.interval_minutes,
            "next_sync_time": self.get_next_sync_time(),
            "retry_attempts": self.retry_state.get("attempts", 0),
            "active_jobs": len(self.scheduler.get_jobs()),
        }
