"""
Alert Scheduler - runs the alert pipeline over every active alert on a fixed interval
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from services.config import SCHEDULER_ALERT_DELAY_SECONDS, SCHEDULER_INTERVAL_MINUTES

logger = logging.getLogger(__name__)


@dataclass
class SchedulerState:
    """Run state owned by one scheduler instance.

    Single-process only; several instances would need an external lease instead.
    """
    is_running: bool = False
    last_run: Optional[datetime] = None
    run_count: int = 0


def group_by_user(alerts: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for alert in alerts:
        grouped.setdefault(alert.get("user_id"), []).append(alert)
    return grouped


class AlertScheduler:
    """Runs every active alert through the pipeline, one at a time"""

    def __init__(
        self,
        pipeline,
        alerts_loader: Callable[[], Awaitable[List[Dict[str, Any]]]],
        interval_minutes: float = SCHEDULER_INTERVAL_MINUTES,
        alert_delay_seconds: float = SCHEDULER_ALERT_DELAY_SECONDS,
    ):
        self.pipeline = pipeline
        self.alerts_loader = alerts_loader
        self.interval_minutes = interval_minutes
        self.alert_delay_seconds = alert_delay_seconds
        self.state = SchedulerState()
        self._loop_task: Optional[asyncio.Task] = None
        self._trigger_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    async def run_all(self) -> Optional[Dict[str, Any]]:
        """Process all active alerts; returns None at once if a run is already in progress."""
        if self.state.is_running:
            logger.info("[CRON] Previous job still running, skipping this run")
            return None

        self.state.is_running = True
        start_time = datetime.utcnow()
        logger.info(f"[CRON] Starting job at {start_time.isoformat()}")
        results = {"success": True, "processed": 0, "skipped": 0, "errors": 0, "details": []}

        try:
            alerts = await self.alerts_loader()
            if not alerts:
                logger.info("[CRON] No active alerts found")
                return results

            by_user = group_by_user(alerts)
            logger.info(f"[CRON] Found {len(alerts)} active alerts for {len(by_user)} users")

            first = True
            for user_id, user_alerts in by_user.items():
                logger.info(f"[CRON] Processing {len(user_alerts)} alerts for user {user_id}")
                for alert in user_alerts:
                    # Spacing between alerts for rate-limited collaborators
                    if not first and self.alert_delay_seconds > 0:
                        await asyncio.sleep(self.alert_delay_seconds)
                    first = False

                    try:
                        result = await self.pipeline.process_alert(alert)
                    except Exception as e:
                        result = {
                            "alert_id": alert.get("alert_id"),
                            "user_id": user_id,
                            "status": "error",
                            "error": str(e),
                        }

                    status = result.get("status")
                    if status == "success":
                        results["processed"] += 1
                    elif status == "skipped":
                        results["skipped"] += 1
                    else:
                        results["errors"] += 1
                    results["details"].append(result)

            duration = (datetime.utcnow() - start_time).total_seconds()
            logger.info(
                f"[CRON] Job completed in {duration:.1f}s: processed={results['processed']} "
                f"skipped={results['skipped']} errors={results['errors']}"
            )
            return results
        except Exception as e:
            logger.error(f"[CRON] Fatal error in job: {e}")
            return {"success": False, "error": str(e)}
        finally:
            self.state.is_running = False
            self.state.last_run = datetime.utcnow()
            self.state.run_count += 1

    def trigger(self) -> bool:
        """Start a run in the background; False when one is already running."""
        if self.state.is_running:
            return False
        self._trigger_task = asyncio.create_task(self.run_all())
        return True

    async def _loop(self):
        logger.info(f"[CRON] Scheduler loop started, interval {self.interval_minutes} minutes")
        while True:
            try:
                await self.run_all()
            except Exception as e:
                logger.error(f"[CRON] Error in scheduler loop: {e}")
            await asyncio.sleep(self.interval_minutes * 60)

    def start(self):
        """Run once immediately, then every interval."""
        if self._loop_task and not self._loop_task.done():
            logger.info("[CRON] Scheduler already running")
            return
        self._loop_task = asyncio.create_task(self._loop())

    async def stop(self):
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
            logger.info("[CRON] Scheduler stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.state.is_running,
            "last_run": self.state.last_run.isoformat() if self.state.last_run else None,
            "interval": f"every {self.interval_minutes:g} minutes",
            "is_scheduled": self._loop_task is not None and not self._loop_task.done(),
        }
