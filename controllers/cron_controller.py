import logging
from typing import Any, Dict, Optional

from services.config import is_production

logger = logging.getLogger(__name__)


def envelope(success: bool, message: str, data: Any = None, error: Optional[str] = None) -> Dict[str, Any]:
    """Response body shared by the cron and alert routes; error detail is hidden in production."""
    body: Dict[str, Any] = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    if error and not is_production():
        body["error"] = error
    return body


def trigger_cron_job(scheduler) -> Dict[str, Any]:
    """Start a background run; success is False when a run is already in progress."""
    if scheduler.is_running or not scheduler.trigger():
        return envelope(False, "Cron job is already running")
    logger.info("[CRON][MANUAL] Run triggered")
    return envelope(True, "Cron job triggered successfully")


def get_cron_status(scheduler) -> Dict[str, Any]:
    return envelope(True, "Cron status", data=scheduler.get_status())
