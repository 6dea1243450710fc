import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List

from db.mongo import alerts_collection
from models.alerts import AlertCreate, AlertResponse, ScheduleSettings

logger = logging.getLogger(__name__)

# Strong references to fire-and-forget processing tasks
_background_tasks = set()


async def get_active_alerts() -> List[Dict[str, Any]]:
    """Get all active alerts for cron job processing"""
    alerts_cursor = alerts_collection.find({"is_active": True})
    alerts = []
    async for alert in alerts_cursor:
        alerts.append(alert)
    return alerts


async def _process_first_alert(pipeline, alert: Dict[str, Any]):
    alert_id = alert["alert_id"]
    logger.info(f"[ALERT][CREATE][IMMEDIATE] Starting immediate processing for alert {alert_id}")
    try:
        result = await pipeline.process_alert(alert)
        logger.info(
            f"[ALERT][CREATE][IMMEDIATE] Completed alert {alert_id}: "
            f"status={result.get('status')} reason={result.get('reason', 'N/A')}"
        )
    except Exception as e:
        logger.error(f"[ALERT][CREATE][IMMEDIATE] Error in immediate processing: {e}")


async def create_alert(alert_data: AlertCreate, pipeline=None) -> AlertResponse:
    """Store a new alert; a user's very first alert is processed right away in the background."""
    existing_count = await alerts_collection.count_documents({"user_id": alert_data.user_id})
    is_first_alert = existing_count == 0

    followups = [fq.model_dump() for fq in alert_data.followup_questions] if alert_data.followup_questions else None
    new_alert = {
        "alert_id": str(uuid.uuid4()),
        "user_id": alert_data.user_id,
        "main_category": alert_data.main_category.value,
        "sub_categories": alert_data.sub_categories or None,
        "followup_questions": followups,
        "custom_question": alert_data.custom_question,
        "is_active": True,
        "schedule": ScheduleSettings().model_dump(mode="json"),
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow(),
    }
    await alerts_collection.insert_one(new_alert)
    logger.info(f"[ALERT][CREATE] Created alert {new_alert['alert_id']} for user {alert_data.user_id} (first={is_first_alert})")

    if is_first_alert and pipeline is not None:
        task = asyncio.create_task(_process_first_alert(pipeline, dict(new_alert)))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
    elif not is_first_alert:
        logger.info(f"[ALERT][CREATE] Not first alert (count: {existing_count + 1}). Will be processed by cron job.")

    return AlertResponse(**new_alert)
