import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


async def send_wati_notification(
    notifier,
    user_id: str,
    alert_id: Optional[str],
    article: Any,
    phone: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Send one curated update to a user over WhatsApp; always returns a status dict.

    Result example:
    {
      "status": "success" | "skipped" | "error",
      "reason": "success" | "duplicate_message" | "phone_missing" | ...,
      "message_sent": bool
    }
    """
    if notifier is None:
        logger.info("WATI notifier not configured; skipping WhatsApp send")
        return {"status": "skipped", "reason": "missing_config", "message_sent": False}
    try:
        return await notifier.send_news_notification(user_id, alert_id, article, phone=phone)
    except Exception as e:
        logger.error(f"WATI integration error: {e}")
        return {"status": "error", "reason": "error", "message_sent": False, "error": str(e)}
