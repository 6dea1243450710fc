"""
Per-alert pipeline: intent -> retrieve -> curate -> gatekeep -> notify.

Only the first curated update is sent per alert per run. Every failure is caught
and reported in the returned result so the scheduler's run always continues.
"""

import logging
from typing import Any, Dict

from controllers.intent_controller import get_or_create_intent
from controllers.send_controller import send_wati_notification
from models.dispatch import SkipReason

logger = logging.getLogger(__name__)


def _skipped(alert_id, user_id, reason: SkipReason, **extra) -> Dict[str, Any]:
    return {"alert_id": alert_id, "user_id": user_id, "status": "skipped", "reason": reason.value, **extra}


def _notification_status(notification: Dict[str, Any]) -> str:
    status = notification.get("status")
    return status if status in ("success", "skipped") else "error"


class AlertPipeline:
    def __init__(self, intent_parser, retriever, formatter, gatekeeper, notifier):
        self.intent_parser = intent_parser
        self.retriever = retriever
        self.formatter = formatter
        self.gatekeeper = gatekeeper
        self.notifier = notifier

    async def process_alert(self, alert: Dict[str, Any]) -> Dict[str, Any]:
        alert_id = alert.get("alert_id")
        user_id = alert.get("user_id")
        try:
            logger.info(f"[CRON][ALERT] Processing alert {alert_id} for user {user_id}")

            stored_intent = await get_or_create_intent(alert, self.intent_parser)
            intent = {k: v for k, v in (stored_intent or {}).items() if k != "_id"}

            search_query = intent.get("search_query")
            if not isinstance(search_query, str) or not search_query.strip():
                logger.warning(f"[CRON][ALERT] Alert {alert_id} has no search query, skipping")
                return _skipped(alert_id, user_id, SkipReason.missing_search_query)

            news = await self.retriever.fetch_news(intent)
            raw_articles = news.get("articles") or []
            if not raw_articles:
                logger.info(f"[CRON][ALERT] No articles found for alert {alert_id}")
                return _skipped(alert_id, user_id, SkipReason.no_articles_found)

            context = {"alert_id": alert_id, "user_id": user_id, "source": "perplexity"}
            curated = await self.formatter.format_articles(raw_articles, intent, context)
            updates = await self.gatekeeper.filter_updates(curated, intent) if curated else []
            if not updates:
                logger.info(f"[CRON][ALERT] No formatted articles for alert {alert_id}")
                return _skipped(
                    alert_id, user_id, SkipReason.no_formatted_articles,
                    articles_found=len(raw_articles),
                )

            notification = await send_wati_notification(self.notifier, user_id, alert_id, updates[0])
            logger.info(
                f"[CRON][ALERT] WATI result for alert {alert_id}: "
                f"status={notification.get('status')} reason={notification.get('reason')}"
            )
            result = {
                "alert_id": alert_id,
                "user_id": user_id,
                "status": _notification_status(notification),
                "articles_found": len(raw_articles),
                "formatted_articles": len(updates),
                "notification": notification,
            }
            if result["status"] != "success":
                result["reason"] = notification.get("reason")
            if notification.get("error"):
                result["error"] = notification["error"]
            return result
        except Exception as e:
            logger.error(f"[CRON][ALERT] Error processing alert {alert_id}: {e}")
            return {"alert_id": alert_id, "user_id": user_id, "status": "error", "error": str(e)}
