import logging
from datetime import datetime
from typing import Any, Dict, List, Union

from pymongo.errors import DuplicateKeyError

from core.text_utils import sha256_hex
from models.article import ArticleRecord, RawContentItem

logger = logging.getLogger(__name__)


class ArticleStore:
    """Archive of retrieved article bodies, one document per (alert_id, content_hash)."""

    def __init__(self, collection):
        self.collection = collection

    async def save_raw_articles(self, items: List[Union[RawContentItem, str]], context: Dict[str, Any]) -> int:
        alert_id = context.get("alert_id")
        user_id = context.get("user_id")
        if not items:
            return 0
        if not alert_id or not user_id:
            logger.warning("[ARTICLE_STORE] Missing alert_id or user_id, skipping save")
            return 0

        saved = 0
        for item in items:
            try:
                if isinstance(item, RawContentItem):
                    content, content_hash = item.content, item.content_hash
                else:
                    content, content_hash = item, sha256_hex(item)
                if not content:
                    continue

                record = ArticleRecord(
                    alert_id=alert_id,
                    user_id=user_id,
                    content=content,
                    content_hash=content_hash,
                    intent_summary=context.get("intent_summary") or "",
                    category=context.get("category") or "",
                    subcategory=context.get("subcategory") or [],
                    timeframe=context.get("timeframe") or "",
                    source=context.get("source") or "perplexity",
                ).model_dump()
                created_at = record.pop("created_at")
                record["updated_at"] = datetime.utcnow()

                await self.collection.update_one(
                    {"alert_id": alert_id, "content_hash": content_hash},
                    {"$set": record, "$setOnInsert": {"created_at": created_at}},
                    upsert=True,
                )
                saved += 1
            except DuplicateKeyError:
                logger.info(f"[ARTICLE_STORE] Article already archived for alert {alert_id}")
            except Exception as e:
                logger.error(f"[ARTICLE_STORE] Error saving article: {e}")
        return saved
