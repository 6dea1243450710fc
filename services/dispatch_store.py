import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from models.dispatch import DispatchReason, DispatchRecord

logger = logging.getLogger(__name__)


class DispatchStore:
    """Append-only log of WATI send attempts (the wati_dispatches collection)."""

    def __init__(self, collection):
        self.collection = collection

    async def exists_by_content_hash(self, user_id: str, template_name: str, content_hash: str) -> bool:
        """Only delivered messages count; failed or rejected attempts never block a resend."""
        existing = await self.collection.find_one({
            "user_id": user_id,
            "template_name": template_name,
            "content_hash": content_hash,
            "message_sent": True,
        })
        return existing is not None

    async def exists_by_article_hash(self, user_id: str, template_name: str, article_hash: Optional[str]) -> bool:
        if not article_hash:
            return False
        existing = await self.collection.find_one({
            "user_id": user_id,
            "template_name": template_name,
            "article_hash": article_hash,
            "message_sent": True,
        })
        return existing is not None

    async def recent_successful(self, user_id: str, template_name: str, since: datetime, limit: int) -> List[Dict[str, Any]]:
        cursor = self.collection.find({
            "user_id": user_id,
            "template_name": template_name,
            "message_sent": True,
            "reason": DispatchReason.success.value,
            "sent_at": {"$gte": since},
        }).sort("sent_at", DESCENDING).limit(limit)
        return await cursor.to_list(length=limit)

    async def record(self, record: DispatchRecord) -> Optional[Any]:
        """Insert one attempt; a racing duplicate successful send is logged, not raised."""
        try:
            result = await self.collection.insert_one(record.model_dump())
            return result.inserted_id
        except DuplicateKeyError:
            logger.warning(
                f"[WATI] Dispatch already recorded for user={record.user_id} "
                f"content_hash={record.content_hash[:12]}"
            )
            return None

    async def count(self, **filters) -> int:
        return await self.collection.count_documents(filters)
