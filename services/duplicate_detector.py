"""
Duplicate detection for outgoing WhatsApp updates.

Checks run cheapest first and stop at the first hit:
1. Exact formatted-content hash already dispatched
2. Same source article already dispatched (catches re-phrasings)
3. Gemini judges the update to be the same event as a recent successful send
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from core.text_utils import parse_json_response
from models.dispatch import DispatchReason
from services.config import (
    SIMILARITY_CONFIDENCE_THRESHOLD,
    SIMILARITY_LOOKBACK_HOURS,
    SIMILARITY_MAX_RECENT,
)

logger = logging.getLogger(__name__)


def compute_content_hash(image_url: str, title: str, description: str, template_name: str, broadcast_name: str) -> str:
    fingerprint = f"{image_url or ''}|{title or ''}|{description or ''}|{template_name}|{broadcast_name}"
    return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()


@dataclass
class DispatchCandidate:
    """Everything the checks need to know about one pending send."""
    user_id: str
    template_name: str
    content_hash: str
    title: str
    description: str
    article_hash: Optional[str] = None


def build_similarity_prompt(title: str, description: str, recent: List[Dict[str, Any]], lookback_hours: int) -> str:
    previous = "\n\n".join(
        f"{idx}. Title: \"{msg.get('title', '')}\"\n   Description: \"{(msg.get('description') or '')[:200]}\""
        for idx, msg in enumerate(recent, start=1)
    )
    return f"""You are a duplicate message detector for news alerts.

CURRENT MESSAGE TO CHECK:
Title: "{title}"
Description: "{description}"

RECENT MESSAGES SENT TO THIS USER (last {lookback_hours} hours):
{previous}

TASK:
Determine if the CURRENT MESSAGE reports the SAME news event or story as ANY of the RECENT MESSAGES, even if worded differently.
- Similar: "India win by 17 runs" vs "India seal 17-run victory"
- Not similar: different matches, different events, different time periods

Return ONLY valid JSON:
{{"is_similar": true/false, "similar_to_index": null or number (1-indexed), "confidence": 0.0-1.0, "reason": "brief explanation"}}"""


class ExactContentCheck:
    reason = DispatchReason.duplicate_message

    def __init__(self, store):
        self.store = store

    async def __call__(self, candidate: DispatchCandidate) -> Optional[DispatchReason]:
        if await self.store.exists_by_content_hash(candidate.user_id, candidate.template_name, candidate.content_hash):
            return self.reason
        return None


class SourceArticleCheck:
    reason = DispatchReason.duplicate_article

    def __init__(self, store):
        self.store = store

    async def __call__(self, candidate: DispatchCandidate) -> Optional[DispatchReason]:
        if await self.store.exists_by_article_hash(candidate.user_id, candidate.template_name, candidate.article_hash):
            return self.reason
        return None


class SemanticSimilarityCheck:
    """Fails open: any error or unparseable judgment lets the message through."""
    reason = DispatchReason.duplicate_similar

    def __init__(
        self,
        store,
        llm_client,
        lookback_hours: int = SIMILARITY_LOOKBACK_HOURS,
        max_recent: int = SIMILARITY_MAX_RECENT,
        confidence_threshold: float = SIMILARITY_CONFIDENCE_THRESHOLD,
    ):
        self.store = store
        self.llm = llm_client
        self.lookback_hours = lookback_hours
        self.max_recent = max_recent
        self.confidence_threshold = confidence_threshold

    async def __call__(self, candidate: DispatchCandidate) -> Optional[DispatchReason]:
        if self.llm is None:
            return None
        try:
            since = datetime.utcnow() - timedelta(hours=self.lookback_hours)
            recent = await self.store.recent_successful(candidate.user_id, candidate.template_name, since, self.max_recent)
            if not recent:
                return None

            raw = await self.llm.generate(
                build_similarity_prompt(candidate.title, candidate.description, recent, self.lookback_hours),
                temperature=0.1,
                json_mode=True,
            )
            parsed = parse_json_response(raw)
            if not isinstance(parsed, dict):
                return None

            confidence = float(parsed.get("confidence") or 0)
            if parsed.get("is_similar") is True and confidence >= self.confidence_threshold:
                logger.info(
                    f"[DEDUP] Similar to recent message #{parsed.get('similar_to_index')} "
                    f"(confidence {confidence:.2f}): {parsed.get('reason')}"
                )
                return self.reason
            return None
        except Exception as e:
            logger.warning(f"[DEDUP] Similarity check failed, allowing send: {e}")
            return None


class DuplicateDetector:
    """Ordered chain of independent checks, short-circuiting on the first match."""

    def __init__(self, checks):
        self.checks = list(checks)

    @classmethod
    def default(cls, store, llm_client=None):
        return cls([
            ExactContentCheck(store),
            SourceArticleCheck(store),
            SemanticSimilarityCheck(store, llm_client),
        ])

    async def check(self, candidate: DispatchCandidate) -> Optional[DispatchReason]:
        for check in self.checks:
            reason = await check(candidate)
            if reason is not None:
                logger.info(f"[DEDUP] {reason.value} for user={candidate.user_id} hash={candidate.content_hash[:12]}")
                return reason
        return None
