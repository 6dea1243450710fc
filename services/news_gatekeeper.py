"""
News Gatekeeper - LLM re-filter of curated updates against the alert intent.

1. All curated {title, description} pairs are judged in one prompt
2. The model may legitimately keep none of them (explicit [])
3. Empty, malformed or failed responses keep every update with a default reason
4. Survivors are re-joined to the originals by title to recover image and hash fields
"""

import logging
from typing import Any, Dict, List, Optional

from core.text_utils import parse_json_response
from models.article import CuratedUpdate

logger = logging.getLogger(__name__)

DEFAULT_GATEKEEPER_REASON = "Article passed gatekeeping"

# Fields the model never sees and so never echoes back
_CARRIED_FIELDS = (
    "content_hash", "content", "image_url", "image_thumbnail",
    "image_source", "image_search_query", "rating", "rating_reason",
)


def build_gatekeeping_prompt(updates: List[CuratedUpdate], intent: Optional[Dict[str, Any]]) -> str:
    lines = [
        'You are a gatekeeper for "Naarad" news updates. Review the following formatted '
        "articles and decide if they match the user's intent.",
        "",
    ]
    if intent and intent.get("intent_summary"):
        lines += [f"User Intent: {intent['intent_summary']}", ""]

    lines.append("Formatted Articles:")
    for idx, update in enumerate(updates, start=1):
        lines.append(f"{idx}. Title: {update.title}")
        lines.append(f"   Description: {update.description}")
        lines.append("")

    lines += [
        "Rules:",
        "- Return ONLY a valid JSON array.",
        "- Include articles that match the user intent.",
        "- Exclude articles that are irrelevant, outdated, or don't match the intent.",
        '- For each included article, add a "gatekeeper_reason" field explaining why it was selected.',
        "- Keep each title exactly as given.",
        "- Return an empty array [] if no articles match.",
        "",
        "Return format:",
        '[{"title": "...", "description": "...", "gatekeeper_reason": "Why this was selected"}]',
    ]
    return "\n".join(lines)


def _pass_all(updates: List[CuratedUpdate]) -> List[CuratedUpdate]:
    return [u.model_copy(update={"gatekeeper_reason": DEFAULT_GATEKEEPER_REASON}) for u in updates]


class NewsGatekeeper:
    """Intent re-filter for curated updates; fails open on infrastructure errors."""

    def __init__(self, llm_client):
        self.llm = llm_client

    def _rejoin(self, selected: List[Dict[str, Any]], updates: List[CuratedUpdate]) -> List[CuratedUpdate]:
        # Curated updates can share a title; each selection consumes the next one in order
        by_title: Dict[str, List[CuratedUpdate]] = {}
        for update in updates:
            by_title.setdefault(update.title.strip(), []).append(update)
        result = []
        for entry in selected:
            if not isinstance(entry, dict):
                continue
            title = str(entry.get("title") or "").strip()
            reason = str(entry.get("gatekeeper_reason") or "").strip() or DEFAULT_GATEKEEPER_REASON
            if title in by_title:
                if by_title[title]:
                    original = by_title[title].pop(0)
                    result.append(original.model_copy(update={"gatekeeper_reason": reason}))
                continue

            description = str(entry.get("description") or "").strip()
            if not title or not description:
                continue
            # Title was changed by the model; keep its text, nothing to carry over
            logger.info(f"[GATEKEEPING] No original matches title '{title[:60]}'; keeping model text")
            extras = {k: entry.get(k) for k in _CARRIED_FIELDS if entry.get(k) is not None}
            extras.setdefault("content_hash", "")
            result.append(CuratedUpdate(title=title, description=description, gatekeeper_reason=reason, **extras))
        return result

    async def filter_updates(self, updates: List[CuratedUpdate], intent: Optional[Dict[str, Any]]) -> List[CuratedUpdate]:
        if not updates:
            return []

        try:
            raw = await self.llm.generate(build_gatekeeping_prompt(updates, intent), temperature=0.2, json_mode=True)
        except Exception as e:
            logger.error(f"[GATEKEEPING] Error: {e}; passing all {len(updates)} update(s)")
            return _pass_all(updates)

        if not raw or not raw.strip():
            logger.warning("[GATEKEEPING] Empty response; passing all updates")
            return _pass_all(updates)

        try:
            parsed = parse_json_response(raw)
        except ValueError as e:
            logger.error(f"[GATEKEEPING] JSON parse error: {e}; passing all updates")
            return _pass_all(updates)

        if isinstance(parsed, list):
            selected = parsed
        elif isinstance(parsed, dict) and parsed.get("title") and parsed.get("description"):
            selected = [parsed]
        else:
            logger.warning("[GATEKEEPING] Unexpected response shape; passing all updates")
            return _pass_all(updates)

        result = self._rejoin(selected, updates)
        logger.info(f"[GATEKEEPING] {len(result)} of {len(updates)} update(s) kept")
        return result
