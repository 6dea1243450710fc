"""
Content Curator: cleans retrieved bodies, rates each one against the alert intent,
rewrites the survivors into short WhatsApp-ready updates and attaches an image.

Rating fails open and rewriting falls back to a deterministic title/description,
so a degraded model never silences an alert on its own.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Union

from core.text_utils import (
    aggressive_clean,
    clean_article_text,
    looks_like_article,
    parse_json_response,
    sha256_hex,
    split_sentences,
    strip_code_fences,
    truncate,
    word_count,
)
from models.article import CuratedUpdate, RawContentItem
from services.config import (
    MAX_ARTICLES_PER_RUN,
    MAX_RATING_PROMPT_CHARS,
    MAX_REWRITE_PROMPT_CHARS,
    MIN_RATING_THRESHOLD,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "News Update"
DEFAULT_DESCRIPTION = "Latest news update available."
FALLBACK_TITLE_CHARS = 80
FALLBACK_DESCRIPTION_CHARS = 200

TITLE_MAX_WORDS = 12
DESCRIPTION_MIN_WORDS = 35
DESCRIPTION_MAX_WORDS = 65

RESULT_WORDS = {
    "win", "wins", "won", "beat", "beats", "defeat", "defeats", "defeated",
    "victory", "result", "score", "scores", "clinch", "clinches", "seal", "seals", "sealed",
}
# Capitalized words that commonly open a headline without being a person's name
NON_NAME_STARTERS = {
    "the", "a", "an", "india", "indian", "team", "new", "after", "in", "on", "at",
    "from", "with", "why", "how", "what", "when", "record", "big", "first", "last",
}


def clean_and_validate(text: Optional[str]) -> Optional[str]:
    """Stage A. Returns cleaned text, or None when nothing readable survives."""
    if not text or not isinstance(text, str):
        return None
    cleaned = clean_article_text(text)
    if not looks_like_article(cleaned):
        cleaned = aggressive_clean(cleaned)
    return cleaned or None


def _intent_context_lines(intent: Dict[str, Any]) -> List[str]:
    lines = []
    if intent.get("category"):
        lines.append(f"Category: {intent['category']}")
    subcategory = [s for s in (intent.get("subcategory") or []) if s]
    if subcategory:
        lines.append(f"Subcategory: {', '.join(subcategory)}")
    followups = intent.get("followup_questions") or []
    if followups:
        lines.append("")
        lines.append("Follow-up Questions & Selections:")
        for idx, fq in enumerate(followups, start=1):
            if isinstance(fq, dict):
                lines.append(f"{idx}. Question: {fq.get('question') or 'N/A'}")
                if fq.get("options"):
                    lines.append(f"   Options: {', '.join(fq['options'])}")
                lines.append(f"   Selected Answer: {fq.get('selected_answer') or 'N/A'}")
            elif isinstance(fq, str):
                lines.append(f"{idx}. {fq}")
    if intent.get("custom_question"):
        lines.append(f"Custom Question/Interests: {intent['custom_question']}")
    if intent.get("intent_summary"):
        lines.append(f"Intent Summary: {intent['intent_summary']}")
    return lines


def build_rating_prompt(text: str, intent: Dict[str, Any], max_chars: int = MAX_RATING_PROMPT_CHARS,
                        threshold: int = MIN_RATING_THRESHOLD) -> str:
    context = "\n".join(_intent_context_lines(intent))
    return f"""You are Naarad, an intelligent news curation and relevance-rating engine.

Goal:
Determine how relevant a news article is for a user based on their explicit preferences, and assign a single relevance rating.

User Preference Context
{context}

Instructions
1. Read the entire article carefully.
2. Evaluate alignment with the category, subcategory, follow-up selections and custom question.
3. Rate the article on a scale of 1 to 10 and justify it briefly.
4. Do not assume or fabricate information.

Scoring Logic (internal, do not expose)
- Strong alignment with category and subcategory increases the score.
- A match with the selected follow-up answers significantly boosts the score.
- Relevance to the custom question adds value.
- Concrete stats and key developments increase relevance; their absence lowers the score.
- Only articles rated {threshold} or higher will be selected.

RAW ARTICLE TO RATE:
{truncate(text, max_chars)}

Return ONLY valid JSON:
{{"rating": <number 1-10>, "reason": "<brief explanation of rating>"}}
"""


def _coerce_rating(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = re.search(r"-?\d+(?:\.\d+)?", value)
        if match:
            return float(match.group(0))
    return None


async def rate_article(llm, text: str, intent: Optional[Dict[str, Any]],
                       threshold: int = MIN_RATING_THRESHOLD,
                       max_chars: int = MAX_RATING_PROMPT_CHARS) -> Dict[str, Any]:
    """Stage B. Returns {rating, reason, should_proceed}; inclusive at the threshold, fails open."""
    if not text or not text.strip():
        return {"rating": 0, "reason": "Empty article text", "should_proceed": False}
    if not intent:
        return {"rating": 10, "reason": "No intent to compare against", "should_proceed": True}

    try:
        raw = await llm.generate(build_rating_prompt(text, intent, max_chars, threshold), temperature=0.2, json_mode=True)
    except Exception as e:
        logger.warning(f"[FORMATTER] Rating service error: {e}")
        return {"rating": 10, "reason": "Rating service error", "should_proceed": True}

    if not raw or not raw.strip():
        return {"rating": 10, "reason": "Rating service unavailable", "should_proceed": True}

    try:
        parsed = parse_json_response(raw)
    except ValueError:
        return {"rating": 10, "reason": "Rating parse error", "should_proceed": True}

    rating = _coerce_rating(parsed.get("rating")) if isinstance(parsed, dict) else None
    if rating is None:
        return {"rating": 10, "reason": "Rating parse error", "should_proceed": True}

    if rating == int(rating):
        rating = int(rating)
    return {
        "rating": rating,
        "reason": str(parsed.get("reason") or "No reason provided"),
        "should_proceed": rating >= threshold,
    }


def build_rewrite_prompt(text: str, intent: Optional[Dict[str, Any]] = None,
                         max_chars: int = MAX_REWRITE_PROMPT_CHARS) -> str:
    body = text if len(text) <= max_chars else text[:max_chars] + "..."
    context = ""
    if intent and intent.get("intent_summary"):
        context = f"User Context: {intent['intent_summary']}\n\n"
    return f"""Rewrite the following full article into a premium "Naarad short update".

{context}### TITLE RULES
- At most {TITLE_MAX_WORDS} words, sentence case.
- Create gentle curiosity; no exclamation marks and no ALL CAPS.
- Never begin with a person's name when the article is about a result.
- Keep every number exactly as it appears.

### DESCRIPTION RULES
- {DESCRIPTION_MIN_WORDS}-{DESCRIPTION_MAX_WORDS} words.
- Deliver the single strongest insight, not a full summary.
- Preserve ALL numbers, dates and metrics verbatim.
- Calm, modern, human newsroom tone.

### STRICT FORMAT
Return ONLY valid JSON:
{{"title": "<short title>", "description": "<{DESCRIPTION_MIN_WORDS}-{DESCRIPTION_MAX_WORDS} word description>"}}
If you cannot return JSON, return exactly two lines:
TITLE: <short title>
DESCRIPTION: <description>

### ARTICLE:
{body}
"""


def parse_rewrite_response(raw: Optional[str]) -> Optional[Dict[str, str]]:
    """Accept a JSON object or TITLE:/DESCRIPTION: labelled text; None when either field is missing."""
    if not raw or not raw.strip():
        return None

    try:
        parsed = parse_json_response(raw)
        if isinstance(parsed, list) and parsed:
            parsed = parsed[0]
        if isinstance(parsed, dict):
            title = str(parsed.get("title") or "").strip()
            description = str(parsed.get("description") or "").strip()
            if title and description:
                return {"title": title, "description": description}
    except ValueError:
        pass

    text = strip_code_fences(raw)
    title_match = re.search(r"TITLE\s*:\s*(.+)", text, re.IGNORECASE)
    desc_match = re.search(r"DESCRIPTION\s*:\s*(.+)", text, re.IGNORECASE | re.DOTALL)
    if title_match and desc_match:
        title = title_match.group(1).strip().strip('"*')
        description = desc_match.group(1).strip().strip('"*')
        if title and description:
            return {"title": title, "description": description}
    return None


def fallback_rewrite(text: Optional[str]) -> Dict[str, str]:
    if not text or not isinstance(text, str):
        return {"title": DEFAULT_TITLE, "description": DEFAULT_DESCRIPTION}
    sentences = split_sentences(text)
    title = sentences[0][:FALLBACK_TITLE_CHARS].strip() if sentences else ""
    description = " ".join(sentences[:3])[:FALLBACK_DESCRIPTION_CHARS].strip()
    return {
        "title": title or DEFAULT_TITLE,
        "description": description or DEFAULT_DESCRIPTION,
    }


def _starts_with_person_name(title: str) -> bool:
    words = re.findall(r"[A-Za-z][A-Za-z'.-]*", title)
    if len(words) < 2:
        return False
    first, second = words[0], words[1]
    return (
        first[0].isupper() and second[0].isupper()
        and first.lower() not in NON_NAME_STARTERS
        and not first.isupper() and not second.isupper()
    )


def validate_update(title: str, description: str) -> List[str]:
    """Style checks for a rewritten update; the warnings are logged, never enforced."""
    warnings = []
    if word_count(title) > TITLE_MAX_WORDS:
        warnings.append(f"title has {word_count(title)} words (max {TITLE_MAX_WORDS})")
    desc_words = word_count(description)
    if desc_words < DESCRIPTION_MIN_WORDS or desc_words > DESCRIPTION_MAX_WORDS:
        warnings.append(f"description has {desc_words} words (expected {DESCRIPTION_MIN_WORDS}-{DESCRIPTION_MAX_WORDS})")
    if "!" in title or "!" in description:
        warnings.append("contains an exclamation mark")
    if any(len(w) >= 4 and w.isalpha() and w.isupper() for w in title.split()):
        warnings.append("title uses all-caps words")
    tokens = set(re.findall(r"[a-z]+", f"{title} {description}".lower()))
    if tokens & RESULT_WORDS and _starts_with_person_name(title):
        warnings.append("result-oriented title starts with a personal name")
    return warnings


def _as_raw_item(item: Union[RawContentItem, str, Dict[str, Any]]) -> Optional[RawContentItem]:
    if isinstance(item, RawContentItem):
        return item
    if isinstance(item, str):
        return RawContentItem(content=item, content_hash=sha256_hex(clean_article_text(item)))
    if isinstance(item, dict):
        text = item.get("content") or item.get("article") or item.get("text")
        if not isinstance(text, str):
            text = json.dumps(item, default=str)
        content_hash = item.get("content_hash") or item.get("article_hash") or sha256_hex(clean_article_text(text))
        return RawContentItem(content=text, content_hash=content_hash)
    return None


class ArticleFormatter:
    """Runs stages A-C over retrieved items and returns at most max_articles updates."""

    def __init__(
        self,
        llm_client,
        image_search=None,
        article_store=None,
        max_articles: int = MAX_ARTICLES_PER_RUN,
        min_rating: int = MIN_RATING_THRESHOLD,
        max_rewrite_chars: int = MAX_REWRITE_PROMPT_CHARS,
        max_rating_chars: int = MAX_RATING_PROMPT_CHARS,
    ):
        self.llm = llm_client
        self.image_search = image_search
        self.article_store = article_store
        self.max_articles = max_articles
        self.min_rating = min_rating
        self.max_rewrite_chars = max_rewrite_chars
        self.max_rating_chars = max_rating_chars

    async def rewrite(self, text: str, intent: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        """Stage C. Always returns a non-empty title and description."""
        try:
            raw = await self.llm.generate(build_rewrite_prompt(text, intent, self.max_rewrite_chars), temperature=0.3)
        except Exception as e:
            logger.warning(f"[FORMATTER] Rewrite failed: {e}; using fallback")
            return fallback_rewrite(text)

        parsed = parse_rewrite_response(raw)
        if not parsed:
            logger.warning(f"[FORMATTER] Unparseable rewrite response: {(raw or '')[:200]!r}; using fallback")
            return fallback_rewrite(text)

        warnings = validate_update(parsed["title"], parsed["description"])
        if warnings:
            logger.info(f"[FORMATTER] Quality warnings for '{parsed['title'][:60]}': {'; '.join(warnings)}")
        return parsed

    async def attach_image(self, update: CuratedUpdate) -> CuratedUpdate:
        if not self.image_search:
            return update
        try:
            image = await self.image_search.get_image_for_article(update.title, update.description)
        except Exception as e:
            logger.warning(f"[IMAGE] Error fetching image: {e}")
            return update
        if image:
            update.image_url = image.get("url")
            update.image_thumbnail = image.get("thumbnail")
            update.image_source = image.get("source")
            update.image_search_query = image.get("search_query")
        return update

    async def format_articles(
        self,
        items: List[Union[RawContentItem, str, Dict[str, Any]]],
        intent: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> List[CuratedUpdate]:
        if not items:
            return []

        # Stage A
        cleaned_items: List[RawContentItem] = []
        for item in items:
            raw = _as_raw_item(item)
            if raw is None:
                continue
            cleaned = clean_and_validate(raw.content)
            if not cleaned:
                logger.info(f"[FORMATTER] Dropped empty item {raw.content_hash[:12]}")
                continue
            cleaned_items.append(RawContentItem(content=cleaned, content_hash=raw.content_hash))

        if self.article_store and context and cleaned_items:
            try:
                saved = await self.article_store.save_raw_articles(cleaned_items, {**(intent or {}), **context})
                logger.info(f"[ARTICLE_STORE] Archived {saved} article(s)")
            except Exception as e:
                logger.error(f"[ARTICLE_STORE] Archive failed: {e}")

        updates: List[CuratedUpdate] = []
        for item in cleaned_items:
            if len(updates) >= self.max_articles:
                break

            # Stage B
            rating = await rate_article(self.llm, item.content, intent, self.min_rating, self.max_rating_chars)
            if not rating["should_proceed"]:
                logger.info(
                    f"[GATEKEEPING] Article rejected - rating {rating['rating']}/10 "
                    f"(required >= {self.min_rating}) | {rating['reason']}"
                )
                continue

            # Stage C
            rewritten = await self.rewrite(item.content, intent)
            update = CuratedUpdate(
                title=rewritten["title"],
                description=rewritten["description"],
                content_hash=item.content_hash,
                content=item.content,
                rating=rating["rating"],
                rating_reason=rating["reason"],
            )
            updates.append(await self.attach_image(update))

        logger.info(f"[FORMATTER] {len(updates)} of {len(items)} item(s) curated")
        return updates
