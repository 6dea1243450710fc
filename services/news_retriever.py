"""
Content Retriever: asks Perplexity for full recent articles matching an alert intent
and parses the reply into at most four content-addressed RawContentItems.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from core.text_utils import MIN_ARTICLE_CHARS, strip_code_fences, iter_json_arrays, extract_json_object
from models.article import RawContentItem, make_raw_item
from services.config import (
    ConfigurationError,
    PERPLEXITY_API_KEY,
    PERPLEXITY_BASE_URL,
    PERPLEXITY_MODEL,
    PERPLEXITY_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

MAX_ARTICLES = 4

SYSTEM_MESSAGE = (
    "You are Naarad AI News Fetcher. Produce factual, premium-quality news "
    "briefings with zero hallucinations."
)

RECENCY_PHRASES = {
    "24hours": "last 24 hours",
    "1week": "last 7 days",
    "1month": "last 30 days",
}
DEFAULT_RECENCY = "last 72 hours"

# Markers left behind when an object was stringified instead of serialized
_SERIALIZATION_ARTIFACTS = ("[object Object]", "{'", "ObjectId(", " object at 0x")


class RetrievalError(RuntimeError):
    """Raised when the retrieval request fails; the scheduler records it per alert."""


class RetrievalAuthError(RetrievalError):
    """Raised on HTTP 401; carries only a redacted key fingerprint."""


def has_serialization_artifacts(text: Any) -> bool:
    if not isinstance(text, str):
        return True
    return any(marker in text for marker in _SERIALIZATION_ARTIFACTS)


def format_followups(followups: List[Any], inline: bool = True) -> str:
    lines = []
    for fq in followups or []:
        if isinstance(fq, dict):
            question = fq.get("question") or "Follow-up"
            options = fq.get("options") or []
            selected = fq.get("selected_answer") or "None"
            if inline:
                parts = [f"Q:{question}"]
                if options:
                    parts.append(f"Options:{'/'.join(options)}")
                if fq.get("selected_answer"):
                    parts.append(f"Selected:{selected}")
                lines.append(" | ".join(parts))
            else:
                opts = ", ".join(options) if options else "None"
                lines.append(f"Q: {question}\nOptions: {opts}\nSelected: {selected}")
        elif isinstance(fq, str) and fq.strip():
            lines.append(f"{fq.strip()}" if inline else f"Q: {fq.strip()}\nOptions: None\nSelected: None")
    return ("; " if inline else "\n\n").join(lines)


def _synthesized_sentence(intent: Dict[str, Any]) -> str:
    category = intent.get("category") or intent.get("topic") or "news"
    subcategory = intent.get("subcategory") or []
    if isinstance(subcategory, str):
        subcategory = [subcategory]
    sub = ", ".join(s for s in subcategory if s)
    followups = format_followups(intent.get("followup_questions") or [])
    custom = (intent.get("custom_question") or "").strip()
    recency = RECENCY_PHRASES.get(intent.get("timeframe"), DEFAULT_RECENCY)

    sentence = f"Find latest {category}"
    if sub:
        sentence += f" about {sub}"
    if followups:
        sentence += f", considering: {followups}"
    if custom:
        sentence += f", and also: {custom}"
    return sentence + f", strictly in the {recency}."


def build_search_sentence(intent: Dict[str, Any]) -> str:
    """Prefer the cached intent summary; fall back to the stored query, then to a synthesized sentence."""
    sentence = _synthesized_sentence(intent)

    summary = intent.get("intent_summary")
    if isinstance(summary, str) and summary.strip() and not has_serialization_artifacts(summary):
        return f"{summary.strip().rstrip('.')}. {sentence}"

    query = intent.get("search_query")
    if isinstance(query, str) and query.strip() and not has_serialization_artifacts(query):
        return query.strip()

    return sentence


def build_retrieval_prompt(intent: Dict[str, Any]) -> str:
    category = intent.get("category") or intent.get("topic") or "General"
    subcategory = intent.get("subcategory") or []
    sub = ", ".join(s for s in subcategory if s) if isinstance(subcategory, list) else str(subcategory)
    followups = format_followups(intent.get("followup_questions") or [], inline=False) or "None"
    custom = intent.get("custom_question") or "None"
    summary = intent.get("intent_summary") or "None"

    return f"""You are fetching news articles for "Naarad", an AI-powered personal update assistant.
Naarad finds only meaningful, relevant updates based on a user's interests and delivers short,
personalized summaries on WhatsApp. Send only high-signal, noise-free updates.

USER PREFERENCES:
- Category: {category}
- Subcategory: {sub or "None"}
- Follow-up details (question, options, selected):
{followups}
- Custom question: {custom}
- Intent summary: {summary}

Your task, be very strict about it:
1. Fetch the MOST relevant, high-quality news articles for the user's true interests.
2. Articles MUST be recent, published within the last 3 days.
3. Prefer credible reporting over viral or low-quality content.
4. Avoid press releases, SEO spam, AI-generated filler and low-value blogs.
5. Return ONLY the full original article text in JSON format.

FULL ARTICLE TEXT REQUIRED:
- Return the COMPLETE article text from start to finish. Do NOT summarize or shorten it.
- Do NOT use ellipses ("...", "…" or "..") anywhere in the article text.

Output format (strict):
Return a JSON array. Each element has exactly one field, "content", holding the full article
text, then a new line, then the source link. No other fields, titles or commentary.
[
  {{"content": "FULL ARTICLE TEXT HERE\\n\\nSource: https://example.com/full-article-link"}}
]

Return 1-3 high-quality, deeply relevant articles and nothing except the JSON array."""


def _item_text(item: Any) -> Optional[str]:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        for key in ("content", "article", "text"):
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return None


def _strip_outer_brackets(text: str) -> str:
    text = re.sub(r"^\s*\[\s*", "", text)
    text = re.sub(r"\s*\]\s*$", "", text)
    return text.strip()


def _articles_from(parsed: Any) -> Optional[List[RawContentItem]]:
    """Items built from a parsed reply, or None when no entry carries article text."""
    entries = parsed if isinstance(parsed, list) else [parsed]
    texts = [text for text in (_item_text(entry) for entry in entries) if text]
    if not texts:
        return None
    articles: List[RawContentItem] = []
    for text in texts:
        item = make_raw_item(text)
        if len(item.content) < MIN_ARTICLE_CHARS:
            continue
        articles.append(item)
    return articles[:MAX_ARTICLES]


def parse_articles(content: Any) -> List[RawContentItem]:
    """Parse a retrieval reply into cleaned, hashed items.

    Balanced arrays are tried in order, so citation markers such as ``[1]``
    ahead of the real array are skipped. A reply with no JSON carrying article
    text is treated as one article body. A parsed array whose items are all
    too short yields no items.
    """
    if not content or not isinstance(content, str):
        return []

    content = strip_code_fences(content)
    candidates = list(iter_json_arrays(content))
    json_object = extract_json_object(content)
    if json_object:
        candidates.append(json_object)
    candidates.append(content)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        articles = _articles_from(parsed)
        if articles is not None:
            return articles

    item = make_raw_item(_strip_outer_brackets(content))
    if len(item.content) < MIN_ARTICLE_CHARS:
        return []
    return [item]


def redact_key(api_key: Optional[str]) -> str:
    length = len(api_key or "")
    preview = f"{api_key[:4]}...{api_key[-4:]}" if api_key and length > 8 else "NOT_LOADED"
    return f"{preview} (length: {length})"


class PerplexityNewsFetcher:
    """Perplexity chat-completions client for one-shot article retrieval"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        api_key = api_key if api_key is not None else PERPLEXITY_API_KEY
        if not api_key or not api_key.strip():
            raise ConfigurationError("PERPLEXITY_API_KEY missing from environment")
        self.api_key = api_key.strip()
        self.model = model or PERPLEXITY_MODEL
        self.client = http_client or httpx.AsyncClient(
            base_url=PERPLEXITY_BASE_URL,
            timeout=PERPLEXITY_TIMEOUT_SECONDS,
        )

    async def fetch_news(self, intent: Dict[str, Any]) -> Dict[str, Any]:
        if not intent:
            raise RetrievalError("Failed to fetch news from Perplexity: intent is required")

        intent = dict(intent)
        if not isinstance(intent.get("followup_questions"), list):
            intent["followup_questions"] = []

        query = build_search_sentence(intent)
        prompt = build_retrieval_prompt(intent)
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": f"SERP QUERY:\n{query}\n\n{prompt}"},
            ],
            "temperature": 0.1,
            "top_p": 0.8,
            "max_tokens": 8000,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        logger.info(f"[RETRIEVER] Fetching for query: {query[:120]}")
        try:
            response = await self.client.post(
                f"{PERPLEXITY_BASE_URL}/chat/completions",
                json=payload,
                headers=headers,
                timeout=PERPLEXITY_TIMEOUT_SECONDS,
            )
            if response.status_code == 401:
                raise RetrievalAuthError(
                    "Perplexity API authentication failed (401). API Key Status: "
                    f"{redact_key(self.api_key)}. Please verify your PERPLEXITY_API_KEY is valid and not expired."
                )
            response.raise_for_status()
            data = response.json()
            message = ((data.get("choices") or [{}])[0].get("message") or {}).get("content")
            if not message:
                raise ValueError("Invalid Perplexity response format")
        except RetrievalError:
            raise
        except Exception as e:
            raise RetrievalError(f"Failed to fetch news from Perplexity: {e}") from e

        articles = parse_articles(message)
        logger.info(f"[RETRIEVER] Parsed {len(articles)} article(s)")
        return {
            "query": query,
            "intent_summary": intent.get("intent_summary"),
            "articles": articles,
        }
