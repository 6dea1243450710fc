"""
Intent Deriver: turns a user's alert preferences into a structured search intent
(topic, timeframe, search query, intent summary) using Gemini, with a deterministic
fallback whenever the model output is unusable.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from core.text_utils import parse_json_response
from models.alerts import normalize_followups
from models.intent import (
    DEFAULT_TIMEFRAME,
    SEARCH_QUERY_MAX_CHARS,
    URGENT_TIMEFRAME,
    VALID_TIMEFRAMES,
)

logger = logging.getLogger(__name__)

URGENCY_KEYWORDS = ["only", "win", "won", "result", "score", "breaking", "live", "today", "now"]
_URGENCY_RE = re.compile(r"\b(" + "|".join(URGENCY_KEYWORDS) + r")\b", re.IGNORECASE)

TIMEFRAME_PHRASES = {
    "24hours": "in the last 24 hours",
    "3days": "in the last 3 days",
    "1week": "in the last 7 days",
    "1month": "in the last 30 days",
}

# Keys the model sometimes adds that belong to the retrieval stage
_DROPPED_KEYS = ("perplexity_prompt", "prompt", "retrieval_prompt")


def _followup_lines(followups: List[Any]) -> List[str]:
    lines = []
    for fq in followups or []:
        if isinstance(fq, dict):
            question = fq.get("question") or "Unknown"
            selected = fq.get("selected_answer") or "None"
            options = fq.get("options") or []
            opts = "/".join(str(o) for o in options) if options else "None"
            lines.append(f"Q:{question} | Options:{opts} | Selected:{selected}")
        elif isinstance(fq, str) and fq.strip():
            lines.append(fq.strip())
    return lines


def _followup_text(followups: List[Any]) -> str:
    parts = []
    for fq in followups or []:
        if isinstance(fq, dict):
            parts.extend(str(fq.get(k) or "") for k in ("question", "selected_answer"))
        elif isinstance(fq, str):
            parts.append(fq)
    return " ".join(p for p in parts if p.strip())


def _urgency_text(custom_question: Optional[str], followups: List[Any]) -> str:
    # Keywords count in the custom question and in follow-up answers alike
    return f"{custom_question or ''} {_followup_text(followups)}".strip()


def build_intent_prompt(alert_data: Dict[str, Any]) -> str:
    category = alert_data.get("category") or ""
    topic = alert_data.get("topic") or category or "General"
    subcategories = alert_data.get("subcategories") or []
    followups = "; ".join(_followup_lines(alert_data.get("followup_questions") or [])) or "None"
    custom_question = alert_data.get("custom_question") or "None"

    return f"""You are "Naarad AI", an advanced intent understanding engine.

Understand the COMPLETE user alert intent by merging ALL of these fields:
topic, category, subcategories, follow-up questions and the custom question.
The Selected answer of a follow-up question is a STRONG preference, not just one of the options.

USER ALERT:
- Topic: {topic}
- Category: {category or "Not specified"}
- Subcategories: {", ".join(subcategories) or "None"}
- Follow-up Questions: {followups}
- Custom Question: {custom_question}

Return valid JSON ONLY:
{{
  "topic": "main subject",
  "category": "category name",
  "subcategory": ["..."],
  "custom_question": "exact custom text",
  "followup_questions": ["..."],
  "intent_summary": "Detailed interpretation of what the user wants, merging category, subcategories, selected follow-up answers and the custom question. No generic summaries.",
  "timeframe": "24hours|3days|1week|1month",
  "search_query": "One natural-language search sentence (no AND/OR) including category, subcategories, follow-ups, the custom question and the recency from timeframe. Under {SEARCH_QUERY_MAX_CHARS} characters.",
  "requires_live_data": true
}}

RULES:
1. Never drop numbers, dates or specific domain signals.
2. Timeframe: "24hours" for urgent/live/score alerts, "3days" for recent updates (default), "1week" for general updates, "1month" for long trends.
3. Output ONLY the JSON object, no markdown and no explanation.
"""


def detect_urgency(text: Optional[str]) -> bool:
    if not text:
        return False
    return bool(_URGENCY_RE.search(text))


def build_search_query(alert_data: Dict[str, Any]) -> str:
    """Synthesize a single search sentence from the alert fields, with a recency qualifier."""
    main = alert_data.get("category") or alert_data.get("topic") or "news"
    subcategories = [s for s in (alert_data.get("subcategories") or []) if s]
    subs = f" about {', '.join(subcategories[:2])}" if subcategories else ""
    custom = (alert_data.get("custom_question") or "").strip()
    custom_part = f" and also address: {custom}" if custom else ""
    timeframe = alert_data.get("timeframe") or DEFAULT_TIMEFRAME
    recency = TIMEFRAME_PHRASES.get(timeframe, TIMEFRAME_PHRASES[DEFAULT_TIMEFRAME])

    sentence = f"Find latest {main}{subs}{custom_part}, strictly {recency}."
    return sentence[:SEARCH_QUERY_MAX_CHARS]


def fallback_intent(alert_data: Dict[str, Any]) -> Dict[str, Any]:
    topic = alert_data.get("topic") or alert_data.get("category") or ""
    category = alert_data.get("category") or topic
    subcategories = list(alert_data.get("subcategories") or [])
    followups = normalize_followups(alert_data.get("followup_questions"))
    custom_question = alert_data.get("custom_question") or ""

    requires_live_data = detect_urgency(_urgency_text(custom_question, followups))
    timeframe = URGENT_TIMEFRAME if requires_live_data else DEFAULT_TIMEFRAME

    summary = f"User wants updates on {topic}"
    if subcategories:
        summary += f" focusing on {', '.join(subcategories)}"
    if custom_question:
        summary += f" and specifically {custom_question}"

    return {
        "topic": topic,
        "category": category,
        "subcategory": subcategories,
        "custom_question": custom_question or None,
        "followup_questions": followups,
        "intent_summary": summary,
        "timeframe": timeframe,
        "search_query": build_search_query({**alert_data, "timeframe": timeframe}),
        "requires_live_data": requires_live_data,
    }


def normalize_intent(intent: Dict[str, Any], alert_data: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce a model-produced intent into the stored shape.

    Scalars become lists, an unknown timeframe becomes the default, live-data
    intents are forced to the most urgent timeframe and the search query is capped.
    """
    intent = dict(intent)
    for key in _DROPPED_KEYS:
        intent.pop(key, None)

    for key in ("subcategory", "followup_questions"):
        value = intent.get(key)
        if value is None:
            intent[key] = []
        elif not isinstance(value, list):
            intent[key] = [value]

    if not intent["subcategory"]:
        intent["subcategory"] = list(alert_data.get("subcategories") or [])
    # The stored follow-ups keep the structured answers, not the model's echo
    if alert_data.get("followup_questions"):
        intent["followup_questions"] = list(alert_data["followup_questions"])
    intent["followup_questions"] = normalize_followups(intent["followup_questions"])

    intent["topic"] = intent.get("topic") or alert_data.get("topic") or alert_data.get("category") or ""
    intent["category"] = intent.get("category") or alert_data.get("category") or intent["topic"]
    if not intent.get("custom_question"):
        intent["custom_question"] = alert_data.get("custom_question") or None

    if intent.get("timeframe") not in VALID_TIMEFRAMES:
        intent["timeframe"] = DEFAULT_TIMEFRAME

    if intent.get("requires_live_data") is None:
        intent["requires_live_data"] = detect_urgency(
            _urgency_text(intent.get("custom_question"), intent["followup_questions"])
        )
    intent["requires_live_data"] = bool(intent["requires_live_data"])
    if intent["requires_live_data"]:
        intent["timeframe"] = URGENT_TIMEFRAME

    if not isinstance(intent.get("intent_summary"), str) or not intent["intent_summary"].strip():
        intent["intent_summary"] = fallback_intent(alert_data)["intent_summary"]
    intent["intent_summary"] = intent["intent_summary"].strip()

    query = intent.pop("perplexity_query", None)
    query = intent.get("search_query") or query
    if not isinstance(query, str) or not query.strip():
        query = build_search_query({**alert_data, "timeframe": intent["timeframe"]})
    intent["search_query"] = query.strip()[:SEARCH_QUERY_MAX_CHARS]

    return intent


class LLMIntentParser:
    """Derives an AlertIntent from alert preferences; never raises to its caller."""

    def __init__(self, llm_client):
        self.llm = llm_client

    async def parse_intent(self, alert_data: Dict[str, Any]) -> Dict[str, Any]:
        label = alert_data.get("alert_id") or "adhoc"
        try:
            text = await self.llm.generate(build_intent_prompt(alert_data), temperature=0.3, json_mode=True)
            if not text or not text.strip():
                logger.warning(f"[INTENT] Empty model response for {label}; using fallback")
                return fallback_intent(alert_data)
            parsed = parse_json_response(text)
            if not isinstance(parsed, dict):
                logger.warning(f"[INTENT] Model returned non-object JSON for {label}; using fallback")
                return fallback_intent(alert_data)
            intent = normalize_intent(parsed, alert_data)
            logger.info(f"[INTENT] Parsed {label}: timeframe={intent['timeframe']} query='{intent['search_query'][:80]}'")
            return intent
        except Exception as e:
            logger.warning(f"[INTENT] LLM parse error for {label}: {e}; using fallback")
            return fallback_intent(alert_data)
