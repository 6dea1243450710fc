import json

import httpx
import pytest

from core.text_utils import sha256_hex
from services.config import ConfigurationError
from services.news_retriever import (
    PerplexityNewsFetcher,
    RetrievalAuthError,
    RetrievalError,
    build_search_sentence,
    parse_articles,
    redact_key,
)

from conftest import SPORTS_ARTICLE

API_KEY = "pplx-1234567890abcdef"

INTENT = {
    "topic": "Sports",
    "category": "Sports",
    "subcategory": ["Cricket"],
    "followup_questions": [{"question": "Which format?", "selected_answer": "ODI", "options": ["Test", "ODI"]}],
    "custom_question": "Tell me when India win",
    "intent_summary": "The user wants India ODI results",
    "timeframe": "24hours",
    "search_query": "Latest India ODI cricket results in the last 24 hours",
}


def _article(n):
    return f"Article number {n} reports that the national team completed a long training camp in Bengaluru this week."


def test_parse_articles_from_fenced_array_with_prose():
    reply = "Here are the articles:\n```json\n" + json.dumps([
        {"content": SPORTS_ARTICLE},
        {"content": "too short"},
    ]) + "\n```"
    articles = parse_articles(reply)
    assert len(articles) == 1
    assert articles[0].content.startswith("India beat Australia")
    assert articles[0].content_hash == sha256_hex(articles[0].content)


def test_parse_articles_hash_is_idempotent():
    reply = json.dumps([{"content": SPORTS_ARTICLE}])
    assert parse_articles(reply)[0].content_hash == parse_articles(reply)[0].content_hash


def test_parse_articles_caps_at_four():
    reply = json.dumps([{"content": _article(i)} for i in range(6)])
    assert len(parse_articles(reply)) == 4


def test_parse_articles_accepts_alternate_keys_and_strings():
    reply = json.dumps([{"article": _article(1)}, _article(2), {"title": "no body"}])
    assert [a.content[:16] for a in parse_articles(reply)] == ["Article number 1", "Article number 2"]


def test_unparseable_reply_becomes_one_article():
    articles = parse_articles(SPORTS_ARTICLE)
    assert len(articles) == 1
    assert "Kuldeep Yadav" in articles[0].content


def test_citation_markers_before_the_array_are_skipped():
    reply = "Here are the latest results [1]:\n" + json.dumps([{"content": SPORTS_ARTICLE}])
    articles = parse_articles(reply)
    assert len(articles) == 1
    assert articles[0].content.startswith("India beat Australia")


def test_prose_with_citations_becomes_one_article():
    reply = (
        "India beat Australia by 17 runs in the third ODI at Mumbai [1]. Kuldeep Yadav took "
        "4 for 42 as India sealed the series 2-1 [2]."
    )
    articles = parse_articles(reply)
    assert len(articles) == 1
    assert "Kuldeep Yadav" in articles[0].content


def test_array_of_short_items_yields_nothing():
    assert parse_articles(json.dumps([{"content": "short"}, {"content": "also short"}])) == []
    assert parse_articles("") == []
    assert parse_articles(None) == []


def test_redact_key():
    assert redact_key(API_KEY) == "pplx...cdef (length: 21)"
    assert redact_key("") == "NOT_LOADED (length: 0)"
    assert redact_key(None) == "NOT_LOADED (length: 0)"


def test_search_sentence_prefers_summary():
    sentence = build_search_sentence(INTENT)
    assert sentence.startswith("The user wants India ODI results. Find latest Sports about Cricket")
    assert sentence.endswith("strictly in the last 24 hours.")


def test_search_sentence_skips_stringified_summary():
    intent = {**INTENT, "intent_summary": "[object Object]"}
    assert build_search_sentence(intent) == INTENT["search_query"]


def test_missing_key_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        PerplexityNewsFetcher(api_key="  ")


def _fetcher(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PerplexityNewsFetcher(api_key=API_KEY, model="sonar-pro", http_client=client)


@pytest.mark.asyncio
async def test_fetch_news_posts_chat_completion():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        content = json.dumps([{"content": SPORTS_ARTICLE}])
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    result = await _fetcher(handler).fetch_news(INTENT)

    assert seen["url"].endswith("/chat/completions")
    assert seen["auth"] == f"Bearer {API_KEY}"
    assert seen["body"]["model"] == "sonar-pro"
    assert seen["body"]["temperature"] == 0.1
    assert seen["body"]["messages"][0]["role"] == "system"
    assert "SERP QUERY" in seen["body"]["messages"][1]["content"]
    assert len(result["articles"]) == 1
    assert result["intent_summary"] == INTENT["intent_summary"]


@pytest.mark.asyncio
async def test_unauthorized_error_redacts_key():
    fetcher = _fetcher(lambda request: httpx.Response(401, json={"error": "invalid key"}))

    with pytest.raises(RetrievalAuthError) as excinfo:
        await fetcher.fetch_news(INTENT)

    message = str(excinfo.value)
    assert API_KEY not in message
    assert "pplx...cdef (length: 21)" in message


@pytest.mark.asyncio
async def test_server_error_is_retrieval_error():
    fetcher = _fetcher(lambda request: httpx.Response(500, text="boom"))

    with pytest.raises(RetrievalError) as excinfo:
        await fetcher.fetch_news(INTENT)

    assert str(excinfo.value).startswith("Failed to fetch news from Perplexity")


@pytest.mark.asyncio
async def test_empty_message_is_retrieval_error():
    fetcher = _fetcher(lambda request: httpx.Response(200, json={"choices": []}))

    with pytest.raises(RetrievalError):
        await fetcher.fetch_news(INTENT)
