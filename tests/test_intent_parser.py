import json

import pytest

import controllers.intent_controller as intent_controller
from controllers.intent_controller import (
    alert_to_intent_input,
    get_or_create_intent,
    parse_alert_intent,
    parse_and_store_alert,
)
from services.intent_parser import (
    LLMIntentParser,
    build_search_query,
    detect_urgency,
    fallback_intent,
    normalize_intent,
)

from conftest import FakeCollection, ScriptedLLM


def test_detect_urgency_matches_whole_words():
    assert detect_urgency("Tell me when India win")
    assert detect_urgency("Live SCORE please")
    assert not detect_urgency("Winter sports roundup")
    assert not detect_urgency(None)


def test_build_search_query_mentions_recency():
    query = build_search_query({
        "category": "Sports",
        "subcategories": ["Cricket", "Football", "Tennis"],
        "custom_question": "Tell me when India win",
        "timeframe": "24hours",
    })
    assert query == (
        "Find latest Sports about Cricket, Football and also address: "
        "Tell me when India win, strictly in the last 24 hours."
    )


def test_unknown_timeframe_becomes_default(sports_alert):
    data = alert_to_intent_input(sports_alert)
    intent = normalize_intent({"timeframe": "bogus", "requires_live_data": False, "intent_summary": "x"}, data)
    assert intent["timeframe"] == "3days"


def test_live_data_forces_most_urgent_timeframe(sports_alert):
    data = alert_to_intent_input(sports_alert)
    intent = normalize_intent({"timeframe": "1month", "requires_live_data": True}, data)
    assert intent["timeframe"] == "24hours"
    assert intent["requires_live_data"] is True


def test_normalize_intent_coerces_shape(sports_alert):
    data = alert_to_intent_input(sports_alert)
    intent = normalize_intent({
        "subcategory": "Cricket",
        "perplexity_prompt": "leftover",
        "perplexity_query": "x" * 300,
        "timeframe": "1week",
        "requires_live_data": False,
    }, data)
    assert intent["subcategory"] == ["Cricket"]
    assert "perplexity_prompt" not in intent
    assert "perplexity_query" not in intent
    assert len(intent["search_query"]) == 180
    assert intent["followup_questions"] == [
        {"question": "Which format?", "selected_answer": "ODI", "options": ["Test", "ODI", "T20"]},
    ]
    assert intent["intent_summary"].startswith("User wants updates on Sports")


def test_fallback_intent_for_urgent_custom_question(sports_alert):
    intent = fallback_intent(alert_to_intent_input(sports_alert))
    assert intent["requires_live_data"] is True
    assert intent["timeframe"] == "24hours"
    assert intent["search_query"].endswith("strictly in the last 24 hours.")
    assert intent["intent_summary"] == (
        "User wants updates on Sports focusing on Cricket and specifically Tell me when India win"
    )


def test_urgent_followup_answer_counts_alongside_custom_question(sports_alert):
    alert = dict(
        sports_alert,
        custom_question="India cricket team",
        followup_questions=[{"question": "What do you follow?", "selected_answer": "Live score", "options": []}],
    )
    data = alert_to_intent_input(alert)

    fallback = fallback_intent(data)
    assert fallback["requires_live_data"] is True
    assert fallback["timeframe"] == "24hours"

    normalized = normalize_intent({"timeframe": "1week", "intent_summary": "x"}, data)
    assert normalized["requires_live_data"] is True
    assert normalized["timeframe"] == "24hours"


@pytest.mark.asyncio
async def test_parser_falls_back_when_model_fails(sports_alert):
    parser = LLMIntentParser(ScriptedLLM(intent=RuntimeError("quota exceeded")))
    intent = await parser.parse_intent(alert_to_intent_input(sports_alert))
    assert intent["timeframe"] == "24hours"
    assert intent["search_query"]


@pytest.mark.asyncio
async def test_parser_falls_back_on_non_object_json(sports_alert):
    parser = LLMIntentParser(ScriptedLLM(intent="[1, 2, 3]"))
    intent = await parser.parse_intent(alert_to_intent_input(sports_alert))
    assert intent["intent_summary"].startswith("User wants updates on Sports")


@pytest.mark.asyncio
async def test_parser_uses_model_output(sports_alert, default_llm):
    intent = await LLMIntentParser(default_llm).parse_intent(alert_to_intent_input(sports_alert))
    assert intent["search_query"] == "Latest India ODI cricket results in the last 3 days"
    assert intent["timeframe"] == "3days"


@pytest.mark.asyncio
async def test_intent_is_cached_per_alert(sports_alert, default_llm, intents_collection):
    parser = LLMIntentParser(default_llm)

    first = await get_or_create_intent(sports_alert, parser)
    second = await get_or_create_intent(sports_alert, parser)

    assert first["search_query"] == second["search_query"]
    assert len(default_llm.calls_for("intent")) == 1
    assert len(intents_collection.docs) == 1
    assert intents_collection.docs[0]["parsing_version"] == "llm_intent_v2"


@pytest.mark.asyncio
async def test_reparse_upserts_single_document(sports_alert, default_llm, intents_collection):
    parser = LLMIntentParser(default_llm)
    await parse_and_store_alert(sports_alert, parser)
    created_at = intents_collection.docs[0]["created_at"]

    default_llm.responses["intent"] = json.dumps({"timeframe": "1week", "requires_live_data": False})
    stored = await parse_and_store_alert(sports_alert, parser)

    assert len(intents_collection.docs) == 1
    assert stored["timeframe"] == "1week"
    assert stored["created_at"] == created_at


@pytest.mark.asyncio
async def test_parse_alert_intent_requires_input(default_llm):
    with pytest.raises(ValueError):
        await parse_alert_intent(LLMIntentParser(default_llm))


@pytest.mark.asyncio
async def test_parse_alert_intent_unknown_alert(monkeypatch, default_llm, intents_collection):
    monkeypatch.setattr(intent_controller, "alerts_collection", FakeCollection())
    with pytest.raises(LookupError):
        await parse_alert_intent(LLMIntentParser(default_llm), user_id="u1", alert_id="missing")


@pytest.mark.asyncio
async def test_parse_alert_intent_free_text_is_not_stored(default_llm, intents_collection):
    result = await parse_alert_intent(LLMIntentParser(default_llm), alert_text="India vs Australia ODI")
    assert result["stored"] is False
    assert result["intent"]["search_query"]
    assert intents_collection.docs == []
