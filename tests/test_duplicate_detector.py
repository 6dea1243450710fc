from datetime import datetime, timedelta

import pytest

from models.dispatch import DispatchReason, DispatchRecord
from services.dispatch_store import DispatchStore
from services.duplicate_detector import (
    DispatchCandidate,
    DuplicateDetector,
    SemanticSimilarityCheck,
    compute_content_hash,
)

from conftest import ScriptedLLM

SIMILAR = '{"is_similar": true, "similar_to_index": 1, "confidence": 0.9, "reason": "same match"}'


def _candidate(**overrides):
    data = dict(
        user_id="user-1",
        template_name="new_updated",
        content_hash="hash-new",
        title="India seal 17-run victory",
        description="India won the third ODI.",
        article_hash="article-new",
    )
    data.update(overrides)
    return DispatchCandidate(**data)


def _sent(**overrides):
    data = dict(
        user_id="user-1",
        template_name="new_updated",
        broadcast_name="new_updated_221220250942",
        content_hash="hash-old",
        article_hash="article-old",
        title="India win by 17 runs",
        description="India beat Australia in Mumbai.",
        message_sent=True,
        reason=DispatchReason.success,
    )
    data.update(overrides)
    return DispatchRecord(**data)


def test_content_hash_covers_every_field():
    base = compute_content_hash("img", "t", "d", "tpl", "bc")
    assert base == compute_content_hash("img", "t", "d", "tpl", "bc")
    assert base != compute_content_hash("img2", "t", "d", "tpl", "bc")
    assert base != compute_content_hash("img", "t", "d", "tpl", "other")
    assert compute_content_hash(None, "t", "d", "tpl", "bc") == compute_content_hash("", "t", "d", "tpl", "bc")


@pytest.mark.asyncio
async def test_exact_content_hit(dispatch_collection):
    store = DispatchStore(dispatch_collection)
    await store.record(_sent(content_hash="hash-new"))

    reason = await DuplicateDetector.default(store).check(_candidate())
    assert reason == DispatchReason.duplicate_message


@pytest.mark.asyncio
async def test_source_article_hit(dispatch_collection):
    store = DispatchStore(dispatch_collection)
    await store.record(_sent(article_hash="article-new"))

    reason = await DuplicateDetector.default(store).check(_candidate())
    assert reason == DispatchReason.duplicate_article


@pytest.mark.asyncio
async def test_missing_article_hash_is_not_a_match(dispatch_collection):
    store = DispatchStore(dispatch_collection)
    await store.record(_sent(article_hash=None))

    assert await DuplicateDetector.default(store).check(_candidate(article_hash=None)) is None


@pytest.mark.asyncio
async def test_unsent_attempts_are_not_duplicates(dispatch_collection):
    store = DispatchStore(dispatch_collection)
    await store.record(_sent(
        content_hash="hash-new", article_hash="article-new", message_sent=False, reason=DispatchReason.error,
    ))

    assert await store.exists_by_content_hash("user-1", "new_updated", "hash-new") is False
    assert await store.exists_by_article_hash("user-1", "new_updated", "article-new") is False
    assert await DuplicateDetector.default(store).check(_candidate()) is None


@pytest.mark.asyncio
async def test_first_hit_short_circuits(dispatch_collection):
    store = DispatchStore(dispatch_collection)
    await store.record(_sent(content_hash="hash-new", article_hash="article-new"))
    llm = ScriptedLLM(similarity=SIMILAR)

    reason = await DuplicateDetector.default(store, llm).check(_candidate())

    assert reason == DispatchReason.duplicate_message
    assert llm.calls == []


@pytest.mark.asyncio
async def test_semantic_hit_above_confidence(dispatch_collection):
    store = DispatchStore(dispatch_collection)
    await store.record(_sent())
    llm = ScriptedLLM(similarity=SIMILAR)

    reason = await DuplicateDetector.default(store, llm).check(_candidate())

    assert reason == DispatchReason.duplicate_similar
    assert 'Title: "India win by 17 runs"' in llm.calls_for("similarity")[0]


@pytest.mark.asyncio
async def test_semantic_low_confidence_allows_send(dispatch_collection):
    store = DispatchStore(dispatch_collection)
    await store.record(_sent())
    llm = ScriptedLLM(similarity='{"is_similar": true, "confidence": 0.5}')

    assert await DuplicateDetector.default(store, llm).check(_candidate()) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [RuntimeError("quota"), "maybe?"])
async def test_semantic_check_fails_open(dispatch_collection, response):
    store = DispatchStore(dispatch_collection)
    await store.record(_sent())

    assert await SemanticSimilarityCheck(store, ScriptedLLM(similarity=response))(_candidate()) is None


@pytest.mark.asyncio
async def test_semantic_check_ignores_old_and_failed_sends(dispatch_collection):
    store = DispatchStore(dispatch_collection)
    await store.record(_sent(sent_at=datetime.utcnow() - timedelta(hours=48)))
    await store.record(_sent(content_hash="hash-rejected", message_sent=False, reason=DispatchReason.duplicate_message))
    llm = ScriptedLLM(similarity=SIMILAR)

    assert await DuplicateDetector.default(store, llm).check(_candidate()) is None
    assert llm.calls == []


@pytest.mark.asyncio
async def test_second_successful_send_of_same_content_is_not_recorded(dispatch_collection):
    store = DispatchStore(dispatch_collection)
    assert await store.record(_sent()) is not None
    assert await store.record(_sent()) is None
    # Rejected attempts may repeat a sent hash
    assert await store.record(_sent(message_sent=False, reason=DispatchReason.duplicate_message)) is not None
    assert await store.count(user_id="user-1") == 2
