import copy
import itertools
import json

import pytest
from pymongo.errors import DuplicateKeyError

from core.alert_pipeline import AlertPipeline
from models.article import make_raw_item
from services.article_formatter import ArticleFormatter
from services.article_store import ArticleStore
from services.dispatch_store import DispatchStore
from services.duplicate_detector import DuplicateDetector
from services.intent_parser import LLMIntentParser
from services.news_gatekeeper import NewsGatekeeper
from services.wati_notifier import WatiNotificationService

import controllers.intent_controller as intent_controller


SPORTS_ARTICLE = (
    "India beat Australia by 17 runs in the third ODI at Mumbai on Sunday to seal the series 2-1. "
    "Batting first, India posted 312 for 6 in their 50 overs, with Shubman Gill scoring 104 off 97 balls "
    "and Hardik Pandya adding a brisk 58 at the death. Australia's chase started well as Travis Head "
    "struck 71 from 54 deliveries, but the middle order collapsed against spin. Kuldeep Yadav finished "
    "with figures of 4 for 42 while Ravindra Jadeja picked up 2 wickets and ran out Glenn Maxwell with "
    "a direct hit from deep midwicket. Australia needed 38 from the last three overs with three wickets "
    "in hand, and Mitchell Starc kept them alive with two sixes in the 48th over. Jasprit Bumrah then "
    "bowled a superb penultimate over that went for just four runs and removed Starc, leaving 34 needed "
    "from the final over. Mohammed Siraj closed out the match to hand India their first home ODI series "
    "win against Australia since 2019. Captain Rohit Sharma said the team had planned for a slower surface "
    "and praised the spinners for turning the game in the middle overs. The two sides now move to the "
    "T20 leg of the tour, which begins in Chennai on Wednesday with a sold-out crowd expected. "
    "Source: https://example.com/sports/india-australia-third-odi"
)

REWRITE_JSON = json.dumps({
    "title": "India edge Australia by 17 runs to seal the ODI series",
    "description": (
        "Kuldeep Yadav's 4 for 42 turned the Mumbai decider after Shubman Gill's 104 lifted India to 312 for 6. "
        "Jasprit Bumrah conceded just four runs in the penultimate over, and India sealed a 2-1 series win, "
        "their first home ODI series victory over Australia since 2019, with the T20 leg starting Wednesday."
    ),
})

SPORTS_ALERT = {
    "alert_id": "alert-sports-1",
    "user_id": "user-1",
    "main_category": "Sports",
    "sub_categories": ["Cricket"],
    "followup_questions": [
        {"question": "Which format?", "selected_answer": "ODI", "options": ["Test", "ODI", "T20"]},
    ],
    "custom_question": "Tell me when India win",
    "is_active": True,
}


# ---------------------------------------------------------------------------
# In-memory async MongoDB double
# ---------------------------------------------------------------------------

_ids = itertools.count(1)


def _matches(doc, query):
    for key, expected in (query or {}).items():
        value = doc.get(key)
        if isinstance(expected, dict) and any(k.startswith("$") for k in expected):
            for op, operand in expected.items():
                if op == "$gte" and not (value is not None and value >= operand):
                    return False
                if op == "$lte" and not (value is not None and value <= operand):
                    return False
                if op == "$in" and value not in operand:
                    return False
                if op == "$ne" and value == operand:
                    return False
        elif value != expected:
            return False
    return True


class _InsertResult:
    def __init__(self, inserted_id):
        self.inserted_id = inserted_id


class _UpdateResult:
    def __init__(self, matched_count, upserted_id=None):
        self.matched_count = matched_count
        self.modified_count = matched_count
        self.upserted_id = upserted_id


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        self._docs = sorted(self._docs, key=lambda d: d.get(key), reverse=direction == -1)
        return self

    def limit(self, n):
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        return [copy.deepcopy(d) for d in (self._docs if length is None else self._docs[:length])]

    def __aiter__(self):
        self._iter = iter(copy.deepcopy(self._docs))
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """Enough of motor's AsyncIOMotorCollection for the pipeline, including unique indexes."""

    def __init__(self, unique=None):
        self.docs = []
        # [(fields, partial_filter)]
        self.unique = list(unique or [])
        self.indexes = []

    def _check_unique(self, candidate, ignore=None):
        for fields, partial in self.unique:
            if partial and not _matches(candidate, partial):
                continue
            for doc in self.docs:
                if doc is ignore:
                    continue
                if partial and not _matches(doc, partial):
                    continue
                if all(doc.get(f) == candidate.get(f) for f in fields):
                    raise DuplicateKeyError(f"E11000 duplicate key on {fields}")

    async def find_one(self, query=None):
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query=None):
        return FakeCursor([d for d in self.docs if _matches(d, query)])

    async def insert_one(self, doc):
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", next(_ids))
        self._check_unique(doc)
        self.docs.append(doc)
        return _InsertResult(doc["_id"])

    async def update_one(self, query, update, upsert=False):
        for doc in self.docs:
            if _matches(doc, query):
                updated = {**doc, **copy.deepcopy(update.get("$set", {}))}
                self._check_unique(updated, ignore=doc)
                doc.update(updated)
                return _UpdateResult(1)
        if not upsert:
            return _UpdateResult(0)
        doc = {**copy.deepcopy(query), **copy.deepcopy(update.get("$setOnInsert", {})),
               **copy.deepcopy(update.get("$set", {}))}
        result = await self.insert_one(doc)
        return _UpdateResult(0, result.inserted_id)

    async def count_documents(self, query=None):
        return len([d for d in self.docs if _matches(d, query)])

    async def create_indexes(self, indexes):
        self.indexes.extend(i.document for i in indexes)
        return [i.document.get("name", "") for i in indexes]


class FakeDatabase:
    def __init__(self):
        self.collections = {}

    def get_collection(self, name):
        return self.collections.setdefault(name, FakeCollection())


# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------

PROMPT_MARKERS = [
    ("intent", "intent understanding engine"),
    ("rating", "relevance-rating engine"),
    ("rewrite", "Rewrite the following"),
    ("gatekeeping", "gatekeeper for"),
    ("similarity", "duplicate message detector"),
    ("image", "image search query"),
]


class ScriptedLLM:
    """Gemini double: answers by stage, recognized from a marker in the prompt.

    A response may be a string, an exception instance (raised) or a callable
    taking the prompt.
    """

    def __init__(self, **responses):
        self.responses = responses
        self.calls = []

    def stage_of(self, prompt):
        for stage, marker in PROMPT_MARKERS:
            if marker in prompt:
                return stage
        return "unknown"

    def calls_for(self, stage):
        return [p for s, p in self.calls if s == stage]

    async def generate(self, prompt, temperature=None, json_mode=False):
        stage = self.stage_of(prompt)
        self.calls.append((stage, prompt))
        response = self.responses.get(stage, "")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        return response


class FakeRetriever:
    def __init__(self, texts=None, error=None, gate=None):
        self.texts = list(texts or [])
        self.error = error
        self.gate = gate
        self.calls = 0

    async def fetch_news(self, intent):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return {
            "query": intent.get("search_query"),
            "intent_summary": intent.get("intent_summary"),
            "articles": [make_raw_item(t) for t in self.texts],
        }


class FakeWatiClient:
    def __init__(self, error=None):
        self.payloads = []
        self.error = error

    async def send_template(self, payload):
        self.payloads.append(payload)
        if self.error:
            raise self.error
        return {"result": True, "info": "queued"}


class FakeImageSearch:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    async def get_image_for_article(self, title, description):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sports_alert():
    return copy.deepcopy(SPORTS_ALERT)


@pytest.fixture
def dispatch_collection():
    return FakeCollection(unique=[
        (("user_id", "template_name", "content_hash"), {"message_sent": True}),
    ])


@pytest.fixture
def articles_collection():
    return FakeCollection(unique=[(("alert_id", "content_hash"), None)])


@pytest.fixture
def intents_collection(monkeypatch):
    collection = FakeCollection(unique=[(("alert_id", "user_id"), None)])
    monkeypatch.setattr(intent_controller, "alert_intents_collection", collection)
    return collection


@pytest.fixture
def users_collection():
    collection = FakeCollection()
    collection.docs.append({"_id": 0, "user_id": "user-1", "country_code": "+91", "phone_number": "98765 43210"})
    return collection


@pytest.fixture
def default_llm():
    return ScriptedLLM(
        intent=json.dumps({
            "topic": "Cricket",
            "category": "Sports",
            "subcategory": ["Cricket"],
            "intent_summary": "The user wants India ODI cricket results, especially wins.",
            "timeframe": "3days",
            "search_query": "Latest India ODI cricket results in the last 3 days",
            "requires_live_data": False,
        }),
        rating='{"rating": 9, "reason": "India ODI result"}',
        rewrite=REWRITE_JSON,
        gatekeeping="",
        similarity='{"is_similar": false, "similar_to_index": null, "confidence": 0.1, "reason": "none"}',
        image="India cricket",
    )


@pytest.fixture
def build_pipeline(intents_collection, dispatch_collection, articles_collection, users_collection):
    """Factory assembling a real AlertPipeline around fakes."""

    def _build(llm, retriever, wati_client=None, image_search=None):
        store = DispatchStore(dispatch_collection)
        notifier = WatiNotificationService(
            store=store,
            detector=DuplicateDetector.default(store, llm),
            client=wati_client if wati_client is not None else FakeWatiClient(),
            users_collection=users_collection,
            template_name="new_updated",
            broadcast_name="new_updated_221220250942",
        )
        formatter = ArticleFormatter(llm, image_search=image_search, article_store=ArticleStore(articles_collection))
        return AlertPipeline(
            intent_parser=LLMIntentParser(llm),
            retriever=retriever,
            formatter=formatter,
            gatekeeper=NewsGatekeeper(llm),
            notifier=notifier,
        )

    return _build
