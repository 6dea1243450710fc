import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pymongo.errors import DuplicateKeyError

from db.mongo import alerts_collection, alert_intents_collection
from models.intent import AlertIntent, PARSING_VERSION

logger = logging.getLogger(__name__)


def alert_to_intent_input(alert: Dict[str, Any]) -> Dict[str, Any]:
    """Convert an alert document to the parser's input shape."""
    category = alert.get("main_category") or alert.get("category") or ""
    return {
        "alert_id": alert.get("alert_id"),
        "user_id": alert.get("user_id"),
        "topic": category,
        "category": category,
        "subcategories": alert.get("sub_categories") or [],
        "followup_questions": alert.get("followup_questions") or [],
        "custom_question": alert.get("custom_question") or "",
    }


async def parse_and_store_alert(alert: Dict[str, Any], parser) -> Dict[str, Any]:
    """Parse an alert's intent and upsert it keyed by (alert_id, user_id)."""
    intent = await parser.parse_intent(alert_to_intent_input(alert))
    record = AlertIntent(
        alert_id=alert["alert_id"],
        user_id=alert["user_id"],
        **{k: v for k, v in intent.items() if k in AlertIntent.model_fields and k not in ("alert_id", "user_id")},
    ).model_dump()
    record["parsing_version"] = PARSING_VERSION
    created_at = record.pop("created_at")
    record["updated_at"] = datetime.utcnow()

    key = {"alert_id": record["alert_id"], "user_id": record["user_id"]}
    try:
        await alert_intents_collection.update_one(
            key,
            {"$set": record, "$setOnInsert": {"created_at": created_at}},
            upsert=True,
        )
    except DuplicateKeyError:
        # A concurrent writer stored the same intent first
        logger.info(f"[INTENT] Intent for {key} already stored by another writer")
    stored = await alert_intents_collection.find_one(key)
    return stored or {**record, "created_at": created_at}


async def get_or_create_intent(alert: Dict[str, Any], parser) -> Dict[str, Any]:
    """Return the cached intent for an alert, deriving and storing it on first use."""
    existing = await alert_intents_collection.find_one(
        {"alert_id": alert.get("alert_id"), "user_id": alert.get("user_id")}
    )
    if existing:
        return existing
    logger.info(f"[INTENT] No cached intent for alert {alert.get('alert_id')}; parsing")
    return await parse_and_store_alert(alert, parser)


async def parse_alert_intent(
    parser,
    alert_text: Optional[str] = None,
    user_id: Optional[str] = None,
    alert_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Diagnostic entry point.

    With user_id and alert_id the stored alert is parsed and its intent upserted.
    With only alert_text the intent is parsed from free text and not stored.
    """
    if user_id and alert_id:
        alert = await alerts_collection.find_one({"alert_id": alert_id, "user_id": user_id})
        if not alert:
            raise LookupError("Alert not found")
        stored = await parse_and_store_alert(alert, parser)
        stored.pop("_id", None)
        return {"intent": stored, "stored": True}

    if alert_text and alert_text.strip():
        intent = await parser.parse_intent({
            "topic": "General",
            "category": "General",
            "subcategories": [],
            "followup_questions": [],
            "custom_question": alert_text.strip(),
        })
        return {"intent": intent, "stored": False}

    raise ValueError("Either alert_text or (user_id + alert_id) is required")
