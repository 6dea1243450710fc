import logging

import motor.motor_asyncio
from pymongo import IndexModel, ASCENDING, DESCENDING
from pymongo.server_api import ServerApi

from services.config import MONGODB_URI, MONGODB_DB

logger = logging.getLogger(__name__)

client = motor.motor_asyncio.AsyncIOMotorClient(MONGODB_URI, server_api=ServerApi('1'))
db = client[MONGODB_DB]

# Collections
users_collection = db.get_collection("users")
alerts_collection = db.get_collection("alerts")
alert_intents_collection = db.get_collection("alert_intents")
articles_collection = db.get_collection("articles")
dispatch_collection = db.get_collection("wati_dispatches")


async def ensure_indexes(database=None):
    """Create the compound indexes the pipeline relies on for idempotent writes."""
    database = database if database is not None else db

    await database.get_collection("alerts").create_indexes([
        IndexModel([("alert_id", ASCENDING)], unique=True),
        IndexModel([("user_id", ASCENDING), ("is_active", ASCENDING)]),
    ])

    await database.get_collection("alert_intents").create_indexes([
        IndexModel([("alert_id", ASCENDING), ("user_id", ASCENDING)], unique=True),
    ])

    await database.get_collection("articles").create_indexes([
        IndexModel([("alert_id", ASCENDING), ("content_hash", ASCENDING)], unique=True),
        IndexModel([("user_id", ASCENDING)]),
    ])

    # Only successful sends are unique per content hash; rejected attempts
    # are an audit trail and may repeat the hash they were rejected for.
    await database.get_collection("wati_dispatches").create_indexes([
        IndexModel(
            [("user_id", ASCENDING), ("template_name", ASCENDING), ("content_hash", ASCENDING)],
            unique=True,
            partialFilterExpression={"message_sent": True},
            name="uniq_sent_content_hash",
        ),
        IndexModel([("user_id", ASCENDING), ("template_name", ASCENDING), ("article_hash", ASCENDING)]),
        IndexModel([("user_id", ASCENDING), ("template_name", ASCENDING), ("sent_at", DESCENDING)]),
    ])

    logger.info("MongoDB indexes ensured")
