from enum import Enum
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


class DispatchReason(str, Enum):
    success = "success"
    duplicate_message = "duplicate_message"
    duplicate_article = "duplicate_article"
    duplicate_similar = "duplicate_similar"
    phone_missing = "phone_missing"
    missing_config = "missing_config"
    error = "error"


class SkipReason(str, Enum):
    """Per-alert outcomes that never reach the notifier."""
    missing_search_query = "missing_search_query"
    no_articles_found = "no_articles_found"
    no_formatted_articles = "no_formatted_articles"


class DispatchRecord(BaseModel):
    """One notification attempt, successful or not, kept as an audit trail."""
    user_id: str
    alert_id: Optional[str] = None
    content_hash: str
    article_hash: Optional[str] = None
    template_name: str
    broadcast_name: str
    title: str = ""
    description: str = ""
    image_url: str = ""
    payload: Optional[dict] = None
    response: Optional[Any] = None
    message_sent: bool = False
    reason: DispatchReason
    error: Optional[str] = None
    sent_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        use_enum_values = True
