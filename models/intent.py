from enum import Enum
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class Timeframe(str, Enum):
    last_24_hours = "24hours"
    last_3_days = "3days"
    last_week = "1week"
    last_month = "1month"


VALID_TIMEFRAMES = [t.value for t in Timeframe]
DEFAULT_TIMEFRAME = Timeframe.last_3_days.value
URGENT_TIMEFRAME = Timeframe.last_24_hours.value

SEARCH_QUERY_MAX_CHARS = 180
PARSING_VERSION = "llm_intent_v2"


class AlertIntent(BaseModel):
    """Cached interpretation of an alert, one per (alert_id, user_id)."""
    alert_id: str
    user_id: str
    topic: str
    category: str
    subcategory: List[str] = Field(default_factory=list)
    custom_question: Optional[str] = None
    followup_questions: List[dict] = Field(default_factory=list)
    intent_summary: str
    timeframe: Timeframe = Timeframe.last_3_days
    search_query: str = Field(..., max_length=SEARCH_QUERY_MAX_CHARS)
    requires_live_data: bool = False
    parsing_version: str = PARSING_VERSION
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        use_enum_values = True
