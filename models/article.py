from datetime import datetime
from typing import List, Optional, Union
from pydantic import BaseModel, Field

from core.text_utils import clean_article_text, sha256_hex


class RawContentItem(BaseModel):
    """One retrieved article body, identified by the hash of its cleaned text."""
    content: str
    content_hash: str


def make_raw_item(text: str) -> RawContentItem:
    cleaned = clean_article_text(text)
    return RawContentItem(content=cleaned, content_hash=sha256_hex(cleaned))


class ArticleRecord(BaseModel):
    alert_id: str
    user_id: str
    content: str
    content_hash: str
    intent_summary: str = ""
    category: str = ""
    subcategory: List[str] = Field(default_factory=list)
    timeframe: str = ""
    source: str = "perplexity"
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CuratedUpdate(BaseModel):
    """A rewritten, rated article ready for the gatekeeper and the notifier."""
    title: str
    description: str
    content_hash: str
    content: str = ""
    image_url: Optional[str] = None
    image_thumbnail: Optional[str] = None
    image_source: Optional[str] = None
    image_search_query: Optional[str] = None
    rating: Optional[Union[int, float]] = None
    rating_reason: Optional[str] = None
    gatekeeper_reason: Optional[str] = None
