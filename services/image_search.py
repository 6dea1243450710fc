"""
Image Search Module

Finds a representative photo for a curated update: Gemini turns the title and
description into a short query, then Google Custom Search is asked for an image,
trusted news domains first.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from services.config import (
    ConfigurationError,
    EXTRA_TRUSTED_IMAGE_DOMAINS,
    GOOGLE_SEARCH_API_KEY,
    GOOGLE_SEARCH_CX,
    get_trusted_image_domains,
)

logger = logging.getLogger(__name__)

SEARCH_ENDPOINT = "https://www.googleapis.com/customsearch/v1"
MAX_QUERY_CHARS = 100
FALLBACK_STOP_WORDS = {"the", "and", "for", "with", "vs", "in", "on", "at", "seal", "seals"}


def build_image_query_prompt(title: str, description: str) -> str:
    return f"""Generate a 2-5 word image search query.

Title: {title}
Description: {(description or "")[:150]}

Output only the query words, nothing else. Examples: "Virat Kohli cricket", "India match", "Tesla stock"

Query:"""


def clean_image_query(raw: Optional[str]) -> str:
    """Strip fences, quotes and labels the model wraps around a bare query."""
    if not raw:
        return ""
    query = raw.strip()
    query = query.replace("```", "")
    query = re.sub(r"json", "", query, flags=re.IGNORECASE)
    query = query.strip()
    query = re.sub(r"^[\"']|[\"']$", "", query)
    query = re.sub(r"^query:\s*", "", query, flags=re.IGNORECASE)
    query = re.sub(r"^output:\s*", "", query, flags=re.IGNORECASE)
    query = re.sub(r"^\d+\.\s*", "", query)
    query = re.sub(r"^-\s*", "", query)
    query = re.sub(r"^Here.*?:\s*", "", query, flags=re.IGNORECASE)
    query = query.strip().strip("\"'").strip()
    return query[:MAX_QUERY_CHARS]


def fallback_image_query(title: str) -> str:
    words = re.sub(r"[!?.,:;'\"]", " ", title or "").split()
    picked = [w for w in words if len(w) > 2 and w.lower() not in FALLBACK_STOP_WORDS][:3]
    return " ".join(picked) or " ".join((title or "").split()[:3])


def extract_source(url: Optional[str]) -> str:
    if not url:
        return "unknown"
    host = urlparse(url).hostname
    if host:
        return host.replace("www.", "")
    match = re.match(r"https?://(?:www\.)?([^/]+)", url)
    return match.group(1) if match else "unknown"


class ImageSearchService:
    """Best-effort image lookup; every failure path returns None."""

    def __init__(
        self,
        llm_client,
        api_key: Optional[str] = None,
        cx: Optional[str] = None,
        trusted_domains: Optional[List[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else GOOGLE_SEARCH_API_KEY
        self.cx = cx if cx is not None else GOOGLE_SEARCH_CX
        if not self.api_key or not self.cx:
            raise ConfigurationError("GOOGLE_SEARCH_API_KEY and GOOGLE_SEARCH_CX are required for image search")
        self.llm = llm_client
        self.trusted_domains = trusted_domains or get_trusted_image_domains()
        self.client = http_client or httpx.AsyncClient(timeout=20.0)

    def is_trusted_source(self, url: Optional[str]) -> bool:
        if not url:
            return False
        url = url.lower()
        return any(domain in url for domain in self.trusted_domains + EXTRA_TRUSTED_IMAGE_DOMAINS)

    async def generate_image_query(self, title: str, description: str) -> str:
        try:
            raw = await self.llm.generate(build_image_query_prompt(title, description), temperature=0.3)
            query = clean_image_query(raw)
            if len(query) < 2:
                logger.warning("[IMAGE] Empty query after cleaning; using title fallback")
                return fallback_image_query(title)
            return query
        except Exception as e:
            logger.warning(f"[IMAGE] Query generation failed: {e}; using title fallback")
            return fallback_image_query(title)

    def _to_result(self, item: Dict[str, Any]) -> Dict[str, Any]:
        image = item.get("image") or {}
        context = image.get("contextLink") or ""
        return {
            "url": item.get("link"),
            "thumbnail": image.get("thumbnailLink") or item.get("link"),
            "source": extract_source(context or item.get("link")),
        }

    async def _search(self, q: str, num: int) -> List[Dict[str, Any]]:
        params = {
            "key": self.api_key,
            "cx": self.cx,
            "q": q,
            "searchType": "image",
            "num": num,
            "safe": "active",
            "imgSize": "large",
            "imgType": "photo",
        }
        response = await self.client.get(SEARCH_ENDPOINT, params=params)
        response.raise_for_status()
        return response.json().get("items") or []

    async def search_image(self, query: str) -> Optional[Dict[str, Any]]:
        if not query or not query.strip():
            return None

        for domain in self.trusted_domains:
            try:
                items = await self._search(f"{query} site:{domain}", num=1)
            except (httpx.HTTPError, ValueError) as e:
                logger.debug(f"[IMAGE] Search on {domain} failed: {e}")
                continue
            if items:
                item = items[0]
                if self.is_trusted_source(item.get("link")) or self.is_trusted_source((item.get("image") or {}).get("contextLink")):
                    return self._to_result(item)

        try:
            items = await self._search(query, num=3)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[IMAGE] Unrestricted search failed: {e}")
            return None
        if not items:
            return None
        for item in items:
            if self.is_trusted_source(item.get("link")) or self.is_trusted_source((item.get("image") or {}).get("contextLink")):
                return self._to_result(item)
        return self._to_result(items[0])

    async def get_image_for_article(self, title: str, description: str) -> Optional[Dict[str, Any]]:
        try:
            query = await self.generate_image_query(title, description)
            result = await self.search_image(query)
            if not result or not result.get("url"):
                return None
            logger.info(f"[IMAGE] Found image from {result['source']} for '{query}'")
            return {**result, "search_query": query}
        except Exception as e:
            logger.error(f"[IMAGE] Error getting image for article: {e}")
            return None
