"""
Text helpers shared by every stage that talks to an LLM or cleans retrieved content:
code-fence stripping, tolerant JSON extraction, article cleaning and hashing.
"""

import hashlib
import json
import logging
import re
from typing import Any, Iterator, List, Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

MIN_ARTICLE_CHARS = 50

_URL_RE = re.compile(r"https?://[^\s]+")
_URL_PLACEHOLDER = "__URL_PLACEHOLDER_{}__"
_HTML_TAG_RE = re.compile(r"</?[a-zA-Z][a-zA-Z0-9]*(?:\s[^<>]*)?/?>")

# Debugging leftovers and stray fragments seen in retrieval output
_NOISE_PATTERNS = [
    re.compile(r"ye\s+becch\s+me", re.IGNORECASE),
    re.compile(r"kyu\s+aa\s+rhe\s+hai", re.IGNORECASE),
    re.compile(r"aisa\s+nahi\s+ana\s+chaihye", re.IGNORECASE),
    re.compile(r"\[(?:debug|DEBUG)[^\]]*\]"),
    re.compile(r"\b(?:article_hash|content_hash)\s*[:=]\s*[a-f0-9]+", re.IGNORECASE),
    re.compile(r"\b[a-f0-9]{32,}\b(?=\s|$)", re.IGNORECASE),
]
_TRAILING_BRO_RE = re.compile(r"\s+bro\s*$", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    if not text:
        return ""
    text = re.sub(r"```(?:json)?", "", text, flags=re.IGNORECASE)
    return text.strip()


def iter_json_arrays(text: str) -> Iterator[str]:
    """Yield each balanced ``[...]`` block in text, left to right, ignoring brackets inside strings."""
    if not text:
        return
    start = text.find("[")
    while start != -1:
        depth = 0
        in_string = False
        escape_next = False
        end = None
        for i in range(start, len(text)):
            char = text[i]
            if escape_next:
                escape_next = False
                continue
            if char == "\\":
                escape_next = True
                continue
            if char == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if char == "[":
                depth += 1
            elif char == "]":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        if end is None:
            # Unbalanced from this opening bracket; try the next one
            start = text.find("[", start + 1)
            continue
        yield text[start:end + 1]
        start = text.find("[", end + 1)


def extract_json_array(text: str) -> Optional[str]:
    """Return the first balanced ``[...]`` block in text, if any."""
    return next(iter_json_arrays(text), None)


def extract_json_object(text: str) -> Optional[str]:
    """Return the outermost ``{...}`` span in text, if any."""
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        return text[start:end + 1]
    return None


def parse_json_response(text: str) -> Any:
    """Parse an LLM reply that should be JSON but may carry fences or prose.

    Raises ValueError when nothing parseable is found.
    """
    cleaned = strip_code_fences(text or "")
    if not cleaned:
        raise ValueError("Empty response")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for candidate in (extract_json_object(cleaned), extract_json_array(cleaned)):
        if not candidate:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise ValueError("Could not parse LLM response as JSON")


def _protect_urls(text: str):
    urls: List[str] = []

    def _swap(match):
        urls.append(match.group(0))
        return _URL_PLACEHOLDER.format(len(urls) - 1)

    return _URL_RE.sub(_swap, text), urls


def _restore_urls(text: str, urls: List[str]) -> str:
    for idx, url in enumerate(urls):
        text = text.replace(_URL_PLACEHOLDER.format(idx), url)
    return text


def _strip_html(text: str) -> str:
    if not _HTML_TAG_RE.search(text):
        return text
    soup = BeautifulSoup(text, "html.parser")
    return soup.get_text(" ", strip=True)


def collapse_ellipses(text: str) -> str:
    text = text.replace("…", "...")
    text = re.sub(r"([.!?])\s*\.{2,}\s*", r"\1 ", text)
    text = re.sub(r"^\.{2,}\s*", "", text)
    text = re.sub(r"\s*\.{2,}\s*", " ", text)
    return text


def clean_article_text(text: str) -> str:
    """Remove retrieval artifacts from an article body while keeping its URLs intact."""
    if not text or not isinstance(text, str):
        return ""
    clean = _strip_html(text.strip())
    clean, urls = _protect_urls(clean)
    for pattern in _NOISE_PATTERNS:
        clean = pattern.sub("", clean)
    clean = _TRAILING_BRO_RE.sub("", clean)
    clean = collapse_ellipses(clean)
    clean = re.sub(r"\s+", " ", clean).strip()
    return _restore_urls(clean, urls)


def aggressive_clean(text: str) -> str:
    """Second-chance cleaning: drop anything that is not readable prose."""
    clean = clean_article_text(text)
    clean, urls = _protect_urls(clean)
    clean = re.sub(r"[{}\[\]<>|`]+", " ", clean)
    clean = re.sub(r"\s+", " ", clean).strip()
    return _restore_urls(clean, urls)


def looks_like_article(text: str) -> bool:
    """Cheap validity check: long enough and made of words rather than markup or hashes."""
    if not text or len(text) < MIN_ARTICLE_CHARS:
        return False
    if re.search(r"\.{2,}|…", text):
        return False
    letters = sum(1 for ch in text if ch.isalpha())
    return letters / max(len(text), 1) >= 0.5


def sha256_hex(text: str) -> str:
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in re.split(r"[.!?]+", text or "") if s.strip()]


def word_count(text: str) -> int:
    return len((text or "").split())


def truncate(text: str, limit: int) -> str:
    text = text or ""
    return text if len(text) <= limit else text[:limit]
