"""
Configuration module for the Naarad alert pipeline
Contains API keys, model names, thresholds and scheduler settings.
Everything is read from the environment (a local .env file is loaded first).
"""
import os
import json
import logging

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when a component is constructed without the settings it needs."""


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}; using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}={raw!r}; using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# App
APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# MongoDB
MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "naarad")

# Gemini (text generation)
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_TIMEOUT_SECONDS = _env_float("GEMINI_TIMEOUT_SECONDS", 30.0)

# Perplexity (retrieval)
PERPLEXITY_API_KEY = os.getenv("PERPLEXITY_API_KEY", "")
PERPLEXITY_MODEL = os.getenv("PERPLEXITY_MODEL", "sonar-pro")
PERPLEXITY_BASE_URL = os.getenv("PERPLEXITY_BASE_URL", "https://api.perplexity.ai")
PERPLEXITY_TIMEOUT_SECONDS = _env_float("PERPLEXITY_TIMEOUT_SECONDS", 90.0)

# Google Custom Search (image search)
GOOGLE_SEARCH_API_KEY = os.getenv("GOOGLE_SEARCH_API_KEY", "")
GOOGLE_SEARCH_CX = os.getenv("GOOGLE_SEARCH_CX", "")

# WATI WhatsApp Configuration
WATI_ACCESS_TOKEN = os.getenv("WATI_ACCESS_TOKEN", "")
WATI_BASE_URL = os.getenv("WATI_BASE_URL", "https://live-mt-server.wati.io/458913")
WATI_TEMPLATE_NAME = os.getenv("WATI_TEMPLATE_NAME", "new_updated")
WATI_BROADCAST_NAME = os.getenv("WATI_BROADCAST_NAME", "new_updated_221220250942")
WATI_CHANNEL_NUMBER = os.getenv("WATI_CHANNEL_NUMBER", "")
WATI_TIMEOUT_SECONDS = _env_float("WATI_TIMEOUT_SECONDS", 20.0)

# Curation
MIN_RATING_THRESHOLD = _env_int("MIN_RATING_THRESHOLD", 9)
MAX_ARTICLES_PER_RUN = _env_int("MAX_ARTICLES_PER_RUN", 3)
MAX_RATING_PROMPT_CHARS = _env_int("MAX_RATING_PROMPT_CHARS", 2000)
MAX_REWRITE_PROMPT_CHARS = _env_int("MAX_REWRITE_PROMPT_CHARS", 1500)

# Duplicate detection (semantic similarity level)
SIMILARITY_LOOKBACK_HOURS = _env_int("SIMILARITY_LOOKBACK_HOURS", 24)
SIMILARITY_MAX_RECENT = _env_int("SIMILARITY_MAX_RECENT", 10)
SIMILARITY_CONFIDENCE_THRESHOLD = _env_float("SIMILARITY_CONFIDENCE_THRESHOLD", 0.7)

# Scheduler
SCHEDULER_INTERVAL_MINUTES = _env_int("SCHEDULER_INTERVAL_MINUTES", 360)
SCHEDULER_ALERT_DELAY_SECONDS = _env_float("SCHEDULER_ALERT_DELAY_SECONDS", 2.0)
SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", True)

# Trusted news domains for image search; can be overridden via env at runtime
DEFAULT_TRUSTED_IMAGE_DOMAINS = [
    "indianexpress.com",
    "thehindu.com",
    "timesofindia.indiatimes.com",
    "hindustantimes.com",
    "ndtv.com",
    "news18.com",
    "firstpost.com",
    "scroll.in",
    "thequint.com",
    "news24online.com",
]

# Accepted as trusted when they show up in an unrestricted search
EXTRA_TRUSTED_IMAGE_DOMAINS = [
    "reuters.com",
    "bbc.com",
    "cnn.com",
    "aljazeera.com",
]


def get_trusted_image_domains() -> list:
    """Return the domains searched first for article images.

    Env variable TRUSTED_IMAGE_DOMAINS_JSON may contain a JSON list like
    ["thehindu.com", "ndtv.com"] which replaces the defaults.
    """
    raw = os.getenv("TRUSTED_IMAGE_DOMAINS_JSON")
    if raw:
        try:
            override = json.loads(raw)
            if isinstance(override, list):
                domains = [str(d).strip().lower() for d in override if str(d).strip()]
                if domains:
                    return domains
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed TRUSTED_IMAGE_DOMAINS_JSON")
    return list(DEFAULT_TRUSTED_IMAGE_DOMAINS)


def is_production() -> bool:
    return APP_ENV.strip().lower() == "production"
