from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from contextlib import asynccontextmanager

from services.config import LOG_LEVEL, SCHEDULER_ENABLED, ConfigurationError

# Logging setup
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

# Reduce noisy third-party request logs (HTTP Request: GET ...)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("pymongo").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

from core.alert_pipeline import AlertPipeline
from core.llm_client import LLMClient
from controllers.alerts_controller import get_active_alerts
from db.mongo import (
    articles_collection,
    dispatch_collection,
    ensure_indexes,
    users_collection,
)
from schedulers.alert_scheduler import AlertScheduler
from services.article_formatter import ArticleFormatter
from services.article_store import ArticleStore
from services.dispatch_store import DispatchStore
from services.duplicate_detector import DuplicateDetector
from services.image_search import ImageSearchService
from services.intent_parser import LLMIntentParser
from services.news_gatekeeper import NewsGatekeeper
from services.news_retriever import PerplexityNewsFetcher
from services.wati_client import WatiClient
from services.wati_notifier import WatiNotificationService


def build_pipeline() -> AlertPipeline:
    """Wire the collaborators; missing Gemini or Perplexity keys are fatal, the rest are optional."""
    llm = LLMClient()
    retriever = PerplexityNewsFetcher()

    try:
        image_search = ImageSearchService(llm)
    except ConfigurationError as e:
        logger.warning(f"Image search service not available: {e}")
        image_search = None

    try:
        wati_client = WatiClient()
    except ConfigurationError as e:
        logger.warning(f"WATI not configured: {e}")
        wati_client = None

    dispatch_store = DispatchStore(dispatch_collection)
    notifier = WatiNotificationService(
        store=dispatch_store,
        detector=DuplicateDetector.default(dispatch_store, llm),
        client=wati_client,
        users_collection=users_collection,
    )
    formatter = ArticleFormatter(llm, image_search=image_search, article_store=ArticleStore(articles_collection))
    return AlertPipeline(
        intent_parser=LLMIntentParser(llm),
        retriever=retriever,
        formatter=formatter,
        gatekeeper=NewsGatekeeper(llm),
        notifier=notifier,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting Naarad alert pipeline")
    await ensure_indexes()

    pipeline = build_pipeline()
    scheduler = AlertScheduler(pipeline, get_active_alerts)
    app.state.pipeline = pipeline
    app.state.intent_parser = pipeline.intent_parser
    app.state.scheduler = scheduler

    if SCHEDULER_ENABLED:
        scheduler.start()
        logger.info("📅 Alert scheduler started (runs now, then every interval)")

    yield

    logger.info("🛑 Shutting down Naarad alert pipeline")
    await scheduler.stop()


# FastAPI App
app = FastAPI(
    title="Naarad App API",
    description="Personalized news alert pipeline",
    version="2.0.0",
    lifespan=lifespan
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from routes import alerts
from routes import cron_routes

app.include_router(alerts.router)
app.include_router(cron_routes.router)


# Healthcheck
@app.get("/health")
async def health_check():
    return {"status": "healthy", "message": "Naarad API is running"}
