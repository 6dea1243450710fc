import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from controllers.alerts_controller import create_alert
from controllers.cron_controller import envelope
from controllers.intent_controller import parse_alert_intent
from models.alerts import AlertCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["Alerts"])


class ParseIntentRequest(BaseModel):
    alert_text: Optional[str] = None
    user_id: Optional[str] = None
    alert_id: Optional[str] = None


@router.post("/", status_code=201)
async def post_alert(alert: AlertCreate, request: Request):
    """
    Create a new alert.
    A user's first alert is processed immediately; later ones wait for the next cron run.
    """
    try:
        pipeline = getattr(request.app.state, "pipeline", None)
        created = await create_alert(alert, pipeline=pipeline)
        return envelope(True, "Alert created successfully", data=created.model_dump())
    except Exception as e:
        logger.error(f"Create alert error: {e}")
        return JSONResponse(status_code=500, content=envelope(False, "Internal server error", error=str(e)))


@router.post("/parse-intent")
async def post_parse_intent(body: ParseIntentRequest, request: Request):
    """
    Parse an alert's intent.

    Example body:
    { "alert_text": "Tell me when India win a Test match" }
    or
    { "user_id": "...", "alert_id": "..." }   (stored alert, intent is upserted)
    """
    parser = getattr(request.app.state, "intent_parser", None)
    if parser is None:
        return JSONResponse(status_code=503, content=envelope(False, "Intent parser not configured"))
    try:
        result = await parse_alert_intent(parser, body.alert_text, body.user_id, body.alert_id)
    except LookupError as e:
        return JSONResponse(status_code=404, content=envelope(False, str(e)))
    except ValueError as e:
        return JSONResponse(status_code=400, content=envelope(False, str(e)))
    except Exception as e:
        logger.error(f"Parse alert intent error: {e}")
        return JSONResponse(status_code=500, content=envelope(False, "Internal server error", error=str(e)))

    message = "Intent parsed and stored successfully" if result["stored"] else "Intent parsed successfully (not stored)"
    return JSONResponse(content=envelope(True, message, data=jsonable_encoder(result["intent"])))
