from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from controllers.cron_controller import envelope, get_cron_status, trigger_cron_job

router = APIRouter(prefix="/cron", tags=["Cron"])


def _scheduler(request: Request):
    return getattr(request.app.state, "scheduler", None)


@router.post("/trigger")
async def post_trigger(request: Request):
    """Manually start a full run; 409 while one is in progress."""
    scheduler = _scheduler(request)
    if scheduler is None:
        return JSONResponse(status_code=503, content=envelope(False, "Scheduler not configured"))
    body = trigger_cron_job(scheduler)
    return JSONResponse(status_code=200 if body["success"] else 409, content=body)


@router.get("/status")
async def get_status(request: Request):
    scheduler = _scheduler(request)
    if scheduler is None:
        return JSONResponse(status_code=503, content=envelope(False, "Scheduler not configured"))
    return get_cron_status(scheduler)
