import time
import asyncio
import logging
import uuid
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from leadflow.core.config import settings
from leadflow.core.logging import setup_logging, request_id_ctx
from leadflow.core.db import init_models, SessionLocal
from leadflow.api.router import api_router
from leadflow.modules.events.outbox import run_outbox_relay
from leadflow.modules.scheduler.jobs import build_ticker, create_scheduler
from leadflow.platform.provider_registry import registry

setup_logging()
app = FastAPI(title=settings.APP_NAME)

logger = logging.getLogger(__name__)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
    request_id_ctx.set(rid)
    start_time = time.time()

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000
    response.headers["x-request-id"] = rid
    logger.info(
        f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms"
    )
    return response

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"message": "An internal server error occurred."},
    )

@app.on_event("startup")
async def on_startup():
    await init_models()
    app.state.outbox_task = asyncio.create_task(run_outbox_relay())
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler = create_scheduler(build_ticker(SessionLocal))
        app.state.scheduler.start()
        logger.info("In-process scheduler started")

@app.on_event("shutdown")
async def on_shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler:
        scheduler.shutdown(wait=False)
    task = getattr(app.state, "outbox_task", None)
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    bus = registry.event_bus()
    if hasattr(bus, "close"):
        await bus.close()


app.include_router(api_router, prefix=settings.API_PREFIX)
