from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .routes_queue import router as queue_router
from .routes_scheduler import router as scheduler_router
from .routes_thumbnails import router as thumbnails_router
from .settings import get_settings

logger = logging.getLogger("newsqueue")

app = FastAPI(title="newsqueue")
settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return PlainTextResponse("Internal Server Error", status_code=500)


@app.get("/ping")
async def ping():
    return {"status": "ok"}


app.include_router(queue_router)
app.include_router(thumbnails_router)
app.include_router(scheduler_router)


@app.on_event("startup")
async def startup_event():
    """Start scheduler on app startup."""
    from newsqueue.services.scheduler import scheduler_service
    scheduler_service.configure(settings.async_database_url)
    scheduler_service.start()
    logger.info("Scheduler started on app startup")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop scheduler on app shutdown."""
    from newsqueue.services.scheduler import scheduler_service
    scheduler_service.stop()
    logger.info("Scheduler stopped on app shutdown")
