from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .db import init_db, dispose_db
from .deps import close_geocoder
from .routers import attendance, location
from .core.config import get_settings
from .core.logging import configure_logging
from .core.redis import ping_redis, close_redis
from .core.nats import nats_connect, nats_close

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    await init_db()
    # best-effort connect to infra; service still runs if these fail
    if settings.publish_events:
        try:
            await nats_connect()
        except Exception as exc:
            logger.warning("nats unavailable at startup: %s", exc)
    if settings.rl_enabled and not await ping_redis():
        logger.warning("redis unavailable at startup; rate limiting fails open")
    logger.info("event-checkin-svc started")
    yield
    await close_geocoder()
    await nats_close()
    await close_redis()
    await dispose_db()

app = FastAPI(title="event-checkin-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(attendance.router)
app.include_router(location.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "event-checkin-svc"}

Instrumentator().instrument(app).expose(app)
