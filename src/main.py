"""FastAPI application for webhook-ingest-service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import settings
from src.database import init_db, close_db
from src.routes.webhooks import CORS_ALLOW_METHODS, router as webhooks_router

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("webhook-ingest-service starting up")
    await init_db()
    yield
    logger.info("webhook-ingest-service shutting down")
    await close_db()


app = FastAPI(
    title="Webhook Ingest Service",
    description="Verified, deduplicated webhook ingestion with a retryable processing queue",
    version="1.0.0",
    lifespan=lifespan,
)

# Called by provider infrastructure, so preflight accepts any requested header.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=["*"],
)

app.include_router(webhooks_router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "webhook-ingest-service"}
