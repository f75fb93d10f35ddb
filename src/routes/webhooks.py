"""Webhook routes for webhook-ingest-service."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.database import get_db
from src.handlers.ingestion import WebhookIngestor, resolve_source
from src.handlers.processor import process_pending
from src.schemas.events import ErrorResponse, ProcessResponse, WebhookAck

router = APIRouter(tags=["webhooks"])

CORS_ALLOW_METHODS = ["POST", "OPTIONS"]
CORS_ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "stripe-signature",
    "x-quickbooks-signature",
    "plaid-verification",
    "x-webhook-source",
]


def get_ingestor() -> WebhookIngestor:
    return WebhookIngestor(secrets=settings.verification_secrets())


@router.post(
    "/webhooks/receive",
    response_model=WebhookAck,
    responses={401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def receive_webhook(
    request: Request,
    source: Optional[str] = Query(default=None),
    x_webhook_source: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
    ingestor: WebhookIngestor = Depends(get_ingestor),
) -> JSONResponse:
    """Receive a webhook from any provider.

    The body is read raw for signature verification, then stored and queued.
    Idempotent: redeliveries of the same (source, event_id) return 200
    without creating new records.
    """
    raw_body = await request.body()
    result = await ingestor.ingest(
        db,
        resolve_source(source, x_webhook_source),
        raw_body,
        request.headers,
    )
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.options("/webhooks/receive", include_in_schema=False)
async def receive_webhook_options(request: Request) -> Response:
    """Answer OPTIONS requests that are not CORS preflights (no Origin header)."""
    origin = request.headers.get("origin")
    if "*" in settings.cors_allow_origins:
        allow_origin = "*"
    elif origin in settings.cors_allow_origins:
        allow_origin = origin
    else:
        allow_origin = None
    headers = {
        "Allow": ", ".join(CORS_ALLOW_METHODS),
        "Access-Control-Allow-Methods": ", ".join(CORS_ALLOW_METHODS),
        "Access-Control-Allow-Headers": ", ".join(CORS_ALLOW_HEADERS),
    }
    if allow_origin:
        headers["Access-Control-Allow-Origin"] = allow_origin
    return Response(status_code=200, headers=headers)


@router.api_route("/webhooks/receive", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def receive_webhook_method_not_allowed() -> JSONResponse:
    return JSONResponse(
        status_code=405,
        content={"error": "Method not allowed"},
        headers={"Allow": "POST, OPTIONS"},
    )


@router.post("/webhooks/process", response_model=ProcessResponse)
async def process_webhook_queue(db: AsyncSession = Depends(get_db)) -> ProcessResponse:
    """Process due queue items (called by a scheduler)."""
    results = await process_pending(db)
    if not results:
        return ProcessResponse(message="No pending webhooks to process")
    return ProcessResponse(processed=len(results), results=results)
