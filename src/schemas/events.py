"""Pydantic models for normalized events and endpoint responses."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class NormalizedEvent(BaseModel):
    """Canonical identity extracted from a provider payload."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    event_id: str


class WebhookAck(BaseModel):
    success: bool = True
    event_id: str
    webhook_event_id: Optional[int] = None
    message: str


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None


class ProcessResult(BaseModel):
    event_id: str
    status: str
    retry_count: Optional[int] = None
    next_retry: Optional[str] = None
    error: Optional[str] = None


class ProcessResponse(BaseModel):
    success: bool = True
    processed: int = 0
    message: Optional[str] = None
    results: list[ProcessResult] = Field(default_factory=list)
