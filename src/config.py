"""Configuration for webhook-ingest-service."""

import json

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./webhooks.db"
    api_prefix: str = "/api/v1"
    debug: bool = False
    cors_allow_origins: list[str] = ["*"]

    # Provider secrets. An empty value disables verification for that source.
    stripe_webhook_secret: str = Field(
        default="",
        validation_alias=AliasChoices("WEBHOOK_STRIPE_WEBHOOK_SECRET", "STRIPE_WEBHOOK_SECRET"),
    )
    quickbooks_verifier_token: str = Field(
        default="",
        validation_alias=AliasChoices(
            "WEBHOOK_QUICKBOOKS_VERIFIER_TOKEN", "QUICKBOOKS_WEBHOOK_VERIFIER_TOKEN"
        ),
    )

    # Queue consumer
    queue_max_retries: int = 6
    queue_retry_delays: list[int] = [1, 2, 4, 8, 16, 32]
    queue_batch_size: int = 10
    queue_claim_timeout_seconds: int = 300

    model_config = {"env_prefix": "WEBHOOK_", "populate_by_name": True}

    @field_validator("queue_retry_delays", mode="before")
    @classmethod
    def _parse_queue_retry_delays(cls, value: object) -> object:
        if value in (None, ""):
            return [1, 2, 4, 8, 16, 32]
        if isinstance(value, str):
            value = json.loads(value)
        if not isinstance(value, list) or not value:
            raise TypeError("queue_retry_delays must be a non-empty list or JSON array string")
        if any(int(delay) <= 0 for delay in value):
            raise ValueError("queue_retry_delays must contain positive seconds")
        return value

    def verification_secrets(self) -> dict[str, str]:
        """Return configured secrets keyed by source tag, skipping empty ones."""
        secrets = {
            "stripe": self.stripe_webhook_secret,
            "quickbooks": self.quickbooks_verifier_token,
        }
        return {source: secret for source, secret in secrets.items() if secret}


settings = Settings()
