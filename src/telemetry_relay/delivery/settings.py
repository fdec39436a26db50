from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeliverySettings(BaseSettings):
    """Environment-driven engine configuration (``TELEMETRY_*`` variables).

    Example:
        TELEMETRY_ENDPOINT=http://localhost:3000/telemetry
        TELEMETRY_MAX_BATCH_SIZE=50
    """

    model_config = SettingsConfigDict(
        env_prefix="TELEMETRY_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    endpoint: str
    engine_id: str = "default"

    flush_interval_ms: int = Field(5000, gt=0)
    max_batch_size: int = Field(20, gt=0)
    max_queue_size: int = Field(1000, gt=0)
    max_retries: int = Field(3, ge=0)
    backoff_base_ms: int = Field(1000, gt=0)
    max_backoff_ms: Optional[int] = Field(None, gt=0)

    request_timeout_s: float = Field(10.0, gt=0)

    probe_url: Optional[str] = None
    probe_interval_s: float = Field(5.0, gt=0)

    dlq_path: Optional[str] = None
