"""Runtime settings, read from ``BATCHCTL_*`` environment variables."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import BatchOptions


class Settings(BaseSettings):
    """System configuration. All delays are in seconds."""
    model_config = SettingsConfigDict(env_prefix="BATCHCTL_", env_file=".env", extra="ignore")

    # rate-limited queue
    request_delay: float = Field(default=5.0, ge=0)
    queue_max_retries: int = Field(default=4, ge=0)
    queue_retry_base_delay: float = Field(default=10.0, ge=0)  # exponential backoff base

    # batch scheduler defaults
    batch_size: int = Field(default=5, ge=1)
    max_concurrent: Optional[int] = Field(default=None, ge=1)
    item_retry_attempts: int = Field(default=3, ge=1)
    item_retry_base_delay: float = Field(default=1.0, ge=0)
    inter_batch_delay: float = Field(default=0.1, ge=0)

    # registry housekeeping
    job_retention_hours: float = Field(default=24, gt=0)
    cleanup_interval: float = Field(default=3600, gt=0)

    command_timeout: float = Field(default=300, gt=0)
    data_dir: str = ".batchctl"

    def batch_options(self) -> BatchOptions:
        return BatchOptions(
            batch_size=self.batch_size,
            max_concurrent=self.max_concurrent,
            item_retry_attempts=self.item_retry_attempts,
            item_retry_base_delay=self.item_retry_base_delay,
            inter_batch_delay=self.inter_batch_delay,
        )
