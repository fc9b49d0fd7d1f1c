"""
Process settings of the integration gateway.

Read from environment variables, optionally seeded from a ``.env`` file.
"""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class GatewaySettings(BaseModel):
    """
    Runtime settings.

    Attributes:
        redis_url: Redis connection URL; None selects the in-memory store
        retry_tick_seconds: Interval of the router's retry scan
        http_timeout_seconds: Timeout of webhook/api deliveries
        metrics_port: Port of the Prometheus endpoint; None disables it
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: json or text
        event_channel_size: Capacity of the domain event channel
    """

    redis_url: str | None = None
    retry_tick_seconds: float = Field(5.0, gt=0)
    http_timeout_seconds: float = Field(30.0, gt=0)
    metrics_port: int | None = None
    log_level: str = "INFO"
    log_format: str = "json"
    event_channel_size: int = Field(1000, ge=1)

    @classmethod
    def from_env(cls, env_file: str | None = None) -> "GatewaySettings":
        """
        Build settings from the environment.

        Args:
            env_file: Optional .env file; values already set in the
                      environment win

        Returns:
            GatewaySettings
        """
        if env_file and os.path.exists(env_file):
            load_dotenv(env_file, override=False)

        metrics_port = os.getenv("METRICS_PORT")
        return cls(
            redis_url=os.getenv("REDIS_URL") or None,
            retry_tick_seconds=float(os.getenv("RETRY_TICK_SECONDS", "5")),
            http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")),
            metrics_port=int(metrics_port) if metrics_port else None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "json"),
            event_channel_size=int(os.getenv("EVENT_CHANNEL_SIZE", "1000")),
        )
