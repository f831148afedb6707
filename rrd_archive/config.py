"""
Configuration for the archive maintainer and its transport.
"""

import os
from pathlib import Path
from typing import Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "RRD_ARCHIVE_"


class MaintainerConfig(BaseModel):
    """Tunables for polling, networking and graph alignment."""

    model_config = ConfigDict(extra="forbid")

    # Polling
    poll_interval_seconds: float = Field(5.0, gt=0, description="Timer period between poll ticks")
    rollback_failed_polls: bool = Field(
        True, description="Retry a tier on the next tick when its fetch failed"
    )

    # Networking
    request_timeout_seconds: float = Field(30.0, gt=0, description="Per-request HTTP timeout")
    verify_tls: bool = False  # Internal polling channel, peer verification off
    user_agent: str = Field("rrd-archive/1.0", min_length=1)
    worker_threads: int = Field(1, ge=1, le=64, description="Size of an owned worker pool")

    # Clock handling
    graph_margin_seconds: int = Field(15, ge=0, description="Lag applied to graph_now()")
    clock_skew_threshold_seconds: int = Field(
        2, ge=0, description="Minimum drift before the derived offset is recorded"
    )

    @classmethod
    def from_env(cls) -> "MaintainerConfig":
        """Create config from RRD_ARCHIVE_* environment variables."""
        return cls(
            poll_interval_seconds=float(os.getenv(f"{ENV_PREFIX}POLL_INTERVAL", "5")),
            rollback_failed_polls=os.getenv(f"{ENV_PREFIX}ROLLBACK_FAILED_POLLS", "true").lower()
            in ("1", "true", "yes"),
            request_timeout_seconds=float(os.getenv(f"{ENV_PREFIX}REQUEST_TIMEOUT", "30")),
            verify_tls=os.getenv(f"{ENV_PREFIX}VERIFY_TLS", "false").lower() in ("1", "true", "yes"),
            user_agent=os.getenv(f"{ENV_PREFIX}USER_AGENT", "rrd-archive/1.0"),
            worker_threads=int(os.getenv(f"{ENV_PREFIX}WORKER_THREADS", "1")),
            graph_margin_seconds=int(os.getenv(f"{ENV_PREFIX}GRAPH_MARGIN", "15")),
            clock_skew_threshold_seconds=int(os.getenv(f"{ENV_PREFIX}CLOCK_SKEW_THRESHOLD", "2")),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "MaintainerConfig":
        """
        Load config from a YAML mapping.

        Raises:
            FileNotFoundError: If the file does not exist
            pydantic.ValidationError: If a value is out of range or unknown
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)
