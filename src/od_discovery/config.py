"""Centralized configuration for od-discovery using Pydantic Settings."""

from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .domain.liveness import (
    DEFAULT_DEAD_THRESHOLD,
    DEFAULT_RESYNC_INTERVAL,
    DEFAULT_STREAK_CAP,
    LivenessPolicy,
)


# Hosts that front the same content-indexing provider under a different name to
# get past bot filters. Requests are sent to the canonical host with the
# original URL as Referer.
DEFAULT_PROBE_DOMAIN_ALIASES: dict[str, str] = {
    "hashhackers.workers.dev": "hashhackers.com",
}


class ObservabilityCollectorConfig(BaseModel):
    """Configuration for OTLP trace and metric export."""

    model_config = {"extra": "forbid"}

    enabled: Annotated[bool, Field(description="Enable OTLP export to an external collector")] = False

    otlp_protocol: Annotated[Literal["http", "grpc"], Field(description="OTLP transport protocol")] = "grpc"

    collector_endpoint: Annotated[
        str,
        Field(
            description="OTLP collector endpoint (HTTP uses /v1/traces)",
            examples=["http://localhost:4317", "http://localhost:4318/v1/traces"],
        ),
    ] = "http://localhost:4317"

    headers: Annotated[dict[str, str], Field(description="Optional headers to include with OTLP requests")] = Field(
        default_factory=dict
    )

    timeout_seconds: Annotated[int, Field(ge=1, le=60, description="OTLP exporter timeout in seconds")] = 10

    grpc_insecure: Annotated[bool, Field(description="Allow insecure gRPC (plaintext) connections")] = True

    resource_attributes: Annotated[
        dict[str, str],
        Field(description="Additional OpenTelemetry resource attributes"),
    ] = Field(default_factory=dict)


class Settings(BaseSettings):
    """Strictly typed configuration loaded from environment variables.

    Every option the reconciler recognizes lives here with its default; nothing
    downstream hardcodes a threshold, pool size or chunk size.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Liveness hysteresis
    dead_threshold: int = Field(
        default=DEFAULT_DEAD_THRESHOLD, ge=1, description="Unreachable streak at which a root is considered dead"
    )
    streak_cap: int = Field(
        default=DEFAULT_STREAK_CAP, ge=1, description="Ceiling for the unreachable streak counter"
    )
    resync_interval: int = Field(
        default=DEFAULT_RESYNC_INTERVAL,
        ge=0,
        description="Repeat index removal every N streak units past the threshold (0 disables)",
    )
    track_link_liveness: bool = Field(
        default=False, description="Probe links of alive roots individually and apply per-link hysteresis"
    )

    # Probing
    probe_timeout_seconds: float = Field(default=30.0, gt=0, description="Wall-clock bound for a single probe")
    worker_pool_size: int = Field(default=32, ge=1, le=512, description="Maximum concurrent probes")
    probe_user_agent: str = Field(
        default="Mozilla/5.0 (compatible; odcrawler-discovery/0.4; +https://odcrawler.xyz)",
        description="User-Agent sent with every probe",
    )
    probe_domain_aliases: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_PROBE_DOMAIN_ALIASES),
        description="Host alias -> canonical host rewrites applied before probing",
    )
    progress_interval: int = Field(default=500, ge=1, description="Log checker progress every N probes")

    # Scheduler
    tick_interval_seconds: float = Field(default=3.0, gt=0, description="Seconds between scheduler ticks")
    reconcile_frequency: int = Field(default=1200, ge=0, description="Run reconciliation every N ticks")
    stats_frequency: int = Field(default=100, ge=0, description="Refresh stats.json every N ticks")
    resync_index_frequency: int = Field(
        default=0, ge=0, description="Full index re-export every N ticks (0 disables)"
    )
    continue_on_task_error: bool = Field(
        default=True, description="Keep running the remaining tasks of a tick after one fails"
    )

    # Index sync
    index_add_chunk_size: int = Field(default=5_000, ge=1, description="Entries per bulk add request")
    index_remove_chunk_size: int = Field(default=5_000, ge=1, description="Ids per bulk delete request")
    index_stream_batch_size: int = Field(
        default=50_000, ge=1, description="Links pulled from the store before each bulk add"
    )
    link_insert_chunk_size: int = Field(default=1_000, ge=1, description="Links per store insert batch")

    # Storage
    datastore_path: str = Field(default="od_discovery.sqlite3", description="SQLite database file (or :memory:)")
    stats_path: Path = Field(default=Path("public/stats.json"), description="Where the stats task writes")

    # Search index
    elastic_url: str = Field(default="http://127.0.0.1:9200", description="Elasticsearch base URL")
    elastic_index: str = Field(default="links", description="Index holding link documents")
    elastic_user: str = Field(default="elastic", description="Basic auth user")
    elastic_password: str = Field(default="", description="Basic auth password")
    elastic_timeout_seconds: float = Field(default=60.0, gt=0, description="Bulk request timeout")

    # Observability
    log_level: str = Field(default="info", description="Logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")
    metrics_port: int = Field(default=0, ge=0, le=65535, description="Prometheus exporter port (0 disables)")
    otlp_enabled: bool = Field(default=False, description="Export traces and metrics over OTLP")
    otlp_protocol: Literal["http", "grpc"] = Field(default="grpc", description="OTLP transport protocol")
    otlp_endpoint: str = Field(default="http://localhost:4317", description="OTLP collector endpoint")
    otlp_timeout_seconds: int = Field(default=10, ge=1, le=60, description="OTLP exporter timeout")

    @model_validator(mode="after")
    def _check_streak_bounds(self) -> "Settings":
        if self.streak_cap < self.dead_threshold:
            raise ValueError(
                f"STREAK_CAP ({self.streak_cap}) must be greater than or equal to "
                f"DEAD_THRESHOLD ({self.dead_threshold})."
            )
        return self

    def liveness_policy(self) -> LivenessPolicy:
        """Build the hysteresis policy from the configured thresholds."""
        return LivenessPolicy(
            dead_threshold=self.dead_threshold,
            streak_cap=self.streak_cap,
            resync_interval=self.resync_interval,
        )

    def observability_config(self) -> ObservabilityCollectorConfig:
        return ObservabilityCollectorConfig(
            enabled=self.otlp_enabled,
            otlp_protocol=self.otlp_protocol,
            collector_endpoint=self.otlp_endpoint,
            timeout_seconds=self.otlp_timeout_seconds,
            resource_attributes={"service.namespace": "odcrawler"},
        )
