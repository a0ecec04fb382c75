"""Configuration schemas for vigil observers."""

from __future__ import annotations

from urllib.parse import urlparse

from pydantic import Field, field_validator, model_validator

from vigil_schemas.base import BaseSchema
from vigil_schemas.primitives import CountKey, LogSinkType, TrackIdValue


def _validate_http_url(value: str, field_name: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"{field_name} must be an http/https URL with host")
    return value.rstrip("/")


class CountQueryConfig(BaseSchema):
    """Scoped count query against an entity table."""

    key: CountKey = Field(..., description="Count key referenced by tracks")
    table: str = Field(..., min_length=1, description="Entity table name")
    filters: dict[str, str] = Field(
        default_factory=dict,
        description="Extra column filters as PostgREST operators (eq.true)",
    )


class SignalSourceConfig(BaseSchema):
    """Auxiliary progress row flattened into snapshot signals."""

    table: str = Field(..., min_length=1, description="Progress table name")
    prefix: str = Field(..., min_length=1, description="Signal key prefix")
    columns: list[str] = Field(
        default_factory=list, description="Columns to read (empty reads all)"
    )


class JobTableConfig(BaseSchema):
    """Job table whose latest row is read as a workflow's status record."""

    workflow_type: str = Field(
        ..., min_length=1, description="Workflow type the rows report"
    )
    table: str = Field(..., min_length=1, description="Job table name")
    status_column: str = Field("status", min_length=1, description="Status column")
    order_column: str = Field(
        "created_at", min_length=1, description="Column selecting the latest job"
    )
    updated_column: str | None = Field(
        None, description="Last-update column; rows without one never go stale"
    )
    detail_columns: list[str] = Field(
        default_factory=list, description="Columns copied into record details"
    )
    filters: dict[str, str] = Field(
        default_factory=dict,
        description="Extra column filters as PostgREST operators (eq.true)",
    )


DEFAULT_COUNT_QUERIES = [
    CountQueryConfig(key="competitors_discovered", table="competitor_sites"),
    CountQueryConfig(
        key="competitors_selected",
        table="competitor_sites",
        filters={"is_selected": "eq.true"},
    ),
    CountQueryConfig(
        key="competitors_scraped",
        table="competitor_sites",
        filters={"scrape_status": "eq.scraped"},
    ),
    CountQueryConfig(
        key="faqs_generated",
        table="faq_database",
        filters={"is_own_content": "eq.false"},
    ),
    CountQueryConfig(key="emails_received", table="email_import_queue"),
    CountQueryConfig(
        key="emails_classified",
        table="email_import_queue",
        filters={"category": "not.is.null"},
    ),
]

DEFAULT_SIGNAL_SOURCES = [
    SignalSourceConfig(
        table="email_import_progress",
        prefix="email",
        columns=[
            "current_phase",
            "phase1_status",
            "voice_profile_complete",
            "estimated_total_emails",
            "emails_received",
            "emails_classified",
        ],
    )
]

DEFAULT_JOB_TABLES = [
    JobTableConfig(
        workflow_type="website_scrape",
        table="scraping_jobs",
        detail_columns=[
            "total_pages_found",
            "pages_processed",
            "faqs_found",
            "error_message",
        ],
        filters={"job_type": "eq.own_website"},
    )
]


class BackendConfig(BaseSchema):
    """Backend (PostgREST) connection settings."""

    url: str = Field(..., min_length=1, description="Backend base URL")
    api_key_env: str = Field(
        "VIGIL_BACKEND_KEY", min_length=1, description="Env var holding the API key"
    )
    status_table: str = Field(
        "n8n_workflow_progress", min_length=1, description="Status record table"
    )
    timeout_seconds: float = Field(10.0, gt=0, description="HTTP timeout")
    counts: list[CountQueryConfig] = Field(
        default_factory=lambda: list(DEFAULT_COUNT_QUERIES),
        description="Corroborating count queries",
    )
    signals: list[SignalSourceConfig] = Field(
        default_factory=lambda: list(DEFAULT_SIGNAL_SOURCES),
        description="Auxiliary progress rows",
    )
    job_tables: list[JobTableConfig] = Field(
        default_factory=lambda: list(DEFAULT_JOB_TABLES),
        description="Job tables read as status records",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        """Validate the backend URL.

        Args:
            value: Raw URL.

        Returns:
            str: URL without trailing slash.
        """
        return _validate_http_url(value, "backend.url")

    @model_validator(mode="after")
    def validate_unique_counts(self) -> BackendConfig:
        """Ensure count keys and job table workflow types are unique.

        Returns:
            BackendConfig: Validated backend configuration.

        Raises:
            ValueError: If count keys or job table workflow types are duplicated.
        """
        keys = [query.key for query in self.counts]
        if len(set(keys)) != len(keys):
            raise ValueError("backend.counts keys must be unique")
        workflow_types = [job.workflow_type for job in self.job_tables]
        if len(set(workflow_types)) != len(workflow_types):
            raise ValueError("backend.job_tables workflow types must be unique")
        return self

    def job_table_for(self, workflow_type: str) -> JobTableConfig | None:
        """Return the job table that reports a workflow type, if any."""
        for job in self.job_tables:
            if job.workflow_type == workflow_type:
                return job
        return None


class TriggerConfig(BaseSchema):
    """Stage-start trigger settings."""

    enabled: bool = Field(True, description="Fire stage-start calls")
    webhook_base_url: str | None = Field(
        None, description="Workflow automation webhook base URL"
    )
    callback_base_url: str | None = Field(
        None, description="Base URL callbacks are built from"
    )

    @field_validator("webhook_base_url", "callback_base_url")
    @classmethod
    def validate_urls(cls, value: str | None) -> str | None:
        """Validate optional trigger URLs.

        Args:
            value: Raw URL or None.

        Returns:
            str | None: URL without trailing slash.
        """
        if value is None:
            return None
        return _validate_http_url(value, "triggers URL")


class PollingConfig(BaseSchema):
    """Poll cadence and inference thresholds."""

    interval_seconds: float = Field(3.0, gt=0, description="Poll interval")
    stale_after_seconds: float = Field(
        600.0, gt=0, description="Inactivity before a track is failed"
    )
    completion_threshold: float = Field(
        0.99, gt=0, le=1, description="done/total ratio treated as success"
    )
    failure_window_seconds: float = Field(
        600.0, ge=0, description="Fetch failure duration before it is surfaced"
    )
    push_enabled: bool = Field(True, description="Wake on change notifications")


class LogSinkConfig(BaseSchema):
    """Configuration for a single log sink."""

    type: LogSinkType = Field(..., description="Log sink type (console|file|noop)")

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: object) -> LogSinkType:
        if isinstance(value, LogSinkType):
            return value
        if isinstance(value, str):
            return LogSinkType(value)
        return value  # type: ignore[return-value]


class LoggingConfig(BaseSchema):
    """Logging configuration for observer sessions."""

    sinks: list[LogSinkConfig] = Field(
        default_factory=lambda: [LogSinkConfig(type=LogSinkType.CONSOLE)],
        min_length=1,
        description="Log sinks to enable",
    )
    logs_dir: str = Field(
        ".vigil/logs", min_length=1, description="Directory for JSONL logs"
    )

    @model_validator(mode="after")
    def validate_sink_types(self) -> LoggingConfig:
        """Ensure log sink types are unique.

        Returns:
            LoggingConfig: Validated logging configuration.

        Raises:
            ValueError: If sink types are duplicated.
        """
        sink_types = [sink.type for sink in self.sinks]
        if len(set(sink_types)) != len(sink_types):
            raise ValueError("log sinks must not contain duplicates")
        return self


class VigilConfig(BaseSchema):
    """Top-level observer configuration."""

    backend: BackendConfig = Field(..., description="Backend settings")
    triggers: TriggerConfig = Field(
        default_factory=TriggerConfig, description="Trigger settings"
    )
    polling: PollingConfig = Field(
        default_factory=PollingConfig, description="Polling settings"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging settings"
    )
    tracks: list[TrackIdValue] | None = Field(
        None, description="Tracks to observe (all when omitted)"
    )

    @property
    def callback_base_url(self) -> str:
        """Base URL for stage callbacks."""
        if self.triggers.callback_base_url is not None:
            return self.triggers.callback_base_url
        return f"{self.backend.url}/functions/v1"
