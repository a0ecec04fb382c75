"""Primitive types and enums shared across vigil schemas."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated
from uuid import UUID

from pydantic import BeforeValidator, Field

ISO_8601_PATTERN = (
    r"^\d{4}-\d{2}-\d{2}T"
    r"\d{2}:\d{2}:\d{2}"
    r"(?:\.\d+)?"
    r"(?:Z|[+-]\d{2}:\d{2})$"
)
EVENT_NAME_PATTERN = r"^[a-z][a-z0-9_]*$"
COUNT_KEY_PATTERN = r"^[a-z][a-z0-9_]*$"

type WorkspaceId = Annotated[str, Field(min_length=1)]
type SessionId = UUID
type RequestId = UUID
type Timestamp = Annotated[str, Field(pattern=ISO_8601_PATTERN)]
type EventName = Annotated[str, Field(pattern=EVENT_NAME_PATTERN)]
type CountKey = Annotated[str, Field(pattern=COUNT_KEY_PATTERN)]
type StatusKey = Annotated[str, Field(min_length=1)]

type JsonPrimitive = str | int | float | bool | None
type JsonValue = JsonPrimitive | list["JsonValue"] | dict[str, "JsonValue"]


class TrackId(StrEnum):
    """Identifiers for the background workflows tracked during onboarding."""

    DISCOVERY = "discovery"
    SCRAPE = "scrape"
    EMAIL_IMPORT = "email_import"
    WEBSITE = "website"


class StageBadge(StrEnum):
    """Badge shown on a track card."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ERROR = "error"


class TrackErrorKind(StrEnum):
    """Origin of a track failure."""

    DECLARED = "declared"
    STALE = "stale"


class CountSource(StrEnum):
    """Where a count reference is resolved from."""

    COUNTS = "counts"
    DETAILS = "details"
    SIGNALS = "signals"


class LogLevel(StrEnum):
    """Log level values for JSONL logs."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LogSinkType(StrEnum):
    """Supported log sink types."""

    CONSOLE = "console"
    FILE = "file"
    NOOP = "noop"


def _enum_value(enum_type: type[StrEnum]) -> BeforeValidator:
    """Coerce raw strings to enum members ahead of strict validation."""

    def _coerce(value: object) -> object:
        if isinstance(value, str) and not isinstance(value, enum_type):
            return enum_type(value)
        return value

    return BeforeValidator(_coerce)


type TrackIdValue = Annotated[TrackId, _enum_value(TrackId)]
type StageBadgeValue = Annotated[StageBadge, _enum_value(StageBadge)]
type TrackErrorKindValue = Annotated[TrackErrorKind, _enum_value(TrackErrorKind)]
type CountSourceValue = Annotated[CountSource, _enum_value(CountSource)]
type LogLevelValue = Annotated[LogLevel, _enum_value(LogLevel)]
