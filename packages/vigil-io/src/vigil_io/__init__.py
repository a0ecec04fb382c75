"""vigil-io: backend and storage adapters."""

from vigil_io.backend import (
    InMemoryChangeFeed,
    InMemoryStatusSource,
    PostgrestStatusSource,
    PostgrestStatusWriter,
    WebhookStageStarter,
    parse_content_range,
)
from vigil_io.storage import (
    CompositeLogSink,
    CompositeProgressSink,
    ConsoleLogSink,
    FileLogSink,
    FileSystemProgressSink,
    InMemoryLogSink,
    InMemoryProgressSink,
    NoopLogSink,
    build_log_sink,
    read_progress_updates,
)

__version__ = "0.1.0"

__all__ = [
    "CompositeLogSink",
    "CompositeProgressSink",
    "ConsoleLogSink",
    "FileLogSink",
    "FileSystemProgressSink",
    "InMemoryChangeFeed",
    "InMemoryLogSink",
    "InMemoryProgressSink",
    "InMemoryStatusSource",
    "NoopLogSink",
    "PostgrestStatusSource",
    "PostgrestStatusWriter",
    "WebhookStageStarter",
    "build_log_sink",
    "parse_content_range",
    "read_progress_updates",
]
