"""Log and progress sink adapters."""

from vigil_io.storage.log_sink import (
    CompositeLogSink,
    ConsoleLogSink,
    FileLogSink,
    InMemoryLogSink,
    NoopLogSink,
    build_log_sink,
)
from vigil_io.storage.progress_sink import (
    CompositeProgressSink,
    FileSystemProgressSink,
    InMemoryProgressSink,
    read_progress_updates,
)

__all__ = [
    "CompositeLogSink",
    "CompositeProgressSink",
    "ConsoleLogSink",
    "FileLogSink",
    "FileSystemProgressSink",
    "InMemoryLogSink",
    "InMemoryProgressSink",
    "NoopLogSink",
    "build_log_sink",
    "read_progress_updates",
]
