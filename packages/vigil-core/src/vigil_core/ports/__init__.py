"""Ports for status sources, stage starters and session sinks."""

from vigil_core.ports.dispatch import (
    DispatchError,
    DispatchErrorCode,
    DispatchErrorDetails,
    DispatchErrorInfo,
    StageStarterProtocol,
    StageStartRequest,
)
from vigil_core.ports.session import (
    LogSinkProtocol,
    ProgressSinkProtocol,
    SessionError,
    SessionErrorCode,
    SessionErrorDetails,
    SessionErrorInfo,
)
from vigil_core.ports.source import (
    ChangeFeedProtocol,
    ChangeNotification,
    SourceError,
    SourceErrorCode,
    SourceErrorDetails,
    SourceErrorInfo,
    StatusSourceProtocol,
    StatusWrite,
    StatusWriterProtocol,
)

__all__ = [
    "ChangeFeedProtocol",
    "ChangeNotification",
    "DispatchError",
    "DispatchErrorCode",
    "DispatchErrorDetails",
    "DispatchErrorInfo",
    "LogSinkProtocol",
    "ProgressSinkProtocol",
    "SessionError",
    "SessionErrorCode",
    "SessionErrorDetails",
    "SessionErrorInfo",
    "SourceError",
    "SourceErrorCode",
    "SourceErrorDetails",
    "SourceErrorInfo",
    "StageStartRequest",
    "StageStarterProtocol",
    "StatusSourceProtocol",
    "StatusWrite",
    "StatusWriterProtocol",
]
