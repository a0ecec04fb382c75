"""Backend adapters for status sources, writers and stage starters."""

from vigil_io.backend.feed import InMemoryChangeFeed
from vigil_io.backend.memory import InMemoryStatusSource
from vigil_io.backend.postgrest import (
    PostgrestStatusSource,
    PostgrestStatusWriter,
    parse_content_range,
)
from vigil_io.backend.webhook import WebhookStageStarter

__all__ = [
    "InMemoryChangeFeed",
    "InMemoryStatusSource",
    "PostgrestStatusSource",
    "PostgrestStatusWriter",
    "WebhookStageStarter",
    "parse_content_range",
]
