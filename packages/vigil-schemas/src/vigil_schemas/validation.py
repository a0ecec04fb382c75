"""Validation entrypoints for config payloads."""

from __future__ import annotations

from vigil_schemas.config import VigilConfig
from vigil_schemas.primitives import JsonValue


def validate_vigil_config(payload: dict[str, JsonValue]) -> VigilConfig:
    """Validate observer configuration payload.

    Args:
        payload: Raw configuration payload.

    Returns:
        VigilConfig: Validated observer configuration.
    """
    return VigilConfig.model_validate(payload)
