"""Structured telemetry events emitted by the patch engine."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path, PurePath
from typing import Any, Mapping

TELEMETRY_LOGGER = logging.getLogger("patchstack.telemetry")


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (Path, PurePath)):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def emit_event(event: str, **fields: Any) -> None:
    """Log a single-line JSON event on the ``patchstack.telemetry`` logger."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    message = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
    TELEMETRY_LOGGER.info(message)


__all__ = ["TELEMETRY_LOGGER", "emit_event"]
