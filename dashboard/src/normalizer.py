"""
Pure normalizer that converts raw push/pull payloads into a Reading.

Payloads reach the dashboard in several shapes: flat
(``{"device_id": ..., "voltage": ...}``), nested under ``data`` with the
timestamp on the envelope (``{"timestamp": ..., "data": {...}}``), with
numbers encoded as strings, and with status flags as booleans, 0/1 or
``"ON"``/``"OFF"``. This module is the only place those shapes are handled;
everything past it sees a canonical :class:`Reading`.

Coercion rules:
- Missing or empty ``device_id`` / ``timestamp`` -> :class:`InvalidReading`.
- Measurement fields that are missing, non-numeric, NaN/inf or negative
  become ``None`` (unknown). They never raise and never become zero.
- Flags that cannot be interpreted become ``False``.

This is a pure function: no side effects, no I/O, no clock.

CHANGELOG:
- 2026-10-19: Accept ON/OFF strings for pump and PIR flags
- 2026-10-19: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import TypeAdapter, ValidationError

from dashboard.src.errors import InvalidReading
from dashboard.src.models import FLAG_FIELDS, MEASUREMENT_FIELDS, Reading

logger = logging.getLogger(__name__)

_DATETIME_ADAPTER: TypeAdapter[datetime] = TypeAdapter(datetime)

_TRUE_STRINGS = frozenset({"true", "1", "on", "yes", "active"})
_FALSE_STRINGS = frozenset({"false", "0", "off", "no", "inactive", ""})


# ---------------------------------------------------------------------------
# Field coercion helpers
# ---------------------------------------------------------------------------


def _coerce_measurement(name: str, value: Any) -> float | None:
    """Coerce a measurement to a non-negative float, or None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.debug("Field '%s': non-numeric value %r treated as unknown", name, value)
        return None
    if not math.isfinite(number) or number < 0:
        logger.debug("Field '%s': value %r treated as unknown", name, value)
        return None
    return number


def _coerce_flag(value: Any) -> bool:
    """Interpret a device status flag; anything unrecognised is False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered not in _FALSE_STRINGS:
            logger.debug("Unrecognised flag value %r treated as False", value)
    return False


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO 8601 string, epoch number or datetime into aware UTC.

    Naive datetimes are assumed to be UTC. Epoch values follow pydantic's
    rules (seconds, or milliseconds for large values).

    Raises:
        InvalidReading: If *value* is empty or cannot be parsed.
    """
    if value is None or value == "":
        raise InvalidReading("Reading has no timestamp")
    if isinstance(value, bool):
        raise InvalidReading(f"Invalid timestamp: {value!r}")
    try:
        parsed = _DATETIME_ADAPTER.validate_python(value)
    except ValidationError as exc:
        raise InvalidReading(f"Invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _flatten(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Merge a ``data``-nested payload into one flat dict.

    Fields inside ``data`` win over envelope fields, except ``timestamp`` and
    ``device_id`` which the envelope may carry on its own.
    """
    nested = payload.get("data")
    if not isinstance(nested, Mapping):
        return dict(payload)

    flat = {k: v for k, v in payload.items() if k != "data"}
    flat.update(nested)
    for key in ("timestamp", "device_id"):
        if payload.get(key) not in (None, ""):
            flat[key] = payload[key]
    return flat


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize(payload: Mapping[str, Any]) -> Reading:
    """Convert a raw push or pull payload into a canonical Reading.

    Args:
        payload: Flat reading dict, or an envelope with the reading nested
            under ``data``.

    Returns:
        The normalized :class:`Reading`.

    Raises:
        InvalidReading: If the payload is not a mapping, or is missing its
            ``device_id`` or ``timestamp``.
    """
    if not isinstance(payload, Mapping):
        raise InvalidReading(f"Payload must be an object, got {type(payload).__name__}")

    flat = _flatten(payload)

    device_id = flat.get("device_id")
    if device_id is None or str(device_id).strip() == "":
        raise InvalidReading("Reading has no device_id")

    timestamp = parse_timestamp(flat.get("timestamp"))

    fields: dict[str, Any] = {
        name: _coerce_measurement(name, flat.get(name)) for name in MEASUREMENT_FIELDS
    }
    for name in FLAG_FIELDS:
        fields[name] = _coerce_flag(flat.get(name))

    return Reading(device_id=str(device_id).strip(), timestamp=timestamp, **fields)
