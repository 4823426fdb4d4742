"""
Helper Functions Module for Agent Trader.

Small value helpers used by the pipeline, the risk layer and the store.
"""

import json
import math
import uuid
from typing import Any


def generate_uuid() -> str:
    """Random id for models and persisted rows."""
    return str(uuid.uuid4())


def truncate(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Shorten text for log lines and failure details.

    Args:
        text: Text to shorten
        max_length: Length of the result, suffix included
        suffix: Marker appended when text was cut

    Returns:
        text unchanged if it fits, otherwise a cut copy ending in suffix
    """
    if len(text) <= max_length:
        return text
    keep = max(0, max_length - len(suffix))
    return f"{text[:keep]}{suffix}"


def clamp(value: float, min_value: float, max_value: float) -> float:
    """Bound value to [min_value, max_value]."""
    if value < min_value:
        return min_value
    if value > max_value:
        return max_value
    return value


def is_finite_number(value: Any) -> bool:
    """Return True for real, finite ints and floats (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def safe_json_loads(text: Any, default: Any = None) -> Any:
    """
    Decode a JSON column or payload.

    Empty, NULL or undecodable input yields ``default``.
    """
    if not text:
        return default
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return default


def safe_json_dumps(data: Any, default: str = "{}") -> str:
    """Encode data as JSON; values json cannot handle are stringified."""
    try:
        return json.dumps(data, default=str)
    except (TypeError, ValueError):
        return default
