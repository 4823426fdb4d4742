"""
Response Parser Module for Agent Trader.

Turns raw inference text into a typed role report. A reply that does not
validate on the first attempt gets exactly one repair pass (code fences
stripped, the outermost JSON object cut out, trailing commas removed,
numbers clamped into range, enum strings lower-cased) before it is
declared malformed.
"""

import json
import logging
import re
from typing import Any, Optional, Union

from pydantic import ValidationError

from agent_trader.ai.reports import (
    REPORT_MODELS,
    FailureCause,
    RoleFailure,
    RoleKind,
)
from agent_trader.utils.helpers import clamp, is_finite_number, truncate


logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

# Bounds applied during repair, keyed by the names models may emit.
_UNIT_FIELDS = ("confidence", "strength", "riskScore", "risk_score")
_SIGNED_UNIT_FIELDS = ("score",)
_LOWERCASE_FIELDS = ("recommendation", "action", "valuation", "sentiment")
_POSITIVE_OPTIONAL_FIELDS = ("targetPrice", "target_price", "stopLoss", "stop_loss", "positionSize", "position_size")


def extract_json_object(text: str) -> Optional[str]:
    """
    Cut the JSON object out of a reply that may contain extra text.

    Prefers the body of a fenced code block, then the span from the first
    ``{`` to the last ``}``.

    Args:
        text: Raw reply

    Returns:
        Candidate JSON text, or None when no object is present
    """
    candidate = text.strip()
    fence = _FENCE_RE.search(candidate)
    if fence:
        candidate = fence.group(1).strip()

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        return None
    candidate = candidate[start:end + 1]
    return _TRAILING_COMMA_RE.sub(r"\1", candidate)


def coerce_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy with numeric fields clamped and enum strings lower-cased."""
    data = dict(data)
    for key in _UNIT_FIELDS:
        if is_finite_number(data.get(key)):
            data[key] = clamp(float(data[key]), 0.0, 1.0)
    for key in _SIGNED_UNIT_FIELDS:
        if is_finite_number(data.get(key)):
            data[key] = clamp(float(data[key]), -1.0, 1.0)
    for key in _LOWERCASE_FIELDS:
        if isinstance(data.get(key), str):
            data[key] = data[key].strip().lower().replace(" ", "_")
    for key in _POSITIVE_OPTIONAL_FIELDS:
        value = data.get(key)
        if value is not None and (not is_finite_number(value) or value <= 0):
            data[key] = None
    position_size = data.get("positionSize", data.get("position_size"))
    if is_finite_number(position_size) and position_size > 100:
        data.pop("positionSize", None)
        data["position_size"] = 100.0
    return data


class ResponseParser:
    """
    Validates inference replies against the role's report model.

    Keeps simple counters so callers can see how often repair was needed.
    """

    def __init__(self) -> None:
        self.parse_count = 0
        self.repair_count = 0
        self.failure_count = 0

    def parse(self, role: RoleKind, raw: str) -> Union[Any, RoleFailure]:
        """
        Parse a raw reply into a report for ``role``.

        Args:
            role: Role that produced the reply
            raw: Raw reply text

        Returns:
            The role's report model, or RoleFailure(malformed_output)
        """
        self.parse_count += 1

        data = self._loads(raw.strip())
        if data is not None:
            report = self._validate(role, data)
            if report is not None:
                return report

        self.repair_count += 1
        candidate = extract_json_object(raw)
        repaired = self._loads(candidate) if candidate is not None else None
        if repaired is not None:
            report = self._validate(role, coerce_fields(repaired))
            if report is not None:
                logger.debug(f"Repaired {role.value} reply", extra={"role": role.value})
                return report

        self.failure_count += 1
        logger.warning(
            f"Malformed {role.value} reply after repair",
            extra={"role": role.value, "raw": truncate(raw, 200)},
        )
        return RoleFailure(
            role=role,
            cause=FailureCause.MALFORMED_OUTPUT,
            detail=truncate(raw.strip(), 120) or "empty reply",
        )

    @staticmethod
    def _loads(text: str) -> Optional[dict[str, Any]]:
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _validate(role: RoleKind, data: dict[str, Any]) -> Optional[Any]:
        payload = dict(data)
        payload["role"] = role.value
        payload.pop("placeholder", None)
        try:
            return REPORT_MODELS[role].model_validate(payload)
        except ValidationError as e:
            logger.debug(f"{role.value} reply failed validation: {e.error_count()} errors")
            return None

    def get_stats(self) -> dict[str, Any]:
        """Get parsing statistics."""
        return {
            "parsed": self.parse_count,
            "repaired": self.repair_count,
            "failures": self.failure_count,
        }
