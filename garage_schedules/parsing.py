"""
Parsing of raw model responses into ExtractionRun envelopes.

Models wrap JSON in prose or code fences often enough that a plain
json.loads is not sufficient. Recovery is deliberately simple: take the
text between the first "{" and the last "}" and try again. If that fails
too, the run degrades to zero schedules plus an issue; it does not raise.

The one thing that does raise is input that is structurally not an object
(a JSON array, a number, a Python list): there is no sensible schedule list
to recover from that.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from .exceptions import PayloadStructureError
from .models import ExtractionRun

logger = logging.getLogger(__name__)

UNPARSEABLE_ISSUE = "Could not parse model JSON"


def load_model_json(text: str) -> dict[str, Any] | None:
    """Parse model text to a dict, recovering from surrounding noise.

    Returns:
        The parsed object, or None when nothing parseable was found.

    Raises:
        PayloadStructureError: If the text is valid JSON but not an object.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            return None
        try:
            data = json.loads(text[start: end + 1])
        except json.JSONDecodeError:
            return None
        logger.info("Recovered model JSON from characters %d-%d", start, end)

    if not isinstance(data, dict):
        raise PayloadStructureError(
            f"Model JSON must be an object, got {type(data).__name__}",
            {"type": type(data).__name__},
        )
    return data


def parse_model_output(payload: str | bytes | Mapping[str, Any]) -> ExtractionRun:
    """Turn one model response (text or already-decoded mapping) into an ExtractionRun."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")

    if isinstance(payload, str):
        data = load_model_json(payload)
        if data is None:
            logger.warning("Model output could not be parsed as JSON")
            return ExtractionRun(schedules=[], issues=[UNPARSEABLE_ISSUE])
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise PayloadStructureError(
            f"Model payload must be JSON text or an object, got {type(payload).__name__}",
            {"type": type(payload).__name__},
        )

    raw_issues = data.get("issues")
    issues = [i for i in raw_issues if isinstance(i, str)] if isinstance(raw_issues, list) else []

    raw_schedules = data.get("schedules")
    schedules: list[dict[str, Any]] = []
    if not isinstance(raw_schedules, list):
        issues.append("Model output has no schedules array")
    else:
        for n, item in enumerate(raw_schedules, start=1):
            if isinstance(item, Mapping):
                schedules.append(dict(item))
            else:
                issues.append(f"Skipped schedule entry #{n}: not an object")

    totals_check = data.get("totals_check")
    recommendations = data.get("model_recommendations")
    return ExtractionRun(
        schedules=schedules,
        issues=issues,
        totals_check=dict(totals_check) if isinstance(totals_check, Mapping) else None,
        model_recommendations=dict(recommendations) if isinstance(recommendations, Mapping) else None,
    )
