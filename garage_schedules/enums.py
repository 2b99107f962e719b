"""
Enum coercion for billing type and frequency.

The model is told the exact vocabularies but still returns "Usage",
"monthly", "Tiered - per unit" and worse. Resolution order everywhere:
literal value → case-insensitive value → keyword heuristics → fallback.
None of these functions raise; no signal means the fallback.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Any, TypeVar

from .coercion import safe_int
from .config import DEFAULT_POLICY, FrequencyKeyword
from .models import BillingType, FrequencyUnit

E = TypeVar("E", bound=Enum)


def clamp_enum(value: Any, allowed: Iterable[E], fallback: E | None) -> E | None:
    """Case-insensitive exact match of `value` against the enum values in `allowed`."""
    if isinstance(value, Enum):
        value = value.value
    if not isinstance(value, str) or not value.strip():
        return fallback
    wanted = value.strip().lower()
    for member in allowed:
        if str(member.value).lower() == wanted:
            return member
    return fallback


def normalize_billing_type(
    raw_label: Any,
    *,
    has_tiers: bool = False,
    has_unit_pair: bool = False,
) -> BillingType:
    """Propose a billing type from the model's label and structural hints.

    This is only a proposal: the policy engine still decides whether a
    usage or tiered type is justified by the evidence.
    """
    literal = clamp_enum(raw_label, BillingType, None)
    if literal is not None:
        return literal

    text = raw_label.lower() if isinstance(raw_label, str) else ""
    if "tier" in text and "unit" in text:
        return BillingType.TIER_UNIT
    if "tier" in text and "flat" in text:
        return BillingType.TIER_FLAT
    if "tier" in text:
        return BillingType.TIER_UNIT
    if any(word in text for word in ("unit", "usage", "metered")):
        return BillingType.UNIT

    if has_tiers:
        return BillingType.TIER_UNIT
    if has_unit_pair:
        return BillingType.UNIT
    return BillingType.FLAT


def normalize_frequency(
    free_text: Any,
    raw_every: Any,
    raw_unit: Any,
    fallback_unit: FrequencyUnit = FrequencyUnit.NONE,
    keywords: Sequence[FrequencyKeyword] | None = None,
) -> tuple[int, FrequencyUnit]:
    """Resolve (every, unit) for a schedule.

    A valid `raw_unit` wins outright. Otherwise `free_text` is searched for
    cadence keywords in table order (one-time → annual → quarter → month →
    week → semi → day); the first hit decides both unit and every.
    """
    if keywords is None:
        keywords = DEFAULT_POLICY.frequency_keywords

    every = safe_int(raw_every)
    if every is None or every < 1:
        every = 1

    unit = clamp_enum(raw_unit, FrequencyUnit, None)
    if unit is None:
        text = free_text.lower() if isinstance(free_text, str) else ""
        unit = fallback_unit
        if text:
            for rule in keywords:
                if rule.keyword in text:
                    unit, every = rule.unit, rule.every
                    break

    if unit == FrequencyUnit.NONE:
        every = 1
    return every, unit
