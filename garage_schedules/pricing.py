"""
Price resolution for a single schedule.

Strict precedence, first success wins:
  1. A positive number in a structured field (priority list from policy)
  2. The best-scoring "$X,XXX.XX" token in evidence / description / name
  3. An explicit zero: a structured 0, or free / waived / "$0" / 100% off text

If all three fail the price stays None and an issue says so. Zero is never
a default here; it is only ever the result of an explicit no-charge signal.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from .coercion import MAX_MAGNITUDE, safe_decimal
from .config import DEFAULT_POLICY, PolicyConfig
from .models import BillingType, FrequencyUnit, ScheduleRecord

logger = logging.getLogger(__name__)

_CURRENCY = re.compile(r"\$\s?(\d{1,3}(?:,\d{3})+|\d+)(?:\.(\d{1,2}))?(?!\d)")
_ZERO_AMOUNT = re.compile(r"\$\s?0+(?:\.0+)?(?![\d.,]*[1-9])")
_FULL_DISCOUNT = re.compile(r"100\s?%\s*(?:discount|off)")

# Candidates whose context is dominated by discount/credit/tax wording
_DISCARD_AT_OR_BELOW = -2.0

ZERO_PRICE_ISSUE = "total_price set to 0: explicit no-charge signal (free / waived / $0)"
NO_PRICE_ISSUE = "total_price not found in structured fields or evidence text; left empty"


@dataclass
class PriceCandidate:
    """A currency token found in free text, with its context score."""

    value: Decimal
    score: float
    context: str


@dataclass
class PriceResolution:
    """Outcome of resolving one schedule's price."""

    value: Decimal | None
    source: str  # "field:<name>", "derived", "text", "explicit_zero" or "none"
    issues: list[str] = field(default_factory=list)


# ─── Public API ──────────────────────────────────────────────────────


def resolve_price(
    raw: Mapping[str, Any],
    record: ScheduleRecord,
    config: PolicyConfig | None = None,
) -> PriceResolution:
    """Resolve a non-negative price for `record`.

    Args:
        raw: The raw item; structured price fields are read from here.
        record: The record as normalized so far. Its frequency drives
            context scoring and its evidence/description/name are the
            free-text sources.
    """
    config = config or DEFAULT_POLICY
    issues: list[str] = []

    # ── Tier 1: structured fields ───────────────────────────────────
    for name in config.structured_price_fields:
        value = safe_decimal(raw.get(name))
        if value is None:
            continue
        if value < 0:
            issues.append(f"Ignored negative amount in '{name}' ({value})")
            continue
        if value > 0:
            if name != "total_price":
                issues.append(f"total_price taken from '{name}' ({value})")
            return PriceResolution(value, f"field:{name}", issues)

    derived = _derive_from_unit_price(record)
    if derived is not None:
        issues.append(f"total_price derived from price_per_unit × quantity ({derived})")
        return PriceResolution(derived, "derived", issues)

    # ── Tier 2: currency tokens in free text ────────────────────────
    texts = _free_texts(record)
    best = best_text_candidate(texts, record.frequency_unit, config)
    if best is not None:
        logger.debug("Recovered price %s from text (score %.2f)", best.value, best.score)
        issues.append(f"total_price recovered from text: ${best.value:,.2f}")
        return PriceResolution(best.value, "text", issues)

    # ── Tier 3: explicit zero ───────────────────────────────────────
    if _has_structured_zero(raw, config) or has_zero_signal(texts, config):
        issues.append(ZERO_PRICE_ISSUE)
        return PriceResolution(Decimal(0), "explicit_zero", issues)

    issues.append(NO_PRICE_ISSUE)
    return PriceResolution(None, "none", issues)


def find_price_candidates(
    texts: list[str],
    frequency: FrequencyUnit,
    config: PolicyConfig | None = None,
) -> list[PriceCandidate]:
    """Every positive currency token in `texts`, in order of occurrence."""
    config = config or DEFAULT_POLICY
    candidates: list[PriceCandidate] = []
    for text in texts:
        for match in _CURRENCY.finditer(text):
            whole, cents = match.group(1), match.group(2)
            value = Decimal(whole.replace(",", "") + (f".{cents}" if cents else ""))
            if value <= 0 or value >= MAX_MAGNITUDE:
                continue
            start = max(0, match.start() - config.price_context_chars)
            context = text[start: match.end() + config.price_context_chars].lower()
            candidates.append(
                PriceCandidate(value, _score_context(context, frequency, config), context)
            )
    return candidates


def best_text_candidate(
    texts: list[str],
    frequency: FrequencyUnit,
    config: PolicyConfig | None = None,
) -> PriceCandidate | None:
    """Highest-scoring candidate; a later occurrence wins a tie."""
    best: PriceCandidate | None = None
    for candidate in find_price_candidates(texts, frequency, config):
        if candidate.score <= _DISCARD_AT_OR_BELOW:
            continue
        if best is None or candidate.score >= best.score:
            best = candidate
    return best


def has_zero_signal(texts: list[str], config: PolicyConfig | None = None) -> bool:
    """True when any text says the item is free, waived, $0 or 100% off."""
    config = config or DEFAULT_POLICY
    keywords = re.compile(
        r"\b(?:" + "|".join(re.escape(k) for k in config.zero_price_keywords) + r")\b"
    )
    for text in texts:
        lowered = text.lower()
        if keywords.search(lowered) or _ZERO_AMOUNT.search(lowered) or _FULL_DISCOUNT.search(lowered):
            return True
    return False


# ─── Internal Helpers ────────────────────────────────────────────────


def _score_context(context: str, frequency: FrequencyUnit, config: PolicyConfig) -> float:
    """Keyword-proximity score for the text surrounding one currency token."""
    score = 0.0
    own = config.cadence_keywords.get(frequency.value, [])
    if any(k in context for k in own):
        score += 2.0
    others = [
        k for unit, words in config.cadence_keywords.items()
        if unit != frequency.value for k in words
    ]
    if any(k in context for k in others if k not in own):
        score -= 1.5
    if any(k in context for k in config.discount_keywords):
        score -= 2.0
    if "total" in context:
        score += 1.0
        if "line total" in context:
            score += 0.5
    return score


def _free_texts(record: ScheduleRecord) -> list[str]:
    texts = [e.snippet for e in record.evidence if e.snippet]
    if record.description:
        texts.append(record.description)
    if record.item_name:
        texts.append(record.item_name)
    return texts


def _has_structured_zero(raw: Mapping[str, Any], config: PolicyConfig) -> bool:
    return any(safe_decimal(raw.get(name)) == 0 for name in config.structured_price_fields)


def _derive_from_unit_price(record: ScheduleRecord) -> Decimal | None:
    if record.billing_type != BillingType.UNIT:
        return None
    if record.price_per_unit is None or record.price_per_unit <= 0 or not record.quantity:
        return None
    return record.price_per_unit * Decimal(str(record.quantity))
