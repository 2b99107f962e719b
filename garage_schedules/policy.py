"""
Business-policy rules for billing type — the layer that overrules the model.

Rules run in a fixed order (see apply_policy):
  1. Brand override   — protected brands always bill as Flat price
  2. Tier promotion   — present tiers outrank a non-tiered label
  3. Unit-price gate  — Unit price needs real per-unit evidence
  4. Tier gate        — Tier types need at least one tier

Each rule mutates the record in place and returns the issues it produced
(empty = no change). Rules never raise; a violation is corrected and
explained, not rejected.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation

from .coercion import trim_decimal
from .config import DEFAULT_POLICY, PolicyConfig
from .models import BillingType, ScheduleRecord

logger = logging.getLogger(__name__)


# ─── Evidence Helpers ────────────────────────────────────────────────


def record_texts(record: ScheduleRecord) -> list[str]:
    """All free text a rule may look at: name, label, description, evidence."""
    texts = [record.item_name, record.schedule_label or "", record.description or ""]
    texts.extend(e.snippet for e in record.evidence)
    return [t for t in texts if t]


def find_brand_term(texts: list[str], config: PolicyConfig | None = None) -> str | None:
    config = config or DEFAULT_POLICY
    for text in texts:
        lowered = text.lower()
        for term in config.brand_terms:
            if term.lower() in lowered:
                return term
    return None


def _unit_phrase_pattern(config: PolicyConfig) -> re.Pattern[str]:
    nouns = sorted(config.unit_nouns, key=len, reverse=True)
    alternatives = "|".join(re.escape(n) for n in nouns)
    return re.compile(rf"(?:\bper\b|\beach\b|/)[\s-]*({alternatives})(?:e?s)?\b")


def find_unit_phrase(texts: list[str], config: PolicyConfig | None = None) -> str | None:
    """The unit noun of the first "per seat" / "each user" / "/impression" phrase."""
    config = config or DEFAULT_POLICY
    pattern = _unit_phrase_pattern(config)
    for text in texts:
        match = pattern.search(text.lower())
        if match:
            return match.group(1)
    return None


def has_strong_unit_evidence(
    record: ScheduleRecord,
    texts: list[str],
    config: PolicyConfig | None = None,
) -> bool:
    """Per-unit phrasing, usage wording, a price_per_unit+unit_label pair, or tiers."""
    config = config or DEFAULT_POLICY
    if record.tiers:
        return True
    if record.price_per_unit is not None and record.unit_label:
        return True
    if find_unit_phrase(texts, config):
        return True
    lowered = [t.lower() for t in texts]
    return any(k in text for text in lowered for k in config.usage_keywords)


def _clear_usage_fields(record: ScheduleRecord) -> None:
    record.event_to_track = None
    record.unit_label = None
    record.price_per_unit = None
    record.volume_based = None
    record.tiers = []


# ─── Rules ───────────────────────────────────────────────────────────


def apply_brand_override(
    record: ScheduleRecord,
    texts: list[str],
    config: PolicyConfig | None = None,
) -> list[str]:
    """Protected brands bill as Flat price with quantity 1 and no usage fields.

    Unconditional: runs before any other rule and ignores every hint the
    model gave about units or tiers. The issue is emitted even when the
    record was already flat; callers de-duplicate issues.
    """
    term = find_brand_term(texts, config)
    if term is None:
        return []

    record.billing_type = BillingType.FLAT
    record.quantity = 1
    _clear_usage_fields(record)

    logger.info("Brand override (%s) applied to %r", term, record.item_name)
    return [f"Brand override: '{term}' items bill as Flat price; quantity set to 1 and usage fields cleared"]


def promote_tiered(record: ScheduleRecord) -> list[str]:
    """A non-tiered label with tiers attached becomes the matching Tier type."""
    if not record.tiers or record.billing_type.is_tiered:
        return []

    previous = record.billing_type
    record.billing_type = (
        BillingType.TIER_FLAT if previous == BillingType.FLAT else BillingType.TIER_UNIT
    )
    return [
        f"Promoted {previous.value} to {record.billing_type.value}: "
        f"{len(record.tiers)} tier(s) present"
    ]


def gate_unit_price(
    record: ScheduleRecord,
    texts: list[str],
    config: PolicyConfig | None = None,
) -> list[str]:
    """Keep Unit price only when strong unit evidence exists."""
    if record.billing_type != BillingType.UNIT:
        return []
    if has_strong_unit_evidence(record, texts, config):
        return []

    record.billing_type = BillingType.FLAT
    record.quantity = 1
    _clear_usage_fields(record)
    logger.info("Demoted %r from Unit price to Flat price", record.item_name)
    return [
        "Demoted Unit price to Flat price: no per-unit evidence "
        "(per-unit phrasing, usage wording, price_per_unit with unit_label, or tiers)"
    ]


def gate_tiered(record: ScheduleRecord) -> list[str]:
    """Tier types need at least one tier object."""
    if not record.billing_type.is_tiered or record.tiers:
        return []

    previous = record.billing_type
    record.billing_type = BillingType.FLAT
    record.quantity = 1
    return [f"Demoted {previous.value} to Flat price: no tiers were provided"]


def apply_policy(
    record: ScheduleRecord,
    texts: list[str] | None = None,
    config: PolicyConfig | None = None,
) -> list[str]:
    """Run every billing-type rule in order and collect their issues."""
    config = config or DEFAULT_POLICY
    if texts is None:
        texts = record_texts(record)

    issues: list[str] = []
    issues.extend(apply_brand_override(record, texts, config))
    issues.extend(promote_tiered(record))
    issues.extend(gate_unit_price(record, texts, config))
    issues.extend(gate_tiered(record))
    return issues


def enforce_usage_invariant(
    record: ScheduleRecord,
    texts: list[str],
    config: PolicyConfig | None = None,
) -> list[str]:
    """Unit price must carry price_per_unit + unit_label (or tiers).

    Runs after price resolution: a missing unit_label may be read off the
    per-unit phrasing, and a missing price_per_unit may be derived from
    total_price ÷ quantity. Whatever is still missing demotes the record.
    """
    if record.billing_type != BillingType.UNIT or record.tiers:
        return []

    issues: list[str] = []
    if not record.unit_label:
        noun = find_unit_phrase(texts, config)
        if noun:
            record.unit_label = noun
            issues.append(f"unit_label inferred from per-unit phrasing: '{noun}'")

    if record.price_per_unit is None and record.total_price and record.quantity:
        try:
            ppu = (record.total_price / Decimal(str(record.quantity))).quantize(Decimal("0.0001"))
        except InvalidOperation:
            ppu = None
        if ppu is not None:
            record.price_per_unit = trim_decimal(ppu)
            issues.append(f"price_per_unit derived from total_price ÷ quantity ({record.price_per_unit})")

    if record.price_per_unit is None or not record.unit_label:
        record.billing_type = BillingType.FLAT
        record.quantity = 1
        _clear_usage_fields(record)
        issues.append(
            "Demoted Unit price to Flat price: no price_per_unit/unit_label pair to bill against"
        )
    return issues
