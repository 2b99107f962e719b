"""
ScheduleNormalizer — one raw model item in, one canonical ScheduleRecord out.

Flow per item:
  billing type proposal → frequency → quantity → scalar fields → tiers
  → policy rules → price → usage invariant → final checks

Idempotent by construction: issues are de-duplicated on append, and every
issue message depends only on the values that triggered it. Feeding a
normalized record back in (record.model_dump()) yields an equal record.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from .coercion import safe_bool, safe_date, safe_decimal, safe_float, safe_int, safe_text
from .config import DEFAULT_POLICY, PolicyConfig
from .enums import normalize_billing_type, normalize_frequency
from .exceptions import PayloadStructureError
from .models import BillingType, Evidence, FrequencyUnit, ScheduleRecord, Tier
from .policy import apply_policy, enforce_usage_invariant, record_texts
from .pricing import resolve_price

logger = logging.getLogger(__name__)

MAX_EVIDENCE = 8
EMPTY_NAME_ISSUE = "item_name is empty"
TOTAL_VALUE_ISSUE = "total_value not computed: price × periods is out of range"


class ScheduleNormalizer:
    """Turns raw model items into policy-compliant ScheduleRecords.

    Usage:
        normalizer = ScheduleNormalizer()
        record = normalizer.normalize({"item_name": "SEO Pro", "total_price": "$500"})
    """

    def __init__(self, config: PolicyConfig | None = None):
        self.config = config or DEFAULT_POLICY

    def normalize(self, raw: Mapping[str, Any]) -> ScheduleRecord:
        """Normalize one raw item.

        Raises:
            PayloadStructureError: If `raw` is not a mapping.
        """
        if not isinstance(raw, Mapping):
            raise PayloadStructureError(
                f"Schedule item must be an object, got {type(raw).__name__}",
                {"type": type(raw).__name__},
            )

        issues: list[str] = []
        raw_issues = raw.get("issues")
        if isinstance(raw_issues, str):
            raw_issues = [raw_issues]
        for issue in raw_issues if isinstance(raw_issues, list) else []:
            if isinstance(issue, str) and issue.strip():
                _add_issue(issues, issue.strip())

        # ── Billing type & frequency ────────────────────────────────
        tiers = _coerce_tiers(raw.get("tiers"), issues)
        price_per_unit = safe_decimal(raw.get("price_per_unit"))
        if price_per_unit is not None and price_per_unit < 0:
            _add_issue(issues, f"Ignored negative price_per_unit ({price_per_unit})")
            price_per_unit = None
        unit_label = safe_text(raw.get("unit_label"))
        billing_type = normalize_billing_type(
            raw.get("billing_type"),
            has_tiers=bool(tiers),
            has_unit_pair=price_per_unit is not None or unit_label is not None,
        )
        every, unit = normalize_frequency(
            raw.get("frequency") or raw.get("frequency_unit"),
            raw.get("frequency_every"),
            raw.get("frequency_unit"),
            FrequencyUnit.NONE,
            self.config.frequency_keywords,
        )

        # ── Quantity ────────────────────────────────────────────────
        quantity = safe_float(raw.get("quantity"))
        if quantity is not None and quantity <= 0:
            _add_issue(issues, f"Ignored non-positive quantity ({quantity:g})")
            quantity = None
        if billing_type == BillingType.FLAT:
            quantity = 1

        # ── Scalars with range defaults ─────────────────────────────
        net_terms = safe_int(raw.get("net_terms"))
        if net_terms is None or net_terms < 0:
            if raw.get("net_terms") is not None:
                _add_issue(issues, f"net_terms {raw.get('net_terms')!r} is not a non-negative integer; using 0")
            net_terms = 0

        periods = safe_int(raw.get("periods"))
        if periods is None or periods < 1:
            if raw.get("periods") is not None:
                _add_issue(issues, f"periods {raw.get('periods')!r} is not a positive integer; using 1")
            periods = 1

        months_of_service = safe_float(raw.get("months_of_service"))
        if months_of_service is not None and months_of_service <= 0:
            months_of_service = None

        record = ScheduleRecord(
            schedule_label=safe_text(raw.get("schedule_label")),
            item_name=safe_text(raw.get("item_name")) or "",
            description=safe_text(raw.get("description")),
            billing_type=billing_type,
            frequency_unit=unit,
            frequency_every=every,
            quantity=quantity,
            price_per_unit=price_per_unit,
            net_terms=net_terms,
            periods=periods,
            months_of_service=months_of_service,
            rev_rec_category=safe_text(raw.get("rev_rec_category")),
            start_date=self._date(raw, "start_date", issues),
            calculated_end_date=self._date(raw, "calculated_end_date", issues),
            event_to_track=safe_text(raw.get("event_to_track")),
            unit_label=unit_label,
            volume_based=safe_bool(raw.get("volume_based")),
            tiers=tiers,
            evidence=_coerce_evidence(raw.get("evidence")),
        )

        # ── Policy, then price with the finalized context ───────────
        texts = record_texts(record)
        for issue in apply_policy(record, texts, self.config):
            _add_issue(issues, issue)

        resolution = resolve_price(raw, record, self.config)
        record.total_price = resolution.value
        for issue in resolution.issues:
            _add_issue(issues, issue)

        for issue in enforce_usage_invariant(record, texts, self.config):
            _add_issue(issues, issue)

        # ── Final checks ────────────────────────────────────────────
        if record.billing_type == BillingType.FLAT:
            record.quantity = 1
        if not record.item_name:
            _add_issue(issues, EMPTY_NAME_ISSUE)
        if (
            record.start_date is not None
            and record.calculated_end_date is not None
            and record.calculated_end_date < record.start_date
        ):
            _add_issue(issues, "calculated_end_date is before start_date")

        try:
            record.total_value = compute_total_value(record)
        except InvalidOperation:
            record.total_value = None
            _add_issue(issues, TOTAL_VALUE_ISSUE)
        record.issues = issues
        return record

    def normalize_all(self, items: list[Mapping[str, Any]]) -> list[ScheduleRecord]:
        return [self.normalize(item) for item in items]

    @staticmethod
    def _date(raw: Mapping[str, Any], name: str, issues: list[str]):
        value = raw.get(name)
        parsed = safe_date(value)
        if parsed is None and value not in (None, ""):
            _add_issue(issues, f"{name} {value!r} is not an ISO date; cleared")
        return parsed


def normalize_schedule(
    raw: Mapping[str, Any], config: PolicyConfig | None = None
) -> ScheduleRecord:
    """Convenience wrapper around ScheduleNormalizer(config).normalize(raw)."""
    return ScheduleNormalizer(config).normalize(raw)


def compute_total_value(record: ScheduleRecord) -> Decimal | None:
    """Contract value for review: price × periods (one period when one-time).

    Raises:
        InvalidOperation: If the product exceeds Decimal precision.
    """
    periods = 1 if record.frequency_unit == FrequencyUnit.NONE else record.periods
    price = record.total_price if record.total_price is not None else record.price_per_unit
    if price is None:
        return None
    return (price * periods).quantize(Decimal("0.01"))


# ─── Internal Helpers ────────────────────────────────────────────────


def _add_issue(issues: list[str], issue: str) -> None:
    if issue not in issues:
        issues.append(issue)


def _coerce_tiers(value: Any, issues: list[str]) -> list[Tier]:
    if not isinstance(value, list):
        return []
    tiers = []
    for item in value:
        if not isinstance(item, Mapping):
            continue
        n = len(tiers) + 1
        price = safe_decimal(item.get("price"))
        if price is not None and price < 0:
            _add_issue(issues, f"Ignored negative price on tier {n} ({price})")
            price = None
        min_quantity = safe_float(item.get("min_quantity"))
        if min_quantity is not None and min_quantity < 0:
            _add_issue(issues, f"Ignored negative min_quantity on tier {n} ({min_quantity:g})")
            min_quantity = None
        tiers.append(
            Tier(
                tier_name=safe_text(item.get("tier_name")),
                price=price,
                applied_when=safe_text(item.get("applied_when")),
                min_quantity=min_quantity,
            )
        )
    return tiers


def _coerce_evidence(value: Any) -> list[Evidence]:
    if not isinstance(value, list):
        return []
    evidence = []
    for item in value:
        if isinstance(item, Mapping):
            snippet = safe_text(item.get("snippet"))
            if snippet:
                evidence.append(Evidence(page=safe_int(item.get("page")), snippet=snippet))
        elif isinstance(item, str) and item.strip():
            evidence.append(Evidence(snippet=item.strip()))
        if len(evidence) == MAX_EVIDENCE:
            break
    return evidence
