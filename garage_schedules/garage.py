"""
GarageMapper — ScheduleRecord → the record shape Garage accepts.

Derivations:
  - service_term (whole months): dates → months_of_service → cadence × periods
    → 1 for one-time → 0
  - periodicity: Garage-native unit, period length and number of periods
  - integration_item via the catalog matcher
  - tiers as mantissa/exponent prices with a ≥ condition on min quantity

Stateless: a mapper holds only read-only config and the catalog.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from .catalog import CatalogMatcher
from .config import DEFAULT_POLICY, PolicyConfig
from .models import (
    BillingType,
    FrequencyUnit,
    GarageBillingType,
    GarageFrequencyUnit,
    GarageRecord,
    GarageTier,
    ScheduleRecord,
    Tier,
)

logger = logging.getLogger(__name__)

CONDITION_GTE = "GREATER_THAN_OR_EQUAL"

_BILLING_TYPES: dict[BillingType, GarageBillingType] = {
    BillingType.FLAT: GarageBillingType.FLAT_PRICE,
    BillingType.UNIT: GarageBillingType.UNIT_PRICE,
    BillingType.TIER_FLAT: GarageBillingType.TIER_FLAT_PRICE,
    BillingType.TIER_UNIT: GarageBillingType.TIER_UNIT_PRICE,
}


def price_parts(price: Decimal) -> tuple[int, int]:
    """Split a price into (mantissa, exponent) with exponent ≤ 0.

    12.50 → (125, -1), 100 → (100, 0), 0.015 → (15, -3)
    """
    normalized = price.normalize()
    exponent = normalized.as_tuple().exponent
    if not isinstance(exponent, int) or exponent > 0:
        return int(normalized), 0
    return int(normalized.scaleb(-exponent)), exponent


class GarageMapper:
    """Maps normalized schedules to Garage records.

    Usage:
        mapper = GarageMapper()
        garage_record, issues = mapper.map(schedule_record)
    """

    def __init__(self, config: PolicyConfig | None = None, catalog: CatalogMatcher | None = None):
        self.config = config or DEFAULT_POLICY
        self.catalog = catalog or CatalogMatcher.from_policy(self.config)

    def map(self, record: ScheduleRecord) -> tuple[GarageRecord, list[str]]:
        """Map one record. Returns the Garage record and any mapping issues."""
        issues: list[str] = []
        label = record.item_name or f"schedule {record.schedule_label or '?'}"

        term = self.service_term_months(record)
        unit, period, number_of_periods = self.billing_periods(record, term)

        item_name, description = self._names(record, issues)

        if record.billing_type == BillingType.FLAT:
            quantity = 1.0
        elif record.quantity is None:
            quantity = 1.0
            issues.append(f"{label}: quantity missing for {record.billing_type.value}; defaulted to 1")
        else:
            quantity = record.quantity

        total_price = float(record.total_price) if record.total_price is not None else None
        if total_price is None and self.config.zero_fill_missing_price:
            total_price = 0.0
            issues.append(f"{label}: total_price missing; defaulted to 0 for Garage")
            logger.warning("Zero-filled missing price for %r", label)

        match = self.catalog.match(record.item_name)
        if match is None:
            logger.debug("No catalog match for %r", record.item_name)
        elif match.method == "fuzzy":
            logger.info("Catalog fuzzy match %r → %s (%.3f)", record.item_name, match.name, match.score)

        garage = GarageRecord(
            service_start_date=record.start_date,
            service_term=term,
            item_name=item_name,
            item_description=description,
            start_date=record.start_date,
            frequency_unit=unit,
            period=period,
            number_of_periods=number_of_periods,
            billing_type=_BILLING_TYPES[record.billing_type],
            event_to_track=record.event_to_track,
            integration_item=match.integration_item if match else None,
            net_terms=record.net_terms,
            quantity=quantity,
            total_price=total_price,
            pricing_tiers=self.map_tiers(record.tiers, label, issues),
        )
        return garage, issues

    def map_all(self, records: list[ScheduleRecord]) -> tuple[list[GarageRecord], list[str]]:
        out: list[GarageRecord] = []
        issues: list[str] = []
        for record in records:
            garage, record_issues = self.map(record)
            out.append(garage)
            issues.extend(record_issues)
        return out, issues

    # ─── Service Term ────────────────────────────────────────────────

    def service_term_months(self, record: ScheduleRecord) -> int:
        """Whole months of service, by the first rule that yields a positive value."""
        dpm = self.config.days_per_month

        if record.start_date and record.calculated_end_date:
            days = (record.calculated_end_date - record.start_date).days
            if days >= 0:
                return max(1, round(days / dpm))

        if record.months_of_service and record.months_of_service > 0:
            months = round(record.months_of_service)
            if months > 0:
                return months

        span = record.frequency_every * record.periods
        unit = record.frequency_unit
        months_by_unit = {
            FrequencyUnit.MONTH: span,
            FrequencyUnit.YEAR: span * 12,
            FrequencyUnit.SEMI_MONTH: span / 2,
            FrequencyUnit.WEEK: span * 7 / dpm,
            FrequencyUnit.DAY: span / dpm,
        }
        if unit in months_by_unit:
            months = round(months_by_unit[unit])
            if months > 0:
                return months

        if unit == FrequencyUnit.NONE:
            return 1
        return 0

    # ─── Periodicity ─────────────────────────────────────────────────

    def billing_periods(
        self, record: ScheduleRecord, term: int
    ) -> tuple[GarageFrequencyUnit, int, int]:
        """(Garage unit, period length, number of periods) for a service term."""
        unit = record.frequency_unit
        every = record.frequency_every
        dpm = self.config.days_per_month

        if unit == FrequencyUnit.NONE:
            return GarageFrequencyUnit.NONE, 1, 1

        if unit == FrequencyUnit.MONTH and every == 3:
            return GarageFrequencyUnit.QUARTER, 1, max(1, term // 3)
        if unit == FrequencyUnit.MONTH:
            return GarageFrequencyUnit.MONTH, every, max(1, term // every)
        if unit == FrequencyUnit.YEAR:
            return GarageFrequencyUnit.YEAR, every, max(1, term // (12 * every))
        if unit == FrequencyUnit.SEMI_MONTH:
            return GarageFrequencyUnit.SEMI_MONTH, every, max(1, (term * 2) // every)

        # Week(s) and Day(s) both land on Garage's DAYS unit
        period_days = every * 7 if unit == FrequencyUnit.WEEK else every
        if term == 0:
            return GarageFrequencyUnit.DAYS, period_days, max(1, record.periods)
        return GarageFrequencyUnit.DAYS, period_days, max(1, int(term * dpm // period_days))

    # ─── Names & Tiers ───────────────────────────────────────────────

    def _names(self, record: ScheduleRecord, issues: list[str]) -> tuple[str, str | None]:
        """Default names for nameless one-time items; never overrides a model name."""
        item_name, description = record.item_name, record.description
        if item_name and description:
            return item_name, description

        text = " ".join(
            t for t in (record.schedule_label, record.description, *(e.snippet for e in record.evidence)) if t
        ).lower()
        hinted = next(
            (name for hint, name in self.config.one_time_name_hints.items() if hint in text),
            None,
        )
        one_time = record.frequency_unit == FrequencyUnit.NONE or hinted is not None
        if not one_time:
            return item_name, description

        default = hinted or self.config.one_time_default_name
        if not item_name:
            item_name = default
            issues.append(f"item_name defaulted to '{default}' for one-time item")
        if not description:
            description = f"{item_name} (one-time)"
        return item_name, description

    @staticmethod
    def map_tiers(tiers: list[Tier], label: str, issues: list[str]) -> list[GarageTier]:
        mapped = []
        for i, tier in enumerate(tiers, start=1):
            if tier.price is None:
                mantissa, exponent = 0, 0
                issues.append(f"{label}: tier {i} has no price; sent as 0")
            else:
                mantissa, exponent = price_parts(tier.price)
            mapped.append(
                GarageTier(
                    tier=i,
                    mantissa=mantissa,
                    exponent=exponent,
                    condition_value=tier.min_quantity,
                    condition_operator=CONDITION_GTE if tier.min_quantity is not None else None,
                    name=tier.tier_name,
                )
            )
        return mapped
