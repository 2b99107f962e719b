"""
Pydantic models for revenue schedules — strict typing at every stage boundary.

Raw model output is never modelled: it arrives as an untyped mapping and is
coerced field by field in the normalizer. Everything after that point is one
of the models below, so enum values and numeric ranges are guaranteed.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# ─── Vocabularies ───────────────────────────────────────────────────


class BillingType(str, Enum):
    """Pricing model of a schedule, as Garage names it in its UI."""

    FLAT = "Flat price"
    UNIT = "Unit price"
    TIER_FLAT = "Tier flat price"
    TIER_UNIT = "Tier unit price"

    @property
    def is_tiered(self) -> bool:
        return self in (BillingType.TIER_FLAT, BillingType.TIER_UNIT)


class FrequencyUnit(str, Enum):
    """Billing cadence of a schedule."""

    NONE = "None"
    DAY = "Day(s)"
    WEEK = "Week(s)"
    SEMI_MONTH = "Semi_month(s)"
    MONTH = "Month(s)"
    YEAR = "Year(s)"


class GarageBillingType(str, Enum):
    FLAT_PRICE = "FLAT_PRICE"
    UNIT_PRICE = "UNIT_PRICE"
    TIER_FLAT_PRICE = "TIER_FLAT_PRICE"
    TIER_UNIT_PRICE = "TIER_UNIT_PRICE"


class GarageFrequencyUnit(str, Enum):
    """Native Garage periodicity. There is no week unit; weeks become days."""

    NONE = "NONE"
    DAYS = "DAYS"
    SEMI_MONTH = "SEMI_MONTH"
    MONTH = "MONTH"
    QUARTER = "QUARTER"
    YEAR = "YEAR"


# ─── Schedule Record ────────────────────────────────────────────────


class Tier(BaseModel):
    """One priced band of a tiered schedule."""

    tier_name: Optional[str] = None
    price: Optional[Decimal] = None
    applied_when: Optional[str] = None
    min_quantity: Optional[float] = None


class Evidence(BaseModel):
    """A page/snippet pair the model quoted to justify a value."""

    page: Optional[int] = None
    snippet: str = ""


class ScheduleRecord(BaseModel):
    """One billable item after normalization and policy enforcement.

    `issues` is append-only: every correction, demotion and fallback the
    pipeline applies leaves a human-readable line here.
    """

    schedule_label: Optional[str] = None
    item_name: str = ""
    description: Optional[str] = None

    billing_type: BillingType = BillingType.FLAT
    frequency_unit: FrequencyUnit = FrequencyUnit.NONE
    frequency_every: int = Field(default=1, ge=1)

    total_price: Optional[Decimal] = Field(default=None, ge=0)
    quantity: Optional[float] = Field(default=None, gt=0)
    price_per_unit: Optional[Decimal] = None
    net_terms: int = Field(default=0, ge=0)
    periods: int = Field(default=1, ge=1)
    months_of_service: Optional[float] = None
    rev_rec_category: Optional[str] = None

    start_date: Optional[date] = None
    calculated_end_date: Optional[date] = None

    event_to_track: Optional[str] = None
    unit_label: Optional[str] = None
    volume_based: Optional[bool] = None
    tiers: list[Tier] = Field(default_factory=list)

    evidence: list[Evidence] = Field(default_factory=list, max_length=8)
    issues: list[str] = Field(default_factory=list)

    total_value: Optional[Decimal] = None  # Review only; never sent to Garage


# ─── Agreement ──────────────────────────────────────────────────────


class AgreementResult(BaseModel):
    """Cross-run agreement for one first-run record."""

    index: int
    matched_index: int = -1  # Index into run 2, -1 when unmatched
    similarity: float = 0.0
    completeness: float = 1.0
    confidence: float = Field(ge=0.0, le=1.0)
    flag_for_review: bool


class AgreementSummary(BaseModel):
    count: int = 0
    matched: int = 0
    unmatched: int = 0
    unmatched_second_run: int = 0
    flagged: int = 0
    mean_confidence: float = 0.0
    min_confidence: float = 0.0


# ─── Garage Output ──────────────────────────────────────────────────


class GarageTier(BaseModel):
    """A pricing tier in Garage's wire shape: price = mantissa × 10^exponent."""

    tier: int
    mantissa: int
    exponent: int
    condition_value: Optional[float] = None
    condition_operator: Optional[str] = None
    name: Optional[str] = None


class GarageRecord(BaseModel):
    """The final record handed to the Garage billing system."""

    service_start_date: Optional[date] = None
    service_term: int = Field(ge=0)
    item_name: str
    item_description: Optional[str] = None
    start_date: Optional[date] = None
    frequency_unit: GarageFrequencyUnit
    period: int = Field(ge=0)
    number_of_periods: int = Field(ge=0)
    billing_type: GarageBillingType
    event_to_track: Optional[str] = None
    integration_item: Optional[str] = None
    net_terms: int = Field(ge=0)
    quantity: float
    total_price: Optional[float] = Field(default=None, ge=0)
    pricing_tiers: list[GarageTier] = Field(default_factory=list)


# ─── Pipeline Envelopes ─────────────────────────────────────────────


class ExtractionRun(BaseModel):
    """One parsed model response, before any schedule is normalized."""

    schedules: list[dict[str, Any]] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)
    totals_check: Optional[dict[str, Any]] = None
    model_recommendations: Optional[dict[str, Any]] = None


class PipelineResult(BaseModel):
    """Full output: Garage records plus everything needed to audit them."""

    garage: list[GarageRecord] = Field(default_factory=list)
    schedules: list[ScheduleRecord] = Field(default_factory=list)
    agreement: Optional[list[AgreementResult]] = None
    agreement_summary: Optional[AgreementSummary] = None
    issues: list[str] = Field(default_factory=list)
    totals_check: Optional[dict[str, Any]] = None
    model_recommendations: Optional[dict[str, Any]] = None
    run_count: int = 0
    needs_retry: bool = False
