"""
Policy configuration — every heuristic table the pipeline consults.

Nothing in the normalizer, policy engine or matchers hard-codes a keyword
list or a catalog. They all read a `PolicyConfig`, so a policy change is a
JSON edit plus a version bump, not a code change.

Resolution order for `load_policy()`:
  1. An explicit path argument
  2. The GARAGE_POLICY_PATH environment variable
  3. The built-in defaults below

An override file only needs the keys it changes; everything else keeps the
default value.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from .exceptions import PolicyConfigError
from .models import FrequencyUnit

logger = logging.getLogger(__name__)

POLICY_PATH_ENV = "GARAGE_POLICY_PATH"


class FrequencyKeyword(BaseModel):
    """Free-text cadence keyword → (unit, every). Checked in list order."""

    keyword: str
    unit: FrequencyUnit
    every: int = 1


# ─── Default Tables ─────────────────────────────────────────────────

_FREQUENCY_KEYWORDS = [
    FrequencyKeyword(keyword="none", unit=FrequencyUnit.NONE),
    FrequencyKeyword(keyword="one-time", unit=FrequencyUnit.NONE),
    FrequencyKeyword(keyword="one time", unit=FrequencyUnit.NONE),
    FrequencyKeyword(keyword="annual", unit=FrequencyUnit.YEAR),
    FrequencyKeyword(keyword="year", unit=FrequencyUnit.YEAR),
    FrequencyKeyword(keyword="quarter", unit=FrequencyUnit.MONTH, every=3),
    FrequencyKeyword(keyword="month", unit=FrequencyUnit.MONTH),
    FrequencyKeyword(keyword="week", unit=FrequencyUnit.WEEK),
    FrequencyKeyword(keyword="semi", unit=FrequencyUnit.SEMI_MONTH),
    FrequencyKeyword(keyword="day", unit=FrequencyUnit.DAY),
    FrequencyKeyword(keyword="daily", unit=FrequencyUnit.DAY),
]

# Words that place a price on a given cadence, used to score "$X" tokens
_CADENCE_KEYWORDS: dict[str, list[str]] = {
    FrequencyUnit.NONE.value: ["one-time", "one time", "setup", "set-up", "implementation", "onboarding"],
    FrequencyUnit.DAY.value: ["per day", "/day", "daily", "a day"],
    FrequencyUnit.WEEK.value: ["per week", "/week", "/wk", "weekly", "a week"],
    FrequencyUnit.SEMI_MONTH.value: ["semi-month", "semimonth", "twice a month", "twice monthly"],
    FrequencyUnit.MONTH.value: ["per month", "/month", "/mo", "monthly", "a month", "mo."],
    FrequencyUnit.YEAR.value: ["per year", "/year", "/yr", "annual", "yearly", "per annum", "a year"],
}

_CATALOG: dict[str, str] = {
    "Website Platform": "ii_website_platform",
    "SEO Pro": "ii_seo_pro",
    "SEO Premier": "ii_seo_premier",
    "SEO Custom": "ii_seo_custom",
    "Blog Pro": "ii_blog_pro",
    "Mobile App": "ii_mobile_app",
    "IDX Integration": "ii_idx_integration",
    "Listings Add-On": "ii_listings_addon",
    "Custom Domain": "ii_custom_domain",
    "Paid Social Advertising": "ii_paid_social",
    "Google Ads Management": "ii_google_ads",
    "Email Marketing": "ii_email_marketing",
    "Lead Management CRM": "ii_lead_crm",
    "Branding & Design": "ii_branding_design",
    "Setup Fee": "ii_setup_fee",
    "Implementation Services": "ii_implementation",
    "Onboarding & Training": "ii_onboarding_training",
}

_CATALOG_STOP_WORDS = [
    "seat", "seats", "fee", "fees", "subscription", "license", "licence",
    "licenses", "plan", "package", "service", "services", "user", "users",
    "the", "a", "an", "for", "of", "and", "with", "per", "monthly", "annual",
]

_CATALOG_FLAVOR_WORDS = [
    "pro", "premier", "plus", "custom", "premium", "basic", "standard",
    "starter", "elite", "advanced", "lite", "enterprise", "growth",
]

_UNIT_NOUNS = [
    "seat", "user", "impression", "click", "lead", "listing", "agent",
    "license", "transaction", "unit", "message", "sms", "call", "minute",
    "hour", "gb", "request", "api call", "location", "member", "contact",
    "door", "page view", "send",
]

_USAGE_KEYWORDS = [
    "usage", "metered", "overage", "consumption", "pay as you go",
    "pay-as-you-go", "billed per", "charged per", "per-unit",
]

_ZERO_PRICE_KEYWORDS = [
    "free", "waived", "complimentary", "no charge", "no-charge",
    "no cost", "at no cost", "zero",
]

_DISCOUNT_KEYWORDS = [
    "discount", "credit", "tax", "refund", "rebate", "promo", "coupon",
]

_STRUCTURED_PRICE_FIELDS = [
    "total_price", "amount", "price", "price_per_period", "per_period_price",
    "recurring_price", "setup_fee", "setup_price", "implementation_fee",
    "one_time_fee", "fee",
]


# ─── Policy Model ───────────────────────────────────────────────────


class PolicyConfig(BaseModel):
    """Versioned policy table. Defaults reflect the current Garage policy."""

    version: str = "2024.09"

    # Policy engine
    brand_terms: list[str] = Field(default_factory=lambda: ["luxury presence"])
    unit_nouns: list[str] = Field(default_factory=lambda: list(_UNIT_NOUNS))
    usage_keywords: list[str] = Field(default_factory=lambda: list(_USAGE_KEYWORDS))

    # Enum normalizer
    frequency_keywords: list[FrequencyKeyword] = Field(
        default_factory=lambda: [k.model_copy() for k in _FREQUENCY_KEYWORDS]
    )

    # Price resolver
    structured_price_fields: list[str] = Field(
        default_factory=lambda: list(_STRUCTURED_PRICE_FIELDS)
    )
    cadence_keywords: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in _CADENCE_KEYWORDS.items()}
    )
    zero_price_keywords: list[str] = Field(default_factory=lambda: list(_ZERO_PRICE_KEYWORDS))
    discount_keywords: list[str] = Field(default_factory=lambda: list(_DISCOUNT_KEYWORDS))
    price_context_chars: int = 48

    # Catalog matcher
    catalog: dict[str, str] = Field(default_factory=lambda: dict(_CATALOG))
    catalog_stop_words: list[str] = Field(default_factory=lambda: list(_CATALOG_STOP_WORDS))
    catalog_flavor_words: list[str] = Field(default_factory=lambda: list(_CATALOG_FLAVOR_WORDS))
    catalog_fuzzy_threshold: float = 0.55

    # Agreement scorer
    agreement_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "item_name": 0.35,
            "total_price": 0.25,
            "start_date": 0.10,
            "frequency_unit": 0.10,
            "frequency_every": 0.05,
            "schedule_label": 0.05,
            "event_to_track": 0.05,
            "tiers": 0.05,
        }
    )
    date_decay_days: float = 30.0
    review_confidence_below: float = 0.75
    review_similarity_below: float = 0.70

    # Garage mapper
    days_per_month: float = 30.44
    one_time_default_name: str = "One-time Fee"
    one_time_name_hints: dict[str, str] = Field(
        default_factory=lambda: {
            "implementation": "Implementation Fee",
            "onboarding": "Onboarding Fee",
            "setup": "Setup Fee",
            "set-up": "Setup Fee",
        }
    )
    zero_fill_missing_price: bool = True

    # Retry policy (evaluated by the transport layer, never by the core)
    retry_missing_price_ratio: float = 0.5
    retry_min_mean_confidence: float = 0.5
    max_extraction_attempts: int = Field(default=2, ge=1)


DEFAULT_POLICY = PolicyConfig()


def load_policy(path: str | Path | None = None) -> PolicyConfig:
    """Load a policy override file, falling back to the built-in defaults.

    Args:
        path: JSON file with any subset of PolicyConfig keys.

    Raises:
        PolicyConfigError: If the file cannot be read or fails validation.
    """
    if path is None:
        path = os.environ.get(POLICY_PATH_ENV) or None
    if path is None:
        return PolicyConfig()

    resolved = Path(path)
    try:
        with resolved.open(encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PolicyConfigError(
            f"Could not read policy file '{resolved}': {e}",
            {"path": str(resolved)},
        ) from e

    try:
        policy = PolicyConfig.model_validate(data)
    except ValidationError as e:
        raise PolicyConfigError(
            f"Policy file '{resolved}' is invalid: {e.error_count()} error(s)",
            {"path": str(resolved), "errors": e.errors(include_url=False)},
        ) from e

    logger.info("Loaded policy version %s from %s", policy.version, resolved)
    return policy
