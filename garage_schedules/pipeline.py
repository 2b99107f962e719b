"""
Main schedule pipeline — orchestrates the full workflow.

Flow:
  ┌──────────────┐   ┌──────────────┐
  │ Model run 1  │   │ Model run 2  │   ← Independent extractions (optional 2nd)
  └──────┬───────┘   └──────┬───────┘
         │                  │
  ┌──────▼───────┐   ┌──────▼───────┐
  │  Normalize   │   │  Normalize   │   ← Enums, policy, price
  └──────┬───────┘   └──────┬───────┘
         │                  │
         └────────┬─────────┘
                  │
          ┌───────▼───────┐
          │   Agreement   │   ← Greedy pairing, per-item confidence
          └───────┬───────┘
                  │
          ┌───────▼───────┐
          │ Garage mapper │   ← Service term, periodicity, catalog
          └───────┬───────┘
                  │
          ┌───────▼───────┐
          │    Result     │   ← Garage records + audit trail
          └───────────────┘

Design principles:
  - Run 1 is canonical; run 2 only ever contributes confidence.
  - The pipeline performs no I/O and never retries. should_retry() is a
    pure verdict for the transport layer to act on.
  - Nothing here raises for ambiguous data; only structurally broken
    payloads propagate PayloadStructureError.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from .agreement import AgreementScorer
from .catalog import CatalogMatcher
from .coercion import safe_decimal
from .config import DEFAULT_POLICY, PolicyConfig
from .garage import GarageMapper
from .models import (
    AgreementSummary,
    ExtractionRun,
    GarageRecord,
    PipelineResult,
    ScheduleRecord,
)
from .normalizer import ScheduleNormalizer
from .parsing import parse_model_output

logger = logging.getLogger(__name__)

Payload = str | bytes | Mapping[str, Any]

TOTALS_TOLERANCE = Decimal("0.01")


class SchedulePipeline:
    """Orchestrates parsing, normalization, agreement scoring and Garage mapping.

    Usage:
        pipeline = SchedulePipeline()
        result = pipeline.run(run1_json, run2_json)
        for record, agreement in zip(result.garage, result.agreement or []):
            if agreement.flag_for_review:
                ...
    """

    def __init__(self, config: PolicyConfig | None = None):
        self.config = config or DEFAULT_POLICY
        self.catalog = CatalogMatcher.from_policy(self.config)
        self.normalizer = ScheduleNormalizer(self.config)
        self.scorer = AgreementScorer(self.config)
        self.mapper = GarageMapper(self.config, self.catalog)

    def normalize_run(self, payload: Payload) -> tuple[ExtractionRun, list[ScheduleRecord]]:
        """Parse and normalize a single model response."""
        run = parse_model_output(payload)
        return run, self.normalizer.normalize_all(run.schedules)

    def run(self, *payloads: Payload) -> PipelineResult:
        """Execute the full pipeline over one or more extraction runs.

        Args:
            payloads: Model responses for the same document, run 1 first.

        Returns:
            PipelineResult with Garage records and the audit trail.
        """
        if not payloads:
            return PipelineResult(issues=["No extraction runs supplied"], needs_retry=True)

        # ── Step 1: Parse + normalize every run ─────────────────────
        runs = [self.normalize_run(p) for p in payloads]
        first_run, records = runs[0]
        issues = list(first_run.issues)

        # ── Step 2: Cross-run agreement (run 1 vs run 2) ────────────
        agreement = None
        summary: AgreementSummary | None = None
        if len(runs) >= 2:
            agreement, summary = self.scorer.score(records, runs[1][1])
            if len(runs) > 2:
                issues.append(
                    f"Only the first two of {len(runs)} extraction runs are compared"
                )

        # ── Step 3: Totals check ────────────────────────────────────
        issues.extend(check_totals(records, first_run.totals_check))

        # ── Step 4: Garage mapping ──────────────────────────────────
        garage, mapping_issues = self.mapper.map_all(records)
        issues.extend(mapping_issues)

        result = PipelineResult(
            garage=garage,
            schedules=records,
            agreement=agreement,
            agreement_summary=summary,
            issues=issues,
            totals_check=first_run.totals_check,
            model_recommendations=first_run.model_recommendations,
            run_count=len(runs),
            needs_retry=should_retry(records, summary, self.config),
        )
        logger.info(
            "Pipeline finished: %d schedule(s) from %d run(s), %d issue(s)",
            len(records), len(runs), len(issues),
        )
        return result

    def run_garage(self, *payloads: Payload) -> list[GarageRecord]:
        """Canonical output only: the Garage records of run 1."""
        return self.run(*payloads).garage


# ─── Totals Check ────────────────────────────────────────────────────


def check_totals(
    records: list[ScheduleRecord], totals_check: Mapping[str, Any] | None
) -> list[str]:
    """Compare the sum of item prices with the contract total the model reported."""
    if not totals_check:
        return []
    contract_total = safe_decimal(totals_check.get("contract_total_if_any"))
    if contract_total is None:
        return []

    priced = [r.total_value for r in records if r.total_value is not None]
    item_sum = sum(priced, Decimal(0))
    if abs(item_sum - contract_total) <= TOTALS_TOLERANCE:
        return []
    return [
        f"Sum of item values (${item_sum:,.2f}) does not match the contract total "
        f"(${contract_total:,.2f})"
    ]


# ─── Retry Policy ────────────────────────────────────────────────────


def should_retry(
    records: list[ScheduleRecord],
    summary: AgreementSummary | None = None,
    config: PolicyConfig | None = None,
) -> bool:
    """Would another extraction attempt plausibly help?

    Pure function for the transport layer. The core itself never retries.
    """
    config = config or DEFAULT_POLICY
    if not records:
        return True
    missing = sum(1 for r in records if r.total_price is None)
    if missing / len(records) > config.retry_missing_price_ratio:
        return True
    if summary is not None and summary.count and summary.mean_confidence < config.retry_min_mean_confidence:
        return True
    return False
