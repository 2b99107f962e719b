"""
Cross-run agreement scoring.

The same contract is extracted twice, independently. Where the two runs
agree, we trust the item; where they drift apart, a human should look.
There is no learning here: confidence is a deterministic function of two
realized outputs.

  similarity  = Σ weight_f × sim_f(run1 item, run2 item)
  completeness = 1 − 0.5 × (missing key fields / key fields)
  confidence  = 0.2 + 0.8 × similarity × completeness

Pairing is greedy in run-1 order: each run-1 item takes the best remaining
run-2 item (first one wins a tie) and that item leaves the pool.
"""

from __future__ import annotations

import logging
import math
import re
from decimal import Decimal

from .config import DEFAULT_POLICY, PolicyConfig
from .models import AgreementResult, AgreementSummary, ScheduleRecord, Tier

logger = logging.getLogger(__name__)

CONFIDENCE_FLOOR = 0.2
MAX_COMPLETENESS_PENALTY = 0.5
KEY_FIELDS = ("item_name", "total_price", "start_date", "frequency_unit", "periods")

_WORD = re.compile(r"[a-z0-9]+")


# ─── Field Similarities ──────────────────────────────────────────────


def token_jaccard(a: str | None, b: str | None) -> float:
    """Jaccard overlap of word tokens; two empty values agree."""
    ta = set(_WORD.findall((a or "").lower()))
    tb = set(_WORD.findall((b or "").lower()))
    if not ta and not tb:
        return 1.0
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def numeric_similarity(a: Decimal | float | None, b: Decimal | float | None) -> float:
    """1 − relative difference, clamped to [0, 1]."""
    if a is None and b is None:
        return 1.0
    if a is None or b is None:
        return 0.0
    fa, fb = float(a), float(b)
    scale = max(abs(fa), abs(fb))
    if scale == 0:
        return 1.0
    return max(0.0, 1.0 - abs(fa - fb) / scale)


def date_similarity(a, b, decay_days: float = 30.0) -> float:
    """exp(−|Δdays| / decay_days); same day = 1.0."""
    if a is None and b is None:
        return 1.0
    if a is None or b is None:
        return 0.0
    return math.exp(-abs((a - b).days) / decay_days)


def exact_similarity(a, b) -> float:
    return 1.0 if a == b else 0.0


def tier_similarity(a: list[Tier], b: list[Tier]) -> float:
    """Position-by-position tier comparison: name 0.3, price 0.5, min-quantity 0.2."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    total = 0.0
    for ta, tb in zip(a, b):
        total += 0.3 * token_jaccard(ta.tier_name, tb.tier_name)
        total += 0.5 * numeric_similarity(ta.price, tb.price)
        total += 0.2 * numeric_similarity(ta.min_quantity, tb.min_quantity)
    return total / max(len(a), len(b))


def record_similarity(
    a: ScheduleRecord, b: ScheduleRecord, config: PolicyConfig | None = None
) -> float:
    """Weighted similarity of two records, in [0, 1]."""
    config = config or DEFAULT_POLICY
    w = config.agreement_weights
    score = (
        w.get("item_name", 0.0) * token_jaccard(a.item_name, b.item_name)
        + w.get("total_price", 0.0) * numeric_similarity(a.total_price, b.total_price)
        + w.get("start_date", 0.0) * date_similarity(a.start_date, b.start_date, config.date_decay_days)
        + w.get("frequency_unit", 0.0) * exact_similarity(a.frequency_unit, b.frequency_unit)
        + w.get("frequency_every", 0.0) * exact_similarity(a.frequency_every, b.frequency_every)
        + w.get("schedule_label", 0.0) * token_jaccard(a.schedule_label, b.schedule_label)
        + w.get("event_to_track", 0.0) * token_jaccard(a.event_to_track, b.event_to_track)
        + w.get("tiers", 0.0) * tier_similarity(a.tiers, b.tiers)
    )
    return min(1.0, max(0.0, score))


def completeness(record: ScheduleRecord) -> float:
    """1.0 when every key field is present, down to 0.5 when none are."""
    missing = 0
    for name in KEY_FIELDS:
        value = getattr(record, name)
        if value is None or value == "":
            missing += 1
    return 1.0 - MAX_COMPLETENESS_PENALTY * missing / len(KEY_FIELDS)


# ─── Scorer ──────────────────────────────────────────────────────────


class AgreementScorer:
    """Pairs two extraction runs and scores each run-1 record.

    Usage:
        results, summary = AgreementScorer().score(run1_records, run2_records)
        review = [r for r in results if r.flag_for_review]
    """

    def __init__(self, config: PolicyConfig | None = None):
        self.config = config or DEFAULT_POLICY

    def score(
        self,
        first: list[ScheduleRecord],
        second: list[ScheduleRecord],
    ) -> tuple[list[AgreementResult], AgreementSummary]:
        pool = list(range(len(second)))
        results: list[AgreementResult] = []

        for i, record in enumerate(first):
            best_index = -1
            best_similarity = 0.0
            for j in pool:
                similarity = record_similarity(record, second[j], self.config)
                if best_index == -1 or similarity > best_similarity:
                    best_index, best_similarity = j, similarity
            if best_index != -1:
                pool.remove(best_index)

            results.append(self._result(i, record, best_index, best_similarity))

        summary = self._summarize(results, unmatched_second_run=len(pool))
        logger.info(
            "Agreement: %d record(s), mean confidence %.3f, %d flagged",
            summary.count, summary.mean_confidence, summary.flagged,
        )
        return results, summary

    def _result(
        self, index: int, record: ScheduleRecord, matched_index: int, similarity: float
    ) -> AgreementResult:
        complete = completeness(record)
        confidence = CONFIDENCE_FLOOR + (1 - CONFIDENCE_FLOOR) * similarity * complete
        confidence = min(1.0, max(0.0, confidence))
        flag = (
            confidence < self.config.review_confidence_below
            or similarity < self.config.review_similarity_below
        )
        return AgreementResult(
            index=index,
            matched_index=matched_index,
            similarity=round(similarity, 4),
            completeness=round(complete, 4),
            confidence=round(confidence, 4),
            flag_for_review=flag,
        )

    @staticmethod
    def _summarize(results: list[AgreementResult], unmatched_second_run: int) -> AgreementSummary:
        if not results:
            return AgreementSummary(unmatched_second_run=unmatched_second_run)
        confidences = [r.confidence for r in results]
        matched = sum(1 for r in results if r.matched_index != -1)
        return AgreementSummary(
            count=len(results),
            matched=matched,
            unmatched=len(results) - matched,
            unmatched_second_run=unmatched_second_run,
            flagged=sum(1 for r in results if r.flag_for_review),
            mean_confidence=round(sum(confidences) / len(confidences), 4),
            min_confidence=min(confidences),
        )
