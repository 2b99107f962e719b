"""
Test suite for agreement scoring, Garage mapping, the pipeline orchestrator
and policy loading.

Run: pytest tests/ -v
"""

from __future__ import annotations

import json
import math
from datetime import date
from decimal import Decimal
from typing import Any

import pytest

from garage_schedules.agreement import (
    AgreementScorer,
    completeness,
    date_similarity,
    numeric_similarity,
    tier_similarity,
    token_jaccard,
)
from garage_schedules.config import POLICY_PATH_ENV, PolicyConfig, load_policy
from garage_schedules.exceptions import PolicyConfigError
from garage_schedules.garage import CONDITION_GTE, GarageMapper, price_parts
from garage_schedules.models import (
    AgreementSummary,
    BillingType,
    Evidence,
    FrequencyUnit,
    GarageBillingType,
    GarageFrequencyUnit,
    GarageRecord,
    ScheduleRecord,
    Tier,
)
from garage_schedules.normalizer import normalize_schedule
from garage_schedules.parsing import UNPARSEABLE_ISSUE
from garage_schedules.pipeline import SchedulePipeline, check_totals, should_retry


# ─── Test Data ───────────────────────────────────────────────────────


def _seo(price: Any = 1000, **overrides: Any) -> dict[str, Any]:
    item = {
        "item_name": "SEO Pro",
        "billing_type": "Flat price",
        "total_price": price,
        "frequency_unit": "Month(s)",
        "periods": 12,
        "start_date": "2024-01-01",
    }
    item.update(overrides)
    return item


SETUP = {"item_name": "Setup Fee", "total_price": 500, "frequency_unit": "None", "start_date": "2024-01-01"}

RUN_A = {"schedules": [_seo(1000), SETUP], "totals_check": {"contract_total_if_any": 12500}}
RUN_B = {"schedules": [_seo(995), SETUP]}


def _record(**overrides: Any) -> ScheduleRecord:
    return ScheduleRecord(**overrides)


# ═══════════════════════════════════════════════════════════════════════
# FIELD SIMILARITIES
# ═══════════════════════════════════════════════════════════════════════


class TestSimilarities:
    def test_jaccard_both_empty_agree(self):
        assert token_jaccard(None, "") == 1.0

    def test_jaccard_one_empty(self):
        assert token_jaccard("SEO Pro", None) == 0.0

    def test_jaccard_partial(self):
        assert token_jaccard("SEO Pro", "Blog Pro") == pytest.approx(1 / 3)

    def test_numeric_relative_difference(self):
        assert numeric_similarity(Decimal(1000), Decimal(995)) == pytest.approx(0.995)

    def test_numeric_zero_pair(self):
        assert numeric_similarity(0, 0) == 1.0

    def test_numeric_missing_one_side(self):
        assert numeric_similarity(None, 5) == 0.0

    def test_date_decay(self):
        assert date_similarity(date(2024, 1, 1), date(2024, 1, 31)) == pytest.approx(math.exp(-1))

    def test_same_date(self):
        assert date_similarity(date(2024, 1, 1), date(2024, 1, 1)) == 1.0

    def test_identical_tiers(self):
        tiers = [Tier(tier_name="First 10", price=Decimal(15), min_quantity=1)]
        assert tier_similarity(tiers, list(tiers)) == pytest.approx(1.0)

    def test_tiers_on_one_side_only(self):
        assert tier_similarity([Tier(price=Decimal(1))], []) == 0.0

    def test_completeness_penalty(self):
        record = _record(item_name="X")
        assert completeness(record) == pytest.approx(0.8)

    def test_completeness_full(self):
        record = normalize_schedule(_seo())
        assert completeness(record) == 1.0


# ═══════════════════════════════════════════════════════════════════════
# AGREEMENT SCORER
# ═══════════════════════════════════════════════════════════════════════


class TestAgreementScorer:
    scorer = AgreementScorer()

    def test_small_price_drift_is_trusted(self):
        first = [normalize_schedule(_seo(1000))]
        second = [normalize_schedule(_seo(995))]
        results, summary = self.scorer.score(first, second)
        assert results[0].matched_index == 0
        assert results[0].confidence > 0.9
        assert results[0].flag_for_review is False
        assert summary.flagged == 0

    def test_empty_second_run_floors_confidence(self):
        first = [normalize_schedule(_seo()), normalize_schedule(SETUP)]
        results, summary = self.scorer.score(first, [])
        assert all(r.matched_index == -1 for r in results)
        assert all(r.confidence == pytest.approx(0.2) for r in results)
        assert all(r.flag_for_review for r in results)
        assert summary.unmatched == 2

    def test_greedy_pairing_follows_content(self):
        seo = normalize_schedule(_seo())
        blog = normalize_schedule(_seo(300, item_name="Blog Pro"))
        results, _ = self.scorer.score([seo, blog], [blog, seo])
        assert [r.matched_index for r in results] == [1, 0]

    def test_second_run_items_used_once(self):
        seo = normalize_schedule(_seo())
        results, summary = self.scorer.score([seo, seo], [seo])
        assert results[0].matched_index == 0
        assert results[1].matched_index == -1
        assert results[1].similarity == 0.0
        assert summary.matched == 1
        assert summary.unmatched == 1

    def test_tie_goes_to_first_candidate(self):
        seo = normalize_schedule(_seo())
        results, summary = self.scorer.score([seo], [seo, seo])
        assert results[0].matched_index == 0
        assert summary.unmatched_second_run == 1

    def test_incomplete_record_flagged(self):
        sparse = normalize_schedule({"item_name": "Mystery"})
        results, _ = self.scorer.score([sparse], [sparse])
        assert results[0].completeness < 1.0
        assert results[0].confidence < 1.0

    def test_different_items_flagged(self):
        first = [normalize_schedule(_seo())]
        second = [normalize_schedule({"item_name": "Website Platform", "total_price": 90})]
        results, _ = self.scorer.score(first, second)
        assert results[0].flag_for_review is True

    @pytest.mark.parametrize("second_count", [0, 1, 2, 3])
    def test_confidence_in_unit_interval(self, second_count):
        first = [normalize_schedule(_seo()), normalize_schedule(SETUP)]
        second = [normalize_schedule(_seo(800 + n)) for n in range(second_count)]
        results, summary = self.scorer.score(first, second)
        assert len(results) == len(first)
        assert all(0.0 <= r.confidence <= 1.0 for r in results)
        assert 0.0 <= summary.min_confidence <= summary.mean_confidence <= 1.0

    def test_empty_first_run(self):
        results, summary = self.scorer.score([], [normalize_schedule(_seo())])
        assert results == []
        assert summary.count == 0
        assert summary.unmatched_second_run == 1


# ═══════════════════════════════════════════════════════════════════════
# GARAGE MAPPER
# ═══════════════════════════════════════════════════════════════════════


class TestServiceTerm:
    mapper = GarageMapper()

    def test_dates_win(self):
        record = _record(start_date=date(2024, 1, 1), calculated_end_date=date(2024, 12, 31),
                         frequency_unit=FrequencyUnit.YEAR)
        assert self.mapper.service_term_months(record) == 12

    def test_months_of_service(self):
        record = _record(months_of_service=6, frequency_unit=FrequencyUnit.MONTH)
        assert self.mapper.service_term_months(record) == 6

    def test_cadence_times_periods(self):
        record = _record(frequency_unit=FrequencyUnit.YEAR, periods=2)
        assert self.mapper.service_term_months(record) == 24

    def test_one_time_is_one_month(self):
        assert self.mapper.service_term_months(_record()) == 1

    def test_short_daily_term_is_zero(self):
        record = _record(frequency_unit=FrequencyUnit.DAY, periods=10)
        assert self.mapper.service_term_months(record) == 0


class TestBillingPeriods:
    mapper = GarageMapper()

    def _periods(self, **overrides: Any):
        record = _record(**overrides)
        return self.mapper.billing_periods(record, self.mapper.service_term_months(record))

    def test_monthly(self):
        result = self._periods(frequency_unit=FrequencyUnit.MONTH, periods=12)
        assert result == (GarageFrequencyUnit.MONTH, 1, 12)

    def test_every_three_months_is_quarterly(self):
        result = self._periods(frequency_unit=FrequencyUnit.MONTH, frequency_every=3, periods=4)
        assert result == (GarageFrequencyUnit.QUARTER, 1, 4)

    def test_yearly(self):
        result = self._periods(frequency_unit=FrequencyUnit.YEAR, periods=2)
        assert result == (GarageFrequencyUnit.YEAR, 1, 2)

    def test_semi_monthly(self):
        result = self._periods(frequency_unit=FrequencyUnit.SEMI_MONTH, periods=24)
        assert result == (GarageFrequencyUnit.SEMI_MONTH, 1, 24)

    def test_weeks_become_days(self):
        result = self._periods(frequency_unit=FrequencyUnit.WEEK, frequency_every=2, periods=6)
        assert result == (GarageFrequencyUnit.DAYS, 14, 6)

    def test_days_with_zero_term_keep_periods(self):
        result = self._periods(frequency_unit=FrequencyUnit.DAY, periods=10)
        assert result == (GarageFrequencyUnit.DAYS, 1, 10)

    def test_one_time(self):
        result = self._periods(frequency_every=1)
        assert result == (GarageFrequencyUnit.NONE, 1, 1)


class TestGarageMapper:
    mapper = GarageMapper()

    def test_flat_quantity_always_one(self):
        garage, _ = self.mapper.map(_record(item_name="SEO Pro", quantity=5, total_price=Decimal(10)))
        assert garage.quantity == 1.0
        assert garage.billing_type == GarageBillingType.FLAT_PRICE

    def test_unit_quantity_defaulted(self):
        record = _record(item_name="Seats", billing_type=BillingType.UNIT, total_price=Decimal(10))
        garage, issues = self.mapper.map(record)
        assert garage.quantity == 1.0
        assert any("quantity missing" in i for i in issues)

    def test_unit_quantity_kept(self):
        record = _record(item_name="Seats", billing_type=BillingType.UNIT, quantity=25,
                         total_price=Decimal(475))
        garage, _ = self.mapper.map(record)
        assert garage.quantity == 25

    def test_missing_price_zero_filled(self):
        garage, issues = self.mapper.map(_record(item_name="Consulting"))
        assert garage.total_price == 0.0
        assert any("total_price missing" in i for i in issues)

    def test_zero_fill_can_be_disabled(self):
        mapper = GarageMapper(PolicyConfig(zero_fill_missing_price=False))
        garage, issues = mapper.map(_record(item_name="Consulting"))
        assert garage.total_price is None
        assert issues == []

    def test_integration_item_exact(self):
        garage, _ = self.mapper.map(_record(item_name="SEO Pro", total_price=Decimal(1)))
        assert garage.integration_item == "ii_seo_pro"

    def test_integration_item_canonical(self):
        garage, _ = self.mapper.map(_record(item_name="Seo  Pro!!", total_price=Decimal(1)))
        assert garage.integration_item == "ii_seo_pro"

    def test_integration_item_unknown(self):
        garage, _ = self.mapper.map(_record(item_name="Something Else", total_price=Decimal(1)))
        assert garage.integration_item is None

    def test_one_time_name_from_evidence(self):
        record = _record(evidence=[Evidence(snippet="Implementation services billed once")],
                         total_price=Decimal(900))
        garage, issues = self.mapper.map(record)
        assert garage.item_name == "Implementation Fee"
        assert garage.item_description == "Implementation Fee (one-time)"
        assert any("defaulted to 'Implementation Fee'" in i for i in issues)

    def test_one_time_generic_default(self):
        garage, _ = self.mapper.map(_record(total_price=Decimal(50)))
        assert garage.item_name == "One-time Fee"

    def test_model_name_never_overridden(self):
        record = _record(item_name="Kickoff Workshop", description="setup session",
                         total_price=Decimal(50))
        garage, _ = self.mapper.map(record)
        assert garage.item_name == "Kickoff Workshop"
        assert garage.item_description == "setup session"

    def test_recurring_nameless_left_alone(self):
        record = _record(frequency_unit=FrequencyUnit.MONTH, total_price=Decimal(50))
        garage, _ = self.mapper.map(record)
        assert garage.item_name == ""

    def test_tiers_mapped(self):
        record = _record(
            item_name="Listings",
            billing_type=BillingType.TIER_UNIT,
            quantity=40,
            total_price=Decimal(500),
            tiers=[
                Tier(tier_name="First 10", price=Decimal("15.00"), min_quantity=1),
                Tier(tier_name="Next", price=Decimal("12.5")),
                Tier(tier_name="Rest"),
            ],
        )
        garage, issues = self.mapper.map(record)
        first, second, third = garage.pricing_tiers
        assert (first.tier, first.mantissa, first.exponent) == (1, 15, 0)
        assert first.condition_value == 1.0
        assert first.condition_operator == CONDITION_GTE
        assert (second.mantissa, second.exponent) == (125, -1)
        assert second.condition_operator is None
        assert (third.mantissa, third.exponent) == (0, 0)
        assert "Listings: tier 3 has no price; sent as 0" in issues

    @pytest.mark.parametrize(
        "price, parts",
        [("100", (100, 0)), ("12.50", (125, -1)), ("0.015", (15, -3)), ("0", (0, 0))],
    )
    def test_price_parts(self, price, parts):
        assert price_parts(Decimal(price)) == parts


# ═══════════════════════════════════════════════════════════════════════
# PIPELINE
# ═══════════════════════════════════════════════════════════════════════


class TestPipeline:
    pipeline = SchedulePipeline()

    def test_two_runs_scored_and_mapped(self):
        result = self.pipeline.run(RUN_A, RUN_B)
        assert result.run_count == 2
        assert len(result.garage) == 2
        assert len(result.agreement) == 2
        assert result.garage[0].integration_item == "ii_seo_pro"
        assert result.garage[1].integration_item == "ii_setup_fee"
        assert result.garage[1].frequency_unit == GarageFrequencyUnit.NONE
        assert result.needs_retry is False
        assert result.issues == []

    def test_single_run_has_no_agreement(self):
        result = self.pipeline.run(RUN_A)
        assert result.agreement is None
        assert result.agreement_summary is None
        assert len(result.garage) == 2

    def test_run_garage_returns_run_one_records(self):
        garage = self.pipeline.run_garage(RUN_A, RUN_B)
        assert all(isinstance(g, GarageRecord) for g in garage)
        assert [g.total_price for g in garage] == [1000.0, 500.0]

    def test_no_runs(self):
        result = self.pipeline.run()
        assert result.needs_retry is True
        assert result.garage == []

    def test_extra_runs_noted(self):
        result = self.pipeline.run(RUN_A, RUN_B, RUN_B)
        assert "Only the first two of 3 extraction runs are compared" in result.issues

    def test_unparseable_first_run(self):
        result = self.pipeline.run("the model refused", RUN_B)
        assert result.garage == []
        assert UNPARSEABLE_ISSUE in result.issues
        assert result.needs_retry is True

    def test_json_text_payload(self):
        result = self.pipeline.run(json.dumps(RUN_A))
        assert len(result.garage) == 2

    def test_totals_mismatch_reported(self):
        run = {"schedules": [_seo()], "totals_check": {"contract_total_if_any": 5000}}
        result = self.pipeline.run(run)
        assert any("does not match the contract total" in i for i in result.issues)

    def test_mapping_issues_surface(self):
        result = self.pipeline.run({"schedules": [{"item_name": "Consulting"}]})
        assert any("total_price missing" in i for i in result.issues)

    def test_oversized_price_does_not_abort_run(self):
        result = self.pipeline.run({"schedules": [{"item_name": "SEO Pro", "total_price": 1e27}]})
        assert len(result.garage) == 1
        assert result.schedules[0].total_price is None
        assert result.needs_retry is True

    def test_model_recommendations_passed_through(self):
        run = {"schedules": [_seo()], "model_recommendations": {"force_multi": True}}
        assert self.pipeline.run(run).model_recommendations == {"force_multi": True}

    def test_sample_contract_responses(self):
        from main import SAMPLE_RUN_1, SAMPLE_RUN_2

        result = self.pipeline.run(SAMPLE_RUN_1, SAMPLE_RUN_2)
        seo, seat, consulting, setup = result.garage
        assert seo.integration_item == "ii_seo_pro"
        assert seat.billing_type == GarageBillingType.FLAT_PRICE
        assert seat.quantity == 1.0
        assert consulting.billing_type == GarageBillingType.FLAT_PRICE
        assert setup.total_price == 0.0
        assert setup.item_name == "Setup Fee"
        assert "Renewal terms unclear" in result.issues


class TestTotalsCheck:
    def test_within_tolerance(self):
        records = [normalize_schedule(_seo())]
        assert check_totals(records, {"contract_total_if_any": "12,000.00"}) == []

    def test_no_contract_total(self):
        assert check_totals([], {"contract_total_if_any": None}) == []
        assert check_totals([], None) == []


class TestShouldRetry:
    def test_no_records(self):
        assert should_retry([]) is True

    def test_half_missing_is_tolerated(self):
        records = [normalize_schedule(_seo()), normalize_schedule({"item_name": "Consulting"})]
        assert should_retry(records) is False

    def test_mostly_missing_prices(self):
        records = [normalize_schedule({"item_name": "A"}), normalize_schedule({"item_name": "B"})]
        assert should_retry(records) is True

    def test_low_agreement(self):
        records = [normalize_schedule(_seo())]
        summary = AgreementSummary(count=1, mean_confidence=0.3, min_confidence=0.3)
        assert should_retry(records, summary) is True

    def test_healthy_run(self):
        records = [normalize_schedule(_seo())]
        summary = AgreementSummary(count=1, mean_confidence=0.95, min_confidence=0.95)
        assert should_retry(records, summary) is False


# ═══════════════════════════════════════════════════════════════════════
# POLICY LOADING
# ═══════════════════════════════════════════════════════════════════════


class TestLoadPolicy:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv(POLICY_PATH_ENV, raising=False)
        policy = load_policy()
        assert policy.version == "2024.09"
        assert policy.brand_terms == ["luxury presence"]

    def test_partial_override(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"version": "test", "brand_terms": ["acme"]}))
        policy = load_policy(path)
        assert policy.version == "test"
        assert policy.brand_terms == ["acme"]
        assert policy.catalog["SEO Pro"] == "ii_seo_pro"

    def test_env_var_path(self, tmp_path, monkeypatch):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"catalog_fuzzy_threshold": 0.8}))
        monkeypatch.setenv(POLICY_PATH_ENV, str(path))
        assert load_policy().catalog_fuzzy_threshold == 0.8

    def test_invalid_values_raise(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"catalog_fuzzy_threshold": "high"}))
        with pytest.raises(PolicyConfigError) as exc:
            load_policy(path)
        assert exc.value.code == "POLICY_CONFIG_INVALID"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(PolicyConfigError):
            load_policy(tmp_path / "absent.json")

    def test_malformed_json_raises(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text("{not json")
        with pytest.raises(PolicyConfigError):
            load_policy(path)

    def test_custom_catalog_used_by_pipeline(self):
        pipeline = SchedulePipeline(PolicyConfig(catalog={"Widget Hosting": "ii_widget"}))
        result = pipeline.run({"schedules": [{"item_name": "widget hosting", "total_price": 5}]})
        assert result.garage[0].integration_item == "ii_widget"
        assert len(pipeline.catalog) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
