#!/usr/bin/env python3
"""
Garage Schedules — Entry Point
==============================

Runs the full pipeline on two model responses for the same contract and
prints a review report.

Usage:
    python main.py                          # Built-in sample responses
    python main.py run1.json [run2.json]    # Your own saved model output
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from garage_schedules.config import load_policy
from garage_schedules.pipeline import SchedulePipeline

# ─── Load .env if available (optional dependency) ────────────────────
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass


# ─── Sample Model Output — Messy on Purpose ─────────────────────────

SAMPLE_RUN_1 = """\
Here is the extraction you asked for:
```json
{
  "schedules": [
    {"item_name": "SEO Pro", "billing_type": "flat", "total_price": "$1,000.00",
     "frequency": "billed monthly", "periods": 12, "start_date": "2024-02-01",
     "net_terms": 30,
     "evidence": [{"page": 2, "snippet": "SEO Pro: $1,000.00 per month, 12 months"}]},
    {"item_name": "Luxury Presence Mobile App User Seat", "billing_type": "Unit price",
     "quantity": 25, "price_per_unit": 19, "unit_label": "seat",
     "frequency_unit": "Month(s)", "periods": 12, "start_date": "2024-02-01"},
    {"item_name": "Consulting", "billing_type": "Unit price", "evidence": []},
    {"item_name": "", "description": "Setup fee: $0 (waived)", "frequency_unit": "None",
     "start_date": "2024-02-01"}
  ],
  "issues": ["Renewal terms unclear"],
  "totals_check": {"contract_total_if_any": 12000}
}
```"""

SAMPLE_RUN_2 = """\
{
  "schedules": [
    {"item_name": "SEO Pro subscription", "billing_type": "Flat price", "total_price": 995,
     "frequency_unit": "Month(s)", "periods": 12, "start_date": "2024-02-01"},
    {"item_name": "Mobile App seats", "billing_type": "Unit price", "quantity": 25,
     "frequency_unit": "Month(s)", "start_date": "2024-03-01"},
    {"item_name": "Setup", "total_price": 0, "frequency_unit": "None"}
  ]
}"""


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72


# ─── Pretty Printer Helpers ─────────────────────────────────────────


def _print_record(index, garage, schedule, agreement) -> None:
    """Print one Garage record with its review status and issues."""
    if agreement is None:
        status = f"{_DIM}single run{_RESET}"
    elif agreement.flag_for_review:
        status = f"{_YELLOW}REVIEW  confidence {agreement.confidence:.2f}{_RESET}"
    else:
        status = f"{_GREEN}OK  confidence {agreement.confidence:.2f}{_RESET}"

    price = "—" if garage.total_price is None else f"${garage.total_price:,.2f}"
    print(f"  {_BOLD}#{index + 1} {garage.item_name or '(unnamed)'}{_RESET}  {status}")
    print(f"    Billing:     {garage.billing_type.value}  qty {garage.quantity:g}  {price}")
    print(
        f"    Cadence:     {garage.frequency_unit.value} every {garage.period}, "
        f"{garage.number_of_periods} period(s), term {garage.service_term} month(s)"
    )
    print(f"    Start:       {garage.start_date or '—'}   Net {garage.net_terms}")
    print(f"    Integration: {garage.integration_item or f'{_DIM}no catalog match{_RESET}'}")
    for issue in schedule.issues:
        print(f"    {_DIM}- {issue}{_RESET}")
    print()


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_report(result) -> int:
    """Pretty-print the pipeline result with ANSI color codes.

    Returns:
        0 if nothing needs review, 1 otherwise.
    """
    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  GARAGE SCHEDULE REPORT{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Runs:        {result.run_count}")
    print(f"  Schedules:   {len(result.garage)}")
    summary = result.agreement_summary
    if summary is not None:
        print(
            f"  Confidence:  mean {summary.mean_confidence:.2f}, "
            f"min {summary.min_confidence:.2f}, {summary.flagged} flagged"
        )
    print(f"{'─' * _WIDTH}")

    agreements = result.agreement or [None] * len(result.garage)
    for i, (garage, schedule, agreement) in enumerate(zip(result.garage, result.schedules, agreements)):
        _print_record(i, garage, schedule, agreement)

    if result.issues:
        print(f"  {_YELLOW}{_BOLD}DOCUMENT ISSUES ({len(result.issues)}){_RESET}")
        for issue in result.issues:
            print(f"    {issue}")
        print()

    flagged = summary.flagged if summary is not None else 0
    print(f"{'=' * _WIDTH}")
    if result.needs_retry:
        print(f"  {_RED}{_BOLD}EXTRACTION LOOKS UNUSABLE  --  retry advised{_RESET}")
    elif flagged:
        print(f"  {_YELLOW}{_BOLD}{flagged} schedule(s) need human review{_RESET}")
    else:
        print(f"  {_GREEN}{_BOLD}ALL SCHEDULES AGREE ACROSS RUNS{_RESET}")
    print(f"{'=' * _WIDTH}\n")

    return 1 if result.needs_retry or flagged else 0


# ─── Main ────────────────────────────────────────────────────────────


def main():
    """Run the pipeline on sample (or given) model output and print the report."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    paths = sys.argv[1:]
    if paths:
        payloads = [Path(p).read_text(encoding="utf-8") for p in paths]
    else:
        payloads = [SAMPLE_RUN_1, SAMPLE_RUN_2]

    pipeline = SchedulePipeline(load_policy())
    result = pipeline.run(*payloads)
    sys.exit(print_report(result))


if __name__ == "__main__":
    main()
