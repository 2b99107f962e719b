"""
LLM-based schedule extraction from contract text using OpenAI JSON mode.

This is a collaborator of the pipeline, not part of it: it returns the
model's raw text and nothing else. Parsing, normalization and every
business rule happen downstream in deterministic code.

Design:
  - JSON mode enforced (one object, no prose)
  - Graceful fallback: no API key, no package, or API failure → None
  - No retries here; the caller decides with pipeline.should_retry()
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
MODEL_ENV = "GARAGE_EXTRACTION_MODEL"


# ─── System Prompt ───────────────────────────────────────────────────

_MULTI_HINTS = {
    "on": "ALWAYS enumerate multiple schedules if plausible.",
    "off": (
        "Return exactly the items you are certain of; "
        "do not search for additional schedules."
    ),
    "auto": (
        "Decide whether multiple schedules exist; if there is evidence (multiple "
        "fees, renewal tables, co-term, expansion, etc.) set "
        "model_recommendations.force_multi=true and enumerate them."
    ),
}

SYSTEM_PROMPT = """\
You are an expert Revenue Operations analyst preparing Garage revenue schedules.

TASK:
Given a contract, enumerate EVERY billable item and map each to Garage
revenue schedule fields. If anything is ambiguous, return a conservative
result and add an issue explaining what to check.

{multi_hint}

Return ONE JSON object only (no prose) with:
{{
  "schedules": [
    {{
      "schedule_label": "string|null",
      "item_name": "string",
      "description": "string|null",
      "billing_type": "Flat price|Unit price|Tier flat price|Tier unit price",
      "total_price": number|null,
      "quantity": number|null,
      "start_date": "YYYY-MM-DD|null",
      "frequency_every": number|null,
      "frequency_unit": "None|Day(s)|Week(s)|Semi_month(s)|Month(s)|Year(s)",
      "months_of_service": number|null,
      "periods": number|null,
      "calculated_end_date": "YYYY-MM-DD|null",
      "net_terms": number|null,
      "rev_rec_category": "string|null",
      "event_to_track": "string|null",
      "unit_label": "string|null",
      "price_per_unit": number|null,
      "volume_based": boolean|null,
      "tiers": [{{"tier_name": "string|null", "price": number|null,
                 "applied_when": "string|null", "min_quantity": number|null}}],
      "evidence": [{{"page": number, "snippet": "string"}}]
    }}
  ],
  "issues": ["string"],
  "totals_check": {{"sum_of_items": number|null, "contract_total_if_any": number|null,
                    "matches": boolean|null, "notes": "string|null"}},
  "model_recommendations": {{"force_multi": boolean|null, "reasons": ["string"]}}
}}

RULES:
1. Billing type MUST be one of the four values above.
2. Frequency unit MUST be one of the six values above.
3. For one-time Flat price items, quantity is 1 unless the contract says otherwise.
4. For Unit or Tier items include event_to_track, unit_label, and price_per_unit or tiers.
5. Include page + snippet evidence for every extracted price and date.
6. If uncertain about a field, set it to null and add an issue.
"""


def build_system_prompt(force_multi: str = "auto") -> str:
    hint = _MULTI_HINTS.get(force_multi, _MULTI_HINTS["auto"])
    return SYSTEM_PROMPT.format(multi_hint=hint)


def extract_schedules_with_llm(
    contract_text: str,
    *,
    model: str | None = None,
    force_multi: str = "auto",
) -> str | None:
    """Ask the model for revenue schedules as a single JSON object.

    Returns:
        The raw response text, or None if the LLM is unavailable or fails.
        Failure is NOT an error — the caller decides whether to retry.
    """
    api_key = os.environ.get("OPENAI_API_KEY")
    if not api_key:
        logger.info("No OPENAI_API_KEY set — skipping LLM extraction")
        return None

    chosen = model or os.environ.get(MODEL_ENV) or DEFAULT_MODEL
    try:
        from openai import OpenAI

        client = OpenAI(api_key=api_key)

        response = client.chat.completions.create(
            model=chosen,
            messages=[
                {"role": "system", "content": build_system_prompt(force_multi)},
                {
                    "role": "user",
                    "content": (
                        "Extract Garage-ready revenue schedules as a single JSON "
                        f"object from this contract:\n\n{contract_text}"
                    ),
                },
            ],
            response_format={"type": "json_object"},
        )

        content = response.choices[0].message.content
        if content is None:
            logger.error("LLM returned empty content")
            return None

        logger.info("LLM extraction succeeded (%s)", chosen)
        return content

    except ImportError:
        logger.warning("openai package not installed — pip install openai")
        return None
    except Exception as e:
        logger.error("LLM extraction failed: %s", e)
        return None
