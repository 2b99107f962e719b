"""
Garage Schedules — FastAPI Server
=================================

RESTful API for turning contract extractions into Garage revenue schedules.

Endpoints:
    POST /normalize         Normalize already-extracted model output (1+ runs)
    POST /extract           Upload contract text; extract twice, then normalize
    GET  /health            Health check / readiness probe

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production

Docs:
    http://localhost:8000/docs             # Swagger UI (auto-generated)
    http://localhost:8000/redoc            # ReDoc (alternative)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Union

from fastapi import FastAPI, HTTPException, UploadFile
from pydantic import BaseModel, Field

from garage_schedules import __version__
from garage_schedules.config import load_policy
from garage_schedules.exceptions import PayloadStructureError
from garage_schedules.extractor_llm import extract_schedules_with_llm
from garage_schedules.models import PipelineResult
from garage_schedules.pipeline import SchedulePipeline

# ─── Load .env if available ──────────────────────────────────────────
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 1_048_576


# ─── Application Lifespan (pre-warm pipeline) ───────────────────────

_pipeline: SchedulePipeline | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the policy and build the catalog index on startup."""
    global _pipeline  # noqa: PLW0603
    _pipeline = SchedulePipeline(load_policy())
    yield
    _pipeline = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Garage Schedules API",
    description=(
        "Turns LLM-extracted contract line items into policy-compliant Garage "
        "revenue schedules. Deterministic normalization, brand and evidence "
        "policy, two-run agreement scoring, and catalog mapping."
    ),
    version=__version__,
    lifespan=lifespan,
)


# ─── Request / Response Schemas ─────────────────────────────────────


class NormalizeRequest(BaseModel):
    """Request body for the /normalize endpoint."""

    runs: list[Union[dict[str, Any], str]] = Field(
        ...,
        min_length=1,
        description=(
            "Independent model responses for the same contract, run 1 first. "
            "Each is a JSON object or the raw model text."
        ),
        json_schema_extra={
            "example": [
                {
                    "schedules": [
                        {
                            "item_name": "SEO Pro",
                            "billing_type": "Flat price",
                            "total_price": 500,
                            "frequency_unit": "Month(s)",
                            "periods": 12,
                            "start_date": "2024-01-01",
                        }
                    ]
                }
            ]
        },
    )


class ScheduleResponse(PipelineResult):
    """Full pipeline output plus review counters."""

    flagged_count: int = 0
    issue_count: int = 0

    model_config = {"json_schema_extra": {"example": {
        "garage": [{
            "service_start_date": "2024-01-01",
            "service_term": 12,
            "item_name": "SEO Pro",
            "item_description": None,
            "start_date": "2024-01-01",
            "frequency_unit": "MONTH",
            "period": 1,
            "number_of_periods": 12,
            "billing_type": "FLAT_PRICE",
            "event_to_track": None,
            "integration_item": "ii_seo_pro",
            "net_terms": 30,
            "quantity": 1,
            "total_price": 500.0,
            "pricing_tiers": [],
        }],
        "run_count": 2,
        "needs_retry": False,
        "flagged_count": 0,
        "issue_count": 0,
    }}}


class HealthResponse(BaseModel):
    status: str
    version: str
    policy_version: str
    catalog_items: int


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_pipeline() -> SchedulePipeline:
    if _pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialised")
    return _pipeline


def _build_response(result: PipelineResult) -> ScheduleResponse:
    flagged = sum(1 for a in result.agreement or [] if a.flag_for_review)
    issue_count = len(result.issues) + sum(len(s.issues) for s in result.schedules)
    return ScheduleResponse(
        **result.model_dump(),
        flagged_count=flagged,
        issue_count=issue_count,
    )


async def _extract_runs(contract_text: str, force_multi: str, count: int) -> list[str]:
    """Run `count` independent extractions concurrently; keep the ones that returned."""
    outputs = await asyncio.gather(*(
        asyncio.to_thread(extract_schedules_with_llm, contract_text, force_multi=force_multi)
        for _ in range(count)
    ))
    return [o for o in outputs if o is not None]


# ─── Endpoints ───────────────────────────────────────────────────────


@app.post(
    "/normalize",
    summary="Normalize already-extracted model output",
    tags=["Schedules"],
    responses={
        422: {"description": "A run is not a JSON object"},
        503: {"description": "Pipeline not yet initialised"},
    },
)
def normalize_runs(request: NormalizeRequest) -> ScheduleResponse:
    """Run the deterministic pipeline on one or more model responses.

    Returns:
    - **garage**: records ready for the Garage billing system
    - **schedules**: the normalized intermediate records with their issues
    - **agreement**: per-item cross-run confidence (when ≥ 2 runs)
    - **needs_retry**: whether another extraction attempt is advised
    """
    pipeline = _get_pipeline()
    try:
        result = pipeline.run(*request.runs)
    except PayloadStructureError as e:
        raise HTTPException(status_code=422, detail={"code": e.code, "message": str(e)})
    return _build_response(result)


@app.post(
    "/extract",
    summary="Extract schedules from an uploaded contract text file",
    tags=["Schedules"],
    responses={
        413: {"description": "File too large (max 1 MB)"},
        400: {"description": "File is not valid UTF-8 text"},
        422: {"description": "File content too short, or the model returned a non-object payload"},
        503: {"description": "Pipeline not initialised or no extraction succeeded"},
    },
)
async def extract_contract(file: UploadFile, force_multi: str = "auto") -> ScheduleResponse:
    """Upload a `.txt` contract; it is extracted twice and scored for agreement.

    When the result looks unusable (see `should_retry`), one more pair of
    extractions is attempted, up to the policy's attempt limit.
    """
    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 1 MB)")
    try:
        contract_text = content.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="File must be UTF-8 encoded text")

    if len(contract_text.strip()) < 20:
        raise HTTPException(status_code=422, detail="File content too short to be a contract")

    pipeline = _get_pipeline()
    result: PipelineResult | None = None
    for attempt in range(1, pipeline.config.max_extraction_attempts + 1):
        runs = await _extract_runs(contract_text, force_multi, count=2)
        if not runs:
            logger.warning("Extraction attempt %d produced no output", attempt)
            continue
        try:
            result = await asyncio.to_thread(pipeline.run, *runs)
        except PayloadStructureError as e:
            logger.warning("Extraction attempt %d returned a non-object payload: %s", attempt, e)
            raise HTTPException(status_code=422, detail={"code": e.code, "message": str(e)})
        if not result.needs_retry:
            break
        logger.info("Extraction attempt %d advised a retry", attempt)

    if result is None:
        raise HTTPException(
            status_code=503,
            detail="No extraction run succeeded (is OPENAI_API_KEY set?)",
        )
    return _build_response(result)


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Pipeline not yet initialised"}},
)
def health_check() -> HealthResponse:
    """Returns service status and configuration info."""
    pipeline = _get_pipeline()
    return HealthResponse(
        status="healthy",
        version=__version__,
        policy_version=pipeline.config.version,
        catalog_items=len(pipeline.catalog),
    )
