# routers/analysis_routes.py
"""
FastAPI routes for StockGPT analysis.

Thin HTTP wrapper around ``AnalysisPipeline``; every failure leaves as the
flat ``{message, isRetryable, code}`` body with a status derived from the code.
"""
import logging
from typing import Dict

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from middleware.rate_limit import ANALYSIS_RATE_LIMIT, limiter
from services.ai.analysis.analysis_service import AnalysisPipeline
from services.ai.analysis.config import AnalysisConfig
from services.ai.analysis.errors import AnalysisError, ErrorCode

logger = logging.getLogger(__name__)

router = APIRouter()

STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.SAFETY_REFUSAL: 422,
    ErrorCode.RECITATION_REFUSAL: 422,
    ErrorCode.MODEL_STOPPED: 422,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.OFFLINE: 503,
    ErrorCode.OVERLOADED: 503,
    ErrorCode.MISSING_CREDENTIAL: 503,
    ErrorCode.TIMEOUT: 504,
}


def status_for(err: AnalysisError) -> int:
    return STATUS_BY_CODE.get(err.code, 502)


class AnalysisQueryBody(BaseModel):
    # Left unconstrained so an empty query gets the InvalidInput body, not a 422.
    query: str = ""


def get_analysis_pipeline(app: FastAPI) -> AnalysisPipeline:
    pipeline = getattr(app.state, "analysis_pipeline", None)
    if pipeline is None:
        pipeline = AnalysisPipeline(AnalysisConfig.from_env())
        app.state.analysis_pipeline = pipeline
    return pipeline


async def analysis_error_handler(request: Request, exc: AnalysisError) -> JSONResponse:
    status = status_for(exc)
    logger.info(
        "analysis_request_failed path=%s code=%s status=%s",
        request.scope.get("path", ""),
        exc.code.value,
        status,
    )
    return JSONResponse(status_code=status, content=exc.to_dict())


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.post("")
@limiter.limit(ANALYSIS_RATE_LIMIT)
async def run_analysis(request: Request, body: AnalysisQueryBody):
    """Run one grounded analysis. 200 with the camelCase result, or an error body."""
    pipeline = get_analysis_pipeline(request.app)
    result = await pipeline.analyze(body.query)
    return JSONResponse(content=result.to_wire())


@router.get("/health")
async def analysis_health(request: Request):
    config = get_analysis_pipeline(request.app).config
    return {
        "status": "ok" if config.has_credential else "degraded",
        "credentialConfigured": config.has_credential,
        "model": config.model,
        "webSearch": config.use_web,
    }
