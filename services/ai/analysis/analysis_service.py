# services/ai/analysis/analysis_service.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import astuple
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from prometheus_client import Counter, Histogram
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from schemas.analysis import AnalysisResult

from .config import AnalysisConfig
from .errors import AnalysisError, classify_exception
from .gemini_client import AnalysisModelClient, GeminiAnalysisClient
from .input_guard import ConnectivityProbe, dns_probe, ensure_credential, ensure_online, normalize_query
from .prompt_builder import AnalysisPrompt, build_prompt
from .response_pipeline import process_reply

logger = logging.getLogger(__name__)

# ============================================================================
# METRICS
# ============================================================================

ANALYSIS_ATTEMPTS = Counter(
    "stockgpt_analysis_attempts_total",
    "Model invocation attempts made by the analysis pipeline",
)
ANALYSIS_RESULTS = Counter(
    "stockgpt_analysis_results_total",
    "Finished analyses by outcome (success or error code)",
    ["outcome"],
)
ATTEMPT_DURATION = Histogram(
    "stockgpt_analysis_attempt_duration_seconds",
    "Wall time of one invoke + parse attempt",
    buckets=(1, 2.5, 5, 10, 20, 30, 60, 90, 120, 180),
)

SleepFn = Callable[[float], Awaitable[Any]]


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, AnalysisError) and exc.is_retryable


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    code = exc.code.value if isinstance(exc, AnalysisError) else type(exc).__name__
    logger.warning(
        "analysis.retry attempt=%s code=%s sleep_s=%.2f",
        retry_state.attempt_number,
        code,
        delay,
    )


class AnalysisPipeline:
    """
    query -> guard -> prompt -> [invoke -> extract/parse/repair/validate] x N -> AnalysisResult

    Holds configuration and collaborators only; no per-request state survives
    an ``analyze`` call, so one instance can serve concurrent requests.
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        client: Optional[AnalysisModelClient] = None,
        connectivity_probe: Optional[ConnectivityProbe] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.config = config or AnalysisConfig.from_env()
        self.config.validate(require_credential=False)
        self._client = client
        self._owns_client = client is None
        if connectivity_probe is None and self.config.check_connectivity:
            connectivity_probe = dns_probe(self.config.connectivity_target, self.config.connectivity_timeout_s)
        self._probe = connectivity_probe
        self._sleep = sleep

    def _get_client(self) -> AnalysisModelClient:
        if self._client is None:
            self._client = GeminiAnalysisClient(self.config)
        return self._client

    async def _preflight(self, query: Any) -> AnalysisPrompt:
        request = normalize_query(
            query,
            min_length=self.config.min_query_length,
            max_length=self.config.max_query_length,
        )
        if self._probe is not None:
            await ensure_online(self._probe)
        if self._owns_client:
            ensure_credential(self.config)
        return build_prompt(request.query, as_of=date.today())

    async def _attempt(self, client: AnalysisModelClient, prompt: AnalysisPrompt) -> AnalysisResult:
        ANALYSIS_ATTEMPTS.inc()
        started = time.perf_counter()
        try:
            reply = await client.generate(prompt)
            return process_reply(reply)
        except AnalysisError:
            raise
        except Exception as exc:
            raise classify_exception(exc) from exc
        finally:
            ATTEMPT_DURATION.observe(time.perf_counter() - started)

    async def analyze(self, query: Any) -> AnalysisResult:
        started = time.perf_counter()
        try:
            prompt = await self._preflight(query)
            client = self._get_client()

            retrying = AsyncRetrying(
                stop=stop_after_attempt(self.config.max_attempts),
                wait=wait_exponential(multiplier=self.config.backoff_initial_s, max=self.config.backoff_max_s),
                retry=retry_if_exception(_is_retryable),
                sleep=self._sleep,
                before_sleep=_log_retry,
                reraise=True,
            )
            result: Optional[AnalysisResult] = None
            async for attempt in retrying:
                with attempt:
                    result = await self._attempt(client, prompt)
        except AnalysisError as err:
            ANALYSIS_RESULTS.labels(outcome=err.code.value).inc()
            logger.warning(
                "analysis.failed code=%s retryable=%s elapsed_ms=%s detail=%s",
                err.code.value,
                err.is_retryable,
                int((time.perf_counter() - started) * 1000),
                err.detail,
            )
            raise

        ANALYSIS_RESULTS.labels(outcome="success").inc()
        logger.info(
            "analysis.done symbol=%s signal=%s elapsed_ms=%s",
            result.symbol,
            result.signal.recommendation,
            int((time.perf_counter() - started) * 1000),
        )
        return result


# ============================================================================
# MODULE-LEVEL ENTRY POINT
# ============================================================================

# One pipeline (and so one Gemini client) per distinct configuration.
_PIPELINES: Dict[Tuple[Any, ...], AnalysisPipeline] = {}


def get_pipeline(config: Optional[AnalysisConfig] = None) -> AnalysisPipeline:
    """Shared pipeline for ``config`` (environment config when None), built on first use."""
    config = config or AnalysisConfig.from_env()
    key = astuple(config)
    pipeline = _PIPELINES.get(key)
    if pipeline is None:
        pipeline = AnalysisPipeline(config)
        _PIPELINES[key] = pipeline
    return pipeline


async def analyze(query: Any, config: Optional[AnalysisConfig] = None) -> AnalysisResult:
    """
    Convenience wrapper over ``get_pipeline(config).analyze(query)``.

    Repeated calls with an equal configuration reuse one pipeline. Callers
    that inject a client or a sleep function should hold their own
    ``AnalysisPipeline`` instead.
    """
    return await get_pipeline(config).analyze(query)
