# services/ai/analysis/input_guard.py
"""Pre-flight checks. Nothing here talks to the model."""
from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from schemas.analysis import AnalysisRequest

from .config import AnalysisConfig
from .errors import AnalysisError, ErrorCode

logger = logging.getLogger(__name__)

ConnectivityProbe = Callable[[], Awaitable[bool]]


def normalize_query(raw: Any, *, min_length: int = 1, max_length: int = 500) -> AnalysisRequest:
    if not isinstance(raw, str):
        raise AnalysisError.from_code(ErrorCode.INVALID_INPUT, detail=f"query type={type(raw).__name__}")
    query = raw.strip()
    if not query or len(query) < min_length:
        raise AnalysisError.from_code(ErrorCode.INVALID_INPUT, detail="query empty after trim")
    if len(query) > max_length:
        raise AnalysisError(
            f"Query is too long. Please keep it under {max_length} characters.",
            code=ErrorCode.INVALID_INPUT,
            detail=f"query_len={len(query)}",
        )
    try:
        return AnalysisRequest(query=query)
    except ValidationError as exc:
        raise AnalysisError.from_code(ErrorCode.INVALID_INPUT, detail=str(exc)) from exc


def dns_probe(host: str, timeout_s: float = 2.0) -> ConnectivityProbe:
    """Probe that resolves the API host; any failure counts as offline."""

    async def _probe() -> bool:
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.getaddrinfo(host, 443, type=socket.SOCK_STREAM),
                timeout=timeout_s,
            )
            return True
        except (OSError, asyncio.TimeoutError) as exc:
            logger.warning("analysis.connectivity.failed host=%s err=%s", host, type(exc).__name__)
            return False

    return _probe


async def ensure_online(probe: ConnectivityProbe) -> None:
    if not await probe():
        raise AnalysisError.from_code(ErrorCode.OFFLINE)


def ensure_credential(config: AnalysisConfig) -> None:
    if not config.has_credential:
        raise AnalysisError.from_code(ErrorCode.MISSING_CREDENTIAL)
