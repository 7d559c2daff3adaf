# services/ai/analysis/errors.py
"""
Error taxonomy for the analysis pipeline.

Every failure that leaves the pipeline is an ``AnalysisError`` carrying a
stable ``ErrorCode``, a user-safe message and a retryability flag. Stages
raise the right code where they fail; ``classify_exception`` is only used at
the SDK boundary, where the error objects are not ours.
"""
from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import httpx
from google.genai import errors as genai_errors

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    INVALID_INPUT = "InvalidInput"
    OFFLINE = "Offline"
    MISSING_CREDENTIAL = "MissingCredential"
    AUTH_FAILURE = "AuthFailure"
    BAD_REQUEST = "BadRequest"
    SAFETY_REFUSAL = "SafetyRefusal"
    RECITATION_REFUSAL = "RecitationRefusal"
    MODEL_STOPPED = "ModelStopped"
    RATE_LIMITED = "RateLimited"
    OVERLOADED = "Overloaded"
    SERVER_ERROR = "ServerError"
    NETWORK_ERROR = "NetworkError"
    TIMEOUT = "Timeout"
    NO_JSON_FOUND = "NoJsonFound"
    PARSE_ERROR = "ParseError"
    SCHEMA_INVALID = "SchemaInvalid"
    UNKNOWN = "Unknown"


RETRYABLE_CODES = frozenset(
    {
        ErrorCode.RATE_LIMITED,
        ErrorCode.OVERLOADED,
        ErrorCode.SERVER_ERROR,
        ErrorCode.NETWORK_ERROR,
        ErrorCode.TIMEOUT,
        ErrorCode.NO_JSON_FOUND,
        ErrorCode.PARSE_ERROR,
        ErrorCode.SCHEMA_INVALID,
        ErrorCode.UNKNOWN,
    }
)

USER_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.INVALID_INPUT: "Please enter a ticker symbol or a question.",
    ErrorCode.OFFLINE: "No internet connection detected.",
    ErrorCode.MISSING_CREDENTIAL: "API key is missing. Please configure your environment.",
    ErrorCode.AUTH_FAILURE: "Authentication failed. Please verify API configuration.",
    ErrorCode.BAD_REQUEST: "The analysis request was rejected by the AI service.",
    ErrorCode.SAFETY_REFUSAL: "Analysis blocked by AI safety filters. Please modify your query.",
    ErrorCode.RECITATION_REFUSAL: "Analysis blocked because it would reproduce copyrighted material. Please rephrase your query.",
    ErrorCode.MODEL_STOPPED: "The AI service stopped before finishing the analysis. Please try a narrower query.",
    ErrorCode.RATE_LIMITED: "System traffic is high. Please wait a moment and try again.",
    ErrorCode.OVERLOADED: "AI service is overloaded. Please try again shortly.",
    ErrorCode.SERVER_ERROR: "AI service temporarily unavailable. Please try again.",
    ErrorCode.NETWORK_ERROR: "Connection failed. Please check your internet connection.",
    ErrorCode.TIMEOUT: "Analysis timed out. The market data took too long to retrieve.",
    ErrorCode.NO_JSON_FOUND: "The AI response did not contain any market data. Retrying usually fixes this.",
    ErrorCode.PARSE_ERROR: "Failed to structure market data. Retrying usually fixes this.",
    ErrorCode.SCHEMA_INVALID: "The AI response was missing critical fields. Retrying usually fixes this.",
    ErrorCode.UNKNOWN: "An unexpected error occurred.",
}


class AnalysisError(Exception):
    """Terminal, user-facing failure of one analysis.

    ``message`` is safe to show; ``detail`` is for logs only. When no
    retryability is given and no code is given either, the error is treated
    as non-retryable.
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        is_retryable: Optional[bool] = None,
        detail: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or ErrorCode.UNKNOWN
        if is_retryable is None:
            is_retryable = code in RETRYABLE_CODES if code is not None else False
        self.is_retryable = is_retryable
        self.detail = detail

    @classmethod
    def from_code(cls, code: ErrorCode, detail: Optional[str] = None) -> "AnalysisError":
        return cls(USER_MESSAGES[code], code=code, detail=detail)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "isRetryable": self.is_retryable,
            "code": self.code.value,
        }

    def __repr__(self) -> str:
        return f"AnalysisError(code={self.code.value}, retryable={self.is_retryable}, detail={self.detail!r})"


# ============================================================================
# SDK BOUNDARY CLASSIFICATION
# ============================================================================

_STATUS_NAMES: Dict[str, ErrorCode] = {
    "UNAUTHENTICATED": ErrorCode.AUTH_FAILURE,
    "PERMISSION_DENIED": ErrorCode.AUTH_FAILURE,
    "RESOURCE_EXHAUSTED": ErrorCode.RATE_LIMITED,
    "UNAVAILABLE": ErrorCode.OVERLOADED,
    "DEADLINE_EXCEEDED": ErrorCode.TIMEOUT,
    "INVALID_ARGUMENT": ErrorCode.BAD_REQUEST,
    "FAILED_PRECONDITION": ErrorCode.BAD_REQUEST,
    "NOT_FOUND": ErrorCode.BAD_REQUEST,
    "INTERNAL": ErrorCode.SERVER_ERROR,
}

# Best-effort tier for error objects that carry nothing but a message.
# Order matters: the first matching rule wins.
_MESSAGE_RULES: Tuple[Tuple[Tuple[str, ...], ErrorCode], ...] = (
    (("api key", "unauthorized", "unauthenticated", "permission denied"), ErrorCode.AUTH_FAILURE),
    (("timeout", "timed out", "deadline"), ErrorCode.TIMEOUT),
    (("quota", "rate limit", "resource exhausted", "too many requests"), ErrorCode.RATE_LIMITED),
    (("recitation", "copyright"), ErrorCode.RECITATION_REFUSAL),
    (("safety", "blocked", "harmful", "prohibited"), ErrorCode.SAFETY_REFUSAL),
    (("overloaded", "unavailable"), ErrorCode.OVERLOADED),
    (("network", "connection", "fetch failed", "offline", "dns"), ErrorCode.NETWORK_ERROR),
    (("json", "parse", "unexpected token"), ErrorCode.PARSE_ERROR),
)


def code_for_status(status: Optional[int]) -> Optional[ErrorCode]:
    """Map an HTTP status from the generation service to an error code."""
    if status is None:
        return None
    if status in (401, 403):
        return ErrorCode.AUTH_FAILURE
    if status == 429:
        return ErrorCode.RATE_LIMITED
    if status == 503:
        return ErrorCode.OVERLOADED
    if status == 504:
        return ErrorCode.TIMEOUT
    if 400 <= status < 500:
        return ErrorCode.BAD_REQUEST
    if status >= 500:
        return ErrorCode.SERVER_ERROR
    return None


def _status_attr(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def classify_by_message(message: str) -> ErrorCode:
    text = (message or "").lower()
    for needles, code in _MESSAGE_RULES:
        if any(n in text for n in needles):
            return code
    return ErrorCode.UNKNOWN


def classify_exception(exc: BaseException) -> AnalysisError:
    """Convert any exception raised during an attempt into an AnalysisError."""
    if isinstance(exc, AnalysisError):
        return exc

    detail = f"{type(exc).__name__}: {exc}"

    if isinstance(exc, genai_errors.APIError):
        code = code_for_status(exc.code)
        if code is None and exc.status:
            code = _STATUS_NAMES.get(str(exc.status).upper())
        return AnalysisError.from_code(code or ErrorCode.UNKNOWN, detail=detail)

    # httpx timeouts are transport errors too, so they are checked first.
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return AnalysisError.from_code(ErrorCode.TIMEOUT, detail=detail)
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return AnalysisError.from_code(ErrorCode.NETWORK_ERROR, detail=detail)
    if isinstance(exc, json.JSONDecodeError):
        return AnalysisError.from_code(ErrorCode.PARSE_ERROR, detail=detail)

    code = code_for_status(_status_attr(exc))
    if code is None:
        code = classify_by_message(str(exc))
        logger.debug("analysis.classify.fallback type=%s code=%s", type(exc).__name__, code.value)
    return AnalysisError.from_code(code, detail=detail)
