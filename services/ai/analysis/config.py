# services/ai/analysis/config.py
from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .errors import AnalysisError, ErrorCode

load_dotenv()


def _env(*names: str, default: str = "") -> str:
    for name in names:
        val = os.getenv(name)
        if val is not None and val.strip():
            return val.strip()
    return default


def _env_flag(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AnalysisConfig:
    # Credentials: either an API key, or Vertex AI with a project id.
    api_key: str = ""
    use_vertex: bool = False
    project_id: str = ""
    location: str = "us-central1"

    # Model
    model: str = "gemini-2.5-flash"
    temperature: float = 0.3
    thinking_budget: int = 2048
    use_web: bool = True

    # Timeout & retry
    request_timeout_s: float = 120.0
    max_attempts: int = 3
    backoff_initial_s: float = 1.0
    backoff_max_s: float = 8.0

    # Input guard
    min_query_length: int = 1
    max_query_length: int = 500
    check_connectivity: bool = True
    # Empty: derived from the backend, see connectivity_target.
    connectivity_host: str = ""
    connectivity_timeout_s: float = 2.0

    @staticmethod
    def from_env() -> "AnalysisConfig":
        return AnalysisConfig(
            api_key=_env("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY"),
            use_vertex=_env_flag("GEMINI_USE_VERTEX", False),
            project_id=_env("GCP_PROJECT_ID", "GOOGLE_CLOUD_PROJECT"),
            location=_env("GCP_LOCATION", "GOOGLE_CLOUD_LOCATION", default="us-central1"),
            model=_env("GEMINI_MODEL", default="gemini-2.5-flash"),
            temperature=float(_env("AI_TEMPERATURE", default="0.3")),
            thinking_budget=int(_env("GEMINI_THINKING_BUDGET", default="2048")),
            use_web=_env_flag("GEMINI_USE_WEB", True),
            request_timeout_s=float(_env("ANALYSIS_TIMEOUT_S", default="120")),
            max_attempts=int(_env("ANALYSIS_MAX_ATTEMPTS", default="3")),
            backoff_initial_s=float(_env("ANALYSIS_BACKOFF_INITIAL_S", default="1")),
            backoff_max_s=float(_env("ANALYSIS_BACKOFF_MAX_S", default="8")),
            min_query_length=int(_env("ANALYSIS_MIN_QUERY_LENGTH", default="1")),
            max_query_length=int(_env("ANALYSIS_MAX_QUERY_LENGTH", default="500")),
            check_connectivity=_env_flag("ANALYSIS_CHECK_CONNECTIVITY", True),
            connectivity_host=_env("ANALYSIS_CONNECTIVITY_HOST"),
            connectivity_timeout_s=float(_env("ANALYSIS_CONNECTIVITY_TIMEOUT_S", default="2")),
        )

    @property
    def has_credential(self) -> bool:
        if self.use_vertex:
            return bool(self.project_id)
        return bool(self.api_key)

    @property
    def connectivity_target(self) -> str:
        """Host resolved by the pre-flight check: the endpoint the SDK will actually call."""
        if self.connectivity_host:
            return self.connectivity_host
        if self.use_vertex:
            if self.location == "global":
                return "aiplatform.googleapis.com"
            return f"{self.location}-aiplatform.googleapis.com"
        return "generativelanguage.googleapis.com"

    def validate(self, require_credential: bool = True) -> None:
        if require_credential and not self.has_credential:
            detail = "Missing GCP_PROJECT_ID" if self.use_vertex else "Missing GEMINI_API_KEY"
            raise AnalysisError.from_code(ErrorCode.MISSING_CREDENTIAL, detail=detail)
        if self.request_timeout_s <= 0:
            raise ValueError("request_timeout_s must be > 0")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_initial_s < 0 or self.backoff_max_s < self.backoff_initial_s:
            raise ValueError("backoff_max_s must be >= backoff_initial_s >= 0")
        if self.min_query_length < 1 or self.max_query_length < self.min_query_length:
            raise ValueError("max_query_length must be >= min_query_length >= 1")
        if not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")

    def describe(self) -> str:
        """Log-safe one-liner; never includes the credential."""
        return (
            f"model={self.model} vertex={self.use_vertex} web={self.use_web} "
            f"timeout_s={self.request_timeout_s} attempts={self.max_attempts}"
        )
