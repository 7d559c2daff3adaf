# services/ai/analysis/gemini_client.py
from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from google import genai
from google.genai import types

from .config import AnalysisConfig
from .errors import AnalysisError, ErrorCode, classify_exception
from .prompt_builder import AnalysisPrompt

logger = logging.getLogger(__name__)

SAFETY_FINISH_REASONS = frozenset({"SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII", "IMAGE_SAFETY"})
RECITATION_FINISH_REASONS = frozenset({"RECITATION"})
CLEAN_FINISH_REASONS = frozenset({"STOP", "FINISH_REASON_UNSPECIFIED"})


@dataclass
class ModelReply:
    text: str
    finish_reason: Optional[str] = None
    grounding_metadata: Optional[Dict[str, Any]] = None
    citations: List[Dict[str, str]] = field(default_factory=list)


class AnalysisModelClient(Protocol):
    async def generate(self, prompt: AnalysisPrompt) -> ModelReply: ...


def _enum_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    raw = getattr(value, "value", value)
    text = str(raw).strip()
    if "." in text:
        # "FinishReason.STOP" style reprs
        text = text.rsplit(".", 1)[-1]
    return text.upper() or None


def _is_http_url(value: Any) -> bool:
    return isinstance(value, str) and re.match(r"^https?://", value.strip(), re.IGNORECASE) is not None


def extract_citations(payload: Any) -> List[Dict[str, str]]:
    """Collect unique http(s) links (with titles when present) from a grounding payload."""
    if payload is None:
        return []

    citations: List[Dict[str, str]] = []
    seen_urls: set[str] = set()

    def _add(url: str, title: Optional[str] = None) -> None:
        normalized = (url or "").strip()
        if not normalized or normalized in seen_urls:
            return
        seen_urls.add(normalized)
        entry: Dict[str, str] = {"url": normalized}
        if title and title.strip():
            entry["title"] = title.strip()
        citations.append(entry)

    def _walk(node: Any) -> None:
        if isinstance(node, dict):
            url_value = None
            for key in ("uri", "url", "link", "href"):
                candidate = node.get(key)
                if _is_http_url(candidate):
                    url_value = str(candidate).strip()
                    break
            if url_value:
                title_value = None
                for title_key in ("title", "name", "domain", "source"):
                    t = node.get(title_key)
                    if isinstance(t, str) and t.strip():
                        title_value = t
                        break
                _add(url_value, title_value)

            for value in node.values():
                _walk(value)
        elif isinstance(node, list):
            for item in node:
                _walk(item)

    _walk(payload)
    return citations


def _dump_metadata(raw: Any) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    if isinstance(raw, dict):
        return raw or None
    if hasattr(raw, "model_dump"):
        dumped = raw.model_dump(mode="json", exclude_none=True)
        return dumped or None
    return None


class GeminiAnalysisClient:
    """One grounded ``generate_content`` call per attempt, raced against a deadline."""

    _thinking_unsupported_models: set = set()

    def __init__(self, config: AnalysisConfig, client: Any = None):
        self.config = config
        if client is not None:
            self._client = client
        elif config.use_vertex:
            self._client = genai.Client(vertexai=True, project=config.project_id, location=config.location)
        else:
            self._client = genai.Client(api_key=config.api_key)

    @classmethod
    def _model_supports_thinking(cls, model: str) -> bool:
        m = (model or "").lower()
        if m in cls._thinking_unsupported_models:
            return False
        if "lite" in m:
            return False
        return "gemini-3" in m or "gemini-2.5" in m

    @classmethod
    def _blacklist_thinking(cls, model: str) -> None:
        cls._thinking_unsupported_models.add((model or "").lower())

    @staticmethod
    def _is_thinking_unsupported_error(exc: Exception) -> bool:
        text = str(exc).lower()
        return ("thinking" in text) and ("not supported" in text or "unsupported" in text)

    def _build_config(self, system_instruction: str, *, disable_thinking: bool = False) -> types.GenerateContentConfig:
        thinking_config = None
        if (
            not disable_thinking
            and self.config.thinking_budget > 0
            and self._model_supports_thinking(self.config.model)
        ):
            thinking_config = types.ThinkingConfig(thinking_budget=self.config.thinking_budget)

        tools = [types.Tool(google_search=types.GoogleSearch())] if self.config.use_web else None
        return types.GenerateContentConfig(
            system_instruction=system_instruction,
            tools=tools,
            thinking_config=thinking_config,
            temperature=self.config.temperature,
        )

    def _sync_generate(self, prompt: AnalysisPrompt) -> Any:
        model = self.config.model
        try:
            return self._client.models.generate_content(
                model=model,
                contents=prompt.user_content,
                config=self._build_config(prompt.system_instruction),
            )
        except Exception as exc:
            if not self._is_thinking_unsupported_error(exc):
                raise
            self._blacklist_thinking(model)
            logger.warning("gemini.analysis.retry_without_thinking model=%s (blacklisted)", model)
            return self._client.models.generate_content(
                model=model,
                contents=prompt.user_content,
                config=self._build_config(prompt.system_instruction, disable_thinking=True),
            )

    async def generate(self, prompt: AnalysisPrompt) -> ModelReply:
        started = time.perf_counter()
        timeout_s = self.config.request_timeout_s
        logger.info(
            "gemini.analysis.start model=%s use_web=%s query_len=%s timeout_s=%s",
            self.config.model,
            self.config.use_web,
            len(prompt.user_content),
            timeout_s,
        )
        try:
            # On expiry the worker thread is abandoned; its result is never read.
            resp = await asyncio.wait_for(asyncio.to_thread(self._sync_generate, prompt), timeout=timeout_s)
        except asyncio.TimeoutError as exc:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            logger.warning("gemini.analysis.timeout elapsed_ms=%s", elapsed_ms)
            raise AnalysisError.from_code(ErrorCode.TIMEOUT, detail=f"no reply within {timeout_s}s") from exc
        except AnalysisError:
            raise
        except Exception as exc:
            err = classify_exception(exc)
            logger.warning("gemini.analysis.error code=%s err=%s", err.code.value, type(exc).__name__)
            raise err from exc

        reply = self._to_reply(resp)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "gemini.analysis.done elapsed_ms=%s chars=%s finish=%s citations=%s",
            elapsed_ms,
            len(reply.text),
            reply.finish_reason,
            len(reply.citations),
        )
        return reply

    @staticmethod
    def _to_reply(resp: Any) -> ModelReply:
        feedback = getattr(resp, "prompt_feedback", None)
        block_reason = _enum_name(getattr(feedback, "block_reason", None))
        if block_reason and block_reason != "BLOCKED_REASON_UNSPECIFIED":
            raise AnalysisError.from_code(ErrorCode.SAFETY_REFUSAL, detail=f"prompt blocked: {block_reason}")

        candidates = getattr(resp, "candidates", None) or []
        candidate = candidates[0] if candidates else None

        finish_reason = _enum_name(getattr(candidate, "finish_reason", None))
        if finish_reason and finish_reason not in CLEAN_FINISH_REASONS:
            detail = f"finish_reason={finish_reason}"
            if finish_reason in SAFETY_FINISH_REASONS:
                raise AnalysisError.from_code(ErrorCode.SAFETY_REFUSAL, detail=detail)
            if finish_reason in RECITATION_FINISH_REASONS:
                raise AnalysisError.from_code(ErrorCode.RECITATION_REFUSAL, detail=detail)
            raise AnalysisError.from_code(ErrorCode.MODEL_STOPPED, detail=detail)

        grounding = _dump_metadata(getattr(candidate, "grounding_metadata", None))
        return ModelReply(
            text=getattr(resp, "text", None) or "",
            finish_reason=finish_reason,
            grounding_metadata=grounding,
            citations=extract_citations(grounding),
        )
