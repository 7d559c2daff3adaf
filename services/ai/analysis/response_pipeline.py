# services/ai/analysis/response_pipeline.py
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from schemas.analysis import AnalysisResult, Citation

from .errors import AnalysisError, ErrorCode
from .gemini_client import ModelReply
from .repair import repair_analysis

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def extract_json_candidate(text: Optional[str]) -> str:
    """Strip code fences and cut from the first '{' to the last '}'."""
    cleaned = _FENCE_RE.sub("", text or "").strip()
    if not cleaned:
        raise AnalysisError.from_code(ErrorCode.NO_JSON_FOUND, detail="empty reply")

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise AnalysisError.from_code(ErrorCode.NO_JSON_FOUND, detail=f"no brace pair in {len(cleaned)} chars")
    return cleaned[start:end + 1]


def parse_candidate(candidate: str) -> Dict[str, Any]:
    try:
        obj = json.loads(candidate)
    except json.JSONDecodeError:
        # remove trailing commas before '}' or ']', allow raw control chars in strings
        try:
            obj = json.loads(_TRAILING_COMMA_RE.sub(r"\1", candidate), strict=False)
        except json.JSONDecodeError as exc:
            raise AnalysisError.from_code(ErrorCode.PARSE_ERROR, detail=f"{exc.msg} at pos {exc.pos}") from exc

    if not isinstance(obj, dict):
        raise AnalysisError.from_code(ErrorCode.PARSE_ERROR, detail=f"expected object, got {type(obj).__name__}")
    return obj


def _schema_problems(data: Any) -> List[str]:
    if not isinstance(data, dict):
        return ["payload is not an object"]
    problems: List[str] = []
    for key in ("symbol", "summary"):
        val = data.get(key)
        if not isinstance(val, str) or not val.strip():
            problems.append(f"{key} missing")
    if not isinstance(data.get("signal"), dict):
        problems.append("signal missing")
    sections = data.get("sections")
    scenarios = data.get("scenarios")
    if not (isinstance(sections, list) and sections) and not (isinstance(scenarios, list) and scenarios):
        problems.append("no sections or scenarios")
    return problems


def validate_analysis(data: Any) -> AnalysisResult:
    problems = _schema_problems(data)
    if problems:
        raise AnalysisError.from_code(ErrorCode.SCHEMA_INVALID, detail="; ".join(problems))
    try:
        return AnalysisResult.model_validate(data)
    except ValidationError as exc:
        fields = ",".join(".".join(str(p) for p in e["loc"]) for e in exc.errors()[:5])
        raise AnalysisError.from_code(ErrorCode.SCHEMA_INVALID, detail=f"invalid fields: {fields}") from exc


def attach_metadata(result: AnalysisResult, reply: ModelReply) -> AnalysisResult:
    update: Dict[str, Any] = {}
    if reply.grounding_metadata:
        update["grounding_metadata"] = reply.grounding_metadata
    if reply.citations:
        update["citations"] = [Citation.model_validate(c) for c in reply.citations]
    return result.model_copy(update=update) if update else result


def process_reply(reply: ModelReply) -> AnalysisResult:
    """extract -> parse -> repair -> validate -> attach metadata."""
    candidate = extract_json_candidate(reply.text)
    raw = parse_candidate(candidate)
    repaired = repair_analysis(raw)
    result = validate_analysis(repaired)
    logger.debug(
        "analysis.reply.ok symbol=%s sections=%s scenarios=%s",
        result.symbol,
        len(result.sections),
        len(result.scenarios),
    )
    return attach_metadata(result, reply)
