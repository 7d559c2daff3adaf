"""
Central logging configuration for the StockGPT service.

- LOG_LEVEL from env (default INFO).
- Single-line JSON logs when LOG_JSON=1, plain text otherwise.
- Pipeline modules log through getLogger(__name__) with key=value messages.
  Never log API keys or full model payloads at INFO; the query length is
  logged, the query text is not.
"""
import json
import logging
import os
import sys
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through `extra=`.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()) | {"message", "asctime"}

_NOISY_LOGGERS = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "google_genai",
    "google_genai.models",
    "urllib3",
)


def _json_default(obj: Any):
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if hasattr(obj, "value"):
        return obj.value
    return str(obj)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; `extra=` fields are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            payload["exception"] = self.formatException(record.exc_info)
        for k, v in vars(record).items():
            if k in _STANDARD_ATTRS or k in payload or k.startswith("_") or v is None:
                continue
            payload[k] = v
        return json.dumps(payload, default=_json_default, ensure_ascii=False)


def _env_json() -> bool:
    return os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes")


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Configure the root logger once at startup; safe to call again (handlers are replaced)."""
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = getattr(logging, level_name, logging.INFO)
    use_json = _env_json() if json_logs is None else json_logs

    root = logging.getLogger()
    root.setLevel(resolved)
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
