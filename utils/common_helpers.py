import math
import re
from decimal import Decimal
from typing import Any, Optional

# A comma is a separator only inside well-formed western (1,234,567) or
# Indian (12,34,567) digit grouping; anything else ends the number.
_NUMBER_RE = re.compile(
    r"-?(?:\d{1,2}(?:,\d{2})+,\d{3}|\d{1,3}(?:,\d{3})+)(?!\d)(?:\.\d+)?"
    r"|-?\d+(?:\.\d+)?"
    r"|-?\.\d+"
)


def safe_float(x: Any) -> Optional[float]:
    """float(x) for real numbers and numeric strings; None for anything else (bools, NaN, inf)."""
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, Decimal):
        x = float(x)
    if isinstance(x, str):
        x = x.strip().replace(",", "")
        if not x:
            return None
    try:
        val = float(x)
    except (TypeError, ValueError):
        return None
    if math.isnan(val) or math.isinf(val):
        return None
    return val


def first_number(text: Any) -> Optional[float]:
    """
    First number appearing in free text, thousands separators allowed.
    "$185 - $195" -> 185.0, "₹1,250.50" -> 1250.5, "120,1300" -> 120.0, "N/A" -> None
    """
    if text is None or isinstance(text, bool):
        return None
    if isinstance(text, (int, float, Decimal)):
        return safe_float(text)
    m = _NUMBER_RE.search(str(text))
    if not m:
        return None
    return safe_float(m.group(0))


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def clean_str(x: Any, default: str = "") -> str:
    if x is None:
        return default
    if isinstance(x, str):
        s = x.strip()
        return s if s else default
    if isinstance(x, (int, float)) and not isinstance(x, bool):
        return str(x)
    return default
