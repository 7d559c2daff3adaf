# services/ai/analysis/repair.py
"""
Deterministic repair of a decoded model payload.

Works on a permissive dict tree (camelCase keys, as the model writes them)
and returns a new tree that the typed ``AnalysisResult`` can accept. Repair
fills structural gaps with neutral placeholders; it never invents figures,
news or prices. Running it twice gives the same tree as running it once.
"""
from __future__ import annotations

import copy
import re
from typing import Any, Dict, List, Optional

from schemas.analysis import HORIZONS, RECOMMENDATIONS
from utils.common_helpers import clamp, clean_str, first_number, safe_float

DEFAULT_SYMBOL = "UNKNOWN"
DEFAULT_SUMMARY = "No summary available."
DEFAULT_CURRENCY = "$"
DEFAULT_SECTION_TITLE = "Analysis"

NEUTRAL_SIGNAL: Dict[str, Any] = {
    "recommendation": "HOLD",
    "confidenceScore": 50,
    "rationale": "Insufficient data for signal generation.",
}

METRIC_KEYS = ("peRatio", "marketCap", "epsGrowth", "profitMargin", "roe", "rsi")
OPTIONAL_METRIC_KEYS = ("dividendYield", "debtToEquity")
PLACEHOLDER_METRICS: Dict[str, str] = {**{k: "N/A" for k in METRIC_KEYS}, "shortTermTrend": "Neutral"}

# Attached from the reply after validation; a model-written copy is never trusted.
_RESERVED_KEYS = ("groundingMetadata", "citations")


def _as_list(v: Any) -> List[Any]:
    return v if isinstance(v, list) else []


def _price(v: Any) -> Optional[float]:
    val = safe_float(v)
    if val is None and isinstance(v, str):
        val = first_number(v)
    return val


def normalize_case_name(v: Any) -> Optional[str]:
    name = clean_str(v).lower()
    if name.startswith("bull"):
        return "Bull"
    if name.startswith("base"):
        return "Base"
    if name.startswith("bear"):
        return "Bear"
    return None


# Analyst-desk vocabulary the model reaches for instead of the five calls.
RECOMMENDATION_SYNONYMS: Dict[str, str] = {
    "NEUTRAL": "HOLD",
    "MARKET PERFORM": "HOLD",
    "EQUAL WEIGHT": "HOLD",
    "OUTPERFORM": "BUY",
    "OVERWEIGHT": "BUY",
    "ACCUMULATE": "BUY",
    "UNDERPERFORM": "SELL",
    "UNDERWEIGHT": "SELL",
    "REDUCE": "SELL",
    "STRONGBUY": "STRONG BUY",
    "STRONGSELL": "STRONG SELL",
}


def normalize_recommendation(v: Any) -> Optional[str]:
    """'strong_buy' -> 'STRONG BUY', 'Neutral' -> 'HOLD'. None when the word is not recognised."""
    text = clean_str(v).upper()
    if not text:
        return NEUTRAL_SIGNAL["recommendation"]
    text = re.sub(r"[\s_\-]+", " ", text).strip()
    text = RECOMMENDATION_SYNONYMS.get(text, text)
    return text if text in RECOMMENDATIONS else None


def normalize_trend(v: Any) -> str:
    t = clean_str(v).lower()
    if t.startswith("bull") or t in ("up", "uptrend", "positive"):
        return "Bullish"
    if t.startswith("bear") or t in ("down", "downtrend", "negative"):
        return "Bearish"
    return "Neutral"


def normalize_sentiment(v: Any) -> str:
    s = clean_str(v).lower()
    if s.startswith("pos") or s.startswith("bull"):
        return "Positive"
    if s.startswith("neg") or s.startswith("bear"):
        return "Negative"
    return "Neutral"


def target_from_range(price_range: Any) -> float:
    """First number in the range text: '$185 - $195' -> 185.0; 0.0 when there are no digits."""
    val = first_number(price_range)
    return val if val is not None else 0.0


# ============================================================================
# SUB-TREE REPAIRS
# ============================================================================

def repair_sections(raw: Any) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for s in _as_list(raw):
        if not isinstance(s, dict):
            continue
        content = clean_str(s.get("content"))
        if not content:
            continue
        out.append({"title": clean_str(s.get("title"), DEFAULT_SECTION_TITLE), "content": content})
    return out


def repair_scenarios(raw: Any) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for s in _as_list(raw):
        if not isinstance(s, dict):
            continue
        case_name = normalize_case_name(s.get("caseName"))
        price_range = clean_str(s.get("priceRange"))
        if not case_name or not price_range:
            continue
        target = safe_float(s.get("targetPrice"))
        if target is None:
            target = target_from_range(price_range)
        out.append(
            {
                "caseName": case_name,
                "priceRange": price_range,
                "probability": clean_str(s.get("probability")),
                "description": clean_str(s.get("description")),
                "targetPrice": target,
            }
        )
    return out


def repair_forecasts(raw: Any, scenarios: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    supplied: Dict[str, Any] = {}
    if isinstance(raw, dict):
        supplied = {clean_str(k).upper(): v for k, v in raw.items()}

    out: Dict[str, List[Dict[str, Any]]] = {}
    for horizon in HORIZONS:
        cleaned = repair_scenarios(supplied.get(horizon))
        out[horizon] = cleaned if cleaned else copy.deepcopy(scenarios)
    return out


def repair_signal(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        return dict(NEUTRAL_SIGNAL)

    rationale = clean_str(raw.get("rationale"), NEUTRAL_SIGNAL["rationale"])
    recommendation = normalize_recommendation(raw.get("recommendation"))
    if recommendation is None:
        # Unreadable call: neutral signal, the model's rationale is kept.
        return {**NEUTRAL_SIGNAL, "rationale": rationale}

    score = first_number(raw.get("confidenceScore"))
    if score is None:
        confidence = NEUTRAL_SIGNAL["confidenceScore"]
    else:
        confidence = int(round(clamp(score, 0, 100)))

    return {
        "recommendation": recommendation,
        "confidenceScore": confidence,
        "rationale": rationale,
    }


def repair_metrics(raw: Any) -> Dict[str, str]:
    out = dict(PLACEHOLDER_METRICS)
    if not isinstance(raw, dict):
        return out
    for key in METRIC_KEYS:
        val = clean_str(raw.get(key))
        if val:
            out[key] = val
    out["shortTermTrend"] = normalize_trend(raw.get("shortTermTrend"))
    for key in OPTIONAL_METRIC_KEYS:
        val = clean_str(raw.get(key))
        if val:
            out[key] = val
    return out


def repair_peers(raw: Any) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for p in _as_list(raw):
        if not isinstance(p, dict):
            continue
        symbol = clean_str(p.get("symbol"))
        if not symbol:
            continue
        peer: Dict[str, Any] = {
            "symbol": symbol,
            "name": clean_str(p.get("name"), symbol),
            "rationale": clean_str(p.get("rationale")),
            "metrics": repair_metrics(p.get("metrics")),
        }
        if clean_str(p.get("action")):
            action = normalize_recommendation(p.get("action"))
            if action is not None:
                peer["action"] = action
        target = _price(p.get("targetPrice"))
        if target is not None:
            peer["targetPrice"] = target
        out.append(peer)
    return out


def repair_news(raw: Any) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for n in _as_list(raw):
        if not isinstance(n, dict):
            continue
        title = clean_str(n.get("title"))
        if not title:
            continue
        out.append(
            {
                "title": title,
                "source": clean_str(n.get("source")),
                "url": clean_str(n.get("url")),
                "published": clean_str(n.get("published")),
                "summary": clean_str(n.get("summary")),
                "sentiment": normalize_sentiment(n.get("sentiment")),
            }
        )
    return out


def repair_allocation(raw: Any) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for a in _as_list(raw):
        if not isinstance(a, dict):
            continue
        asset = clean_str(a.get("asset"))
        pct = _price(a.get("percentage"))
        if not asset or pct is None:
            continue
        out.append({"asset": asset, "percentage": pct})
    return out


# ============================================================================
# ENTRY POINT
# ============================================================================

def repair_analysis(data: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = copy.deepcopy(data) if isinstance(data, dict) else {}

    out["type"] = "single"
    out["sections"] = repair_sections(out.get("sections"))
    out["scenarios"] = repair_scenarios(out.get("scenarios"))
    out["forecasts"] = repair_forecasts(out.get("forecasts"), out["scenarios"])
    out["signal"] = repair_signal(out.get("signal"))
    out["metrics"] = repair_metrics(out.get("metrics"))
    out["recommendations"] = repair_peers(out.get("recommendations"))
    out["news"] = repair_news(out.get("news"))

    if "portfolioAllocation" in out:
        if isinstance(out["portfolioAllocation"], list):
            out["portfolioAllocation"] = repair_allocation(out["portfolioAllocation"])
        else:
            out.pop("portfolioAllocation")

    if "comparisonCandidates" in out:
        candidates = [c for c in _as_list(out["comparisonCandidates"]) if isinstance(c, dict)]
        if candidates:
            out["comparisonCandidates"] = candidates
        else:
            out.pop("comparisonCandidates")
    if "comparisonVerdict" in out:
        verdict = clean_str(out["comparisonVerdict"])
        if verdict:
            out["comparisonVerdict"] = verdict
        else:
            out.pop("comparisonVerdict")

    symbol = clean_str(out.get("symbol"), DEFAULT_SYMBOL)
    out["symbol"] = symbol
    out["companyName"] = clean_str(out.get("companyName"), symbol)
    out["summary"] = clean_str(out.get("summary"), DEFAULT_SUMMARY)
    out["currency"] = clean_str(out.get("currency"), DEFAULT_CURRENCY)

    price = _price(out.get("currentPrice"))
    out["currentPrice"] = price if price is not None and price >= 0 else 0.0

    for key in _RESERVED_KEYS:
        out.pop(key, None)
    return out
