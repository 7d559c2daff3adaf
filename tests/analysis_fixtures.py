"""Shared fakes for the analysis tests. No network, no SDK calls."""
import copy
import json
import time
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

from services.ai.analysis.config import AnalysisConfig
from services.ai.analysis.gemini_client import ModelReply, extract_citations

AAPL_ANALYSIS: Dict[str, Any] = {
    "type": "single",
    "symbol": "AAPL",
    "companyName": "Apple Inc.",
    "currentPrice": 189.84,
    "currency": "$",
    "summary": "Apple remains a cash-generative compounder with a services-led margin mix.",
    "sections": [
        {"title": "Fundamentals", "content": "Revenue grew 6% YoY; services margin above 70%."},
        {"title": "Technicals", "content": "RSI(14) at 58; price above the 50 and 200 DMA."},
        {"title": "Global Market & Macro Analysis", "content": "Rate cuts priced for H2; China demand soft."},
        {"title": "Risks", "content": "Regulatory pressure on the App Store."},
    ],
    "scenarios": [
        {"caseName": "Bull", "priceRange": "$215 - $230", "probability": "25%", "description": "AI upgrade cycle.", "targetPrice": 222},
        {"caseName": "Base", "priceRange": "$195 - $210", "probability": "50%", "description": "Steady services growth.", "targetPrice": 202},
        {"caseName": "Bear", "priceRange": "$160 - $175", "probability": "25%", "description": "Hardware slowdown."},
    ],
    "signal": {"recommendation": "BUY", "confidenceScore": 72, "rationale": "Earnings momentum and buybacks."},
    "metrics": {
        "peRatio": "29.4",
        "marketCap": "2.95T",
        "epsGrowth": "9.2%",
        "profitMargin": "25.3%",
        "roe": "147%",
        "rsi": "58",
        "shortTermTrend": "Bullish",
    },
    "recommendations": [
        {"symbol": "MSFT", "name": "Microsoft", "action": "BUY", "targetPrice": 460, "rationale": "Cloud + AI."},
    ],
    "news": [
        {
            "title": "Apple beats on services revenue",
            "source": "Reuters",
            "url": "https://www.reuters.com/technology/apple-q3",
            "published": "2 hours ago",
            "summary": "Services hit a record.",
            "sentiment": "positive",
        }
    ],
}

GROUNDING = {
    "web_search_queries": ["AAPL stock price today"],
    "grounding_chunks": [
        {"web": {"uri": "https://www.reuters.com/technology/apple-q3", "title": "reuters.com"}},
        {"web": {"uri": "https://finance.yahoo.com/quote/AAPL", "title": "finance.yahoo.com"}},
        {"web": {"uri": "https://www.reuters.com/technology/apple-q3", "title": "duplicate"}},
    ],
}


def sample_analysis() -> Dict[str, Any]:
    return copy.deepcopy(AAPL_ANALYSIS)


def fenced(payload: Dict[str, Any]) -> str:
    return "Here is the analysis you asked for:\n```json\n" + json.dumps(payload, ensure_ascii=False) + "\n```\nLet me know if you need more."


def make_config(**overrides: Any) -> AnalysisConfig:
    values: Dict[str, Any] = {"api_key": "test-key", "check_connectivity": False}
    values.update(overrides)
    return AnalysisConfig(**values)


def reply(text: str, grounding: Optional[Dict[str, Any]] = None) -> ModelReply:
    return ModelReply(text=text, finish_reason="STOP", grounding_metadata=grounding, citations=extract_citations(grounding))


class FakeModelClient:
    """Plays back a script of replies/exceptions; the last entry repeats."""

    def __init__(self, script: List[Any]):
        self.script = list(script)
        self.prompts: List[Any] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt):
        self.prompts.append(prompt)
        item = self.script[min(len(self.prompts), len(self.script)) - 1]
        if isinstance(item, BaseException):
            raise item
        return item


def sdk_response(
    text: str = "",
    finish_reason: Optional[str] = "STOP",
    grounding: Any = None,
    block_reason: Optional[str] = None,
) -> SimpleNamespace:
    candidate = SimpleNamespace(finish_reason=finish_reason, grounding_metadata=grounding)
    feedback = SimpleNamespace(block_reason=block_reason) if block_reason else None
    return SimpleNamespace(text=text, candidates=[candidate], prompt_feedback=feedback)


class FakeSdk:
    """Stands in for genai.Client: records generate_content calls on `.models`."""

    def __init__(self, script: List[Any], delay_s: float = 0.0):
        self.script = list(script)
        self.delay_s = delay_s
        self.calls: List[Dict[str, Any]] = []
        self.models = self

    def generate_content(self, *, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.delay_s:
            time.sleep(self.delay_s)
        item = self.script[min(len(self.calls), len(self.script)) - 1]
        if isinstance(item, BaseException):
            raise item
        return item
