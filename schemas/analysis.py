from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Recommendation = Literal["BUY", "SELL", "HOLD", "STRONG BUY", "STRONG SELL"]
CaseName = Literal["Bull", "Base", "Bear"]
Horizon = Literal["1M", "6M", "12M"]
Trend = Literal["Bullish", "Bearish", "Neutral"]
Sentiment = Literal["Positive", "Negative", "Neutral"]

RECOMMENDATIONS = ("BUY", "SELL", "HOLD", "STRONG BUY", "STRONG SELL")
CASE_NAMES = ("Bull", "Base", "Bear")
HORIZONS = ("1M", "6M", "12M")


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class AnalysisRequest(BaseModel):
    query: str = Field(min_length=1)

    model_config = ConfigDict(frozen=True)

    @field_validator("query", mode="before")
    @classmethod
    def _strip_query(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class AnalysisSection(_WireModel):
    title: str
    content: str


class PredictionScenario(_WireModel):
    case_name: CaseName
    price_range: str
    probability: str = ""
    description: str = ""
    target_price: float


class SignalData(_WireModel):
    recommendation: Recommendation
    confidence_score: int = Field(ge=0, le=100)
    rationale: str


class KeyMetrics(_WireModel):
    pe_ratio: str
    market_cap: str
    eps_growth: str
    profit_margin: str
    roe: str
    rsi: str
    short_term_trend: Trend
    dividend_yield: Optional[str] = None
    debt_to_equity: Optional[str] = None


class StockRecommendation(_WireModel):
    symbol: str
    name: str
    action: Optional[Recommendation] = None
    target_price: Optional[float] = None
    rationale: str = ""
    metrics: KeyMetrics


class NewsArticle(_WireModel):
    title: str
    source: str = ""
    url: str = ""
    published: str = ""
    summary: str = ""
    sentiment: Sentiment = "Neutral"


class PortfolioSlice(_WireModel):
    asset: str
    percentage: float


class Citation(_WireModel):
    url: str
    title: Optional[str] = None


class AnalysisResult(_WireModel):
    type: Literal["single"] = "single"
    symbol: str = Field(min_length=1)
    company_name: str = Field(min_length=1)
    current_price: float = Field(ge=0)
    currency: str = "$"
    summary: str = Field(min_length=1)
    sections: List[AnalysisSection] = Field(default_factory=list)
    scenarios: List[PredictionScenario] = Field(default_factory=list)
    forecasts: Dict[Horizon, List[PredictionScenario]] = Field(default_factory=dict)
    signal: SignalData
    metrics: KeyMetrics
    recommendations: List[StockRecommendation] = Field(default_factory=list)
    news: List[NewsArticle] = Field(default_factory=list)
    portfolio_allocation: Optional[List[PortfolioSlice]] = None

    # Comparison payloads are rendered as-is by the dashboard.
    comparison_candidates: Optional[List[Dict[str, Any]]] = None
    comparison_verdict: Optional[str] = None

    grounding_metadata: Optional[Dict[str, Any]] = None
    citations: List[Citation] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
