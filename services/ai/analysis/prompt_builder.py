# services/ai/analysis/prompt_builder.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

# (suffix, exchange, currency symbol)
EXCHANGE_RULES = (
    (".NS", "NSE (India)", "₹"),
    (".BO", "BSE (India)", "₹"),
    (".L", "LSE (London)", "£"),
    (".T", "TSE (Tokyo)", "¥"),
    (".HK", "HKEX (Hong Kong)", "HK$"),
    (".TO", "TSX (Toronto)", "C$"),
    (".AX", "ASX (Sydney)", "A$"),
    (".DE", "XETRA (Frankfurt)", "€"),
    (".PA", "Euronext Paris", "€"),
    (".SS", "SSE (Shanghai)", "¥"),
    (".SZ", "SZSE (Shenzhen)", "¥"),
    (".KS", "KRX (Seoul)", "₩"),
)

OUTPUT_SCHEMA = """
{
  "type": "single",
  "symbol": "string (e.g. AAPL)",
  "companyName": "string",
  "currentPrice": number,
  "currency": "string (e.g. $ or ₹)",
  "summary": "string",
  "sections": [
    { "title": "Fundamentals", "content": "Markdown text..." },
    { "title": "Technicals", "content": "Markdown text..." },
    { "title": "Global Market & Macro Analysis", "content": "Detailed markdown covering rates, inflation, geopolitics..." },
    { "title": "Risks", "content": "Markdown text..." }
  ],
  "scenarios": [
    { "caseName": "Bull", "priceRange": "string", "probability": "string", "description": "string", "targetPrice": number },
    { "caseName": "Base", "priceRange": "string", "probability": "string", "description": "string", "targetPrice": number },
    { "caseName": "Bear", "priceRange": "string", "probability": "string", "description": "string", "targetPrice": number }
  ],
  "forecasts": {
    "1M": [ ...scenarios... ],
    "6M": [ ...scenarios... ],
    "12M": [ ...scenarios... ]
  },
  "signal": { "recommendation": "BUY"|"SELL"|"HOLD"|"STRONG BUY"|"STRONG SELL", "confidenceScore": number, "rationale": "string" },
  "metrics": { "peRatio": "string", "marketCap": "string", "epsGrowth": "string", "profitMargin": "string", "roe": "string", "rsi": "string", "shortTermTrend": "Bullish"|"Bearish"|"Neutral", "dividendYield": "string", "debtToEquity": "string" },
  "portfolioAllocation": [{ "asset": "string", "percentage": number }],
  "recommendations": [
    {
      "symbol": "PEER",
      "name": "Peer Name",
      "action": "BUY"|"SELL"|"HOLD",
      "targetPrice": number,
      "rationale": "string",
      "metrics": { "peRatio": "...", "marketCap": "...", "epsGrowth": "...", "profitMargin": "...", "roe": "...", "rsi": "...", "shortTermTrend": "Bullish"|"Bearish"|"Neutral" }
    }
  ],
  "news": [{ "title": "string", "source": "string", "url": "string", "published": "string", "summary": "string", "sentiment": "Positive"|"Negative"|"Neutral" }]
}
""".strip()


@dataclass(frozen=True)
class AnalysisPrompt:
    system_instruction: str
    user_content: str


def _exchange_rules_block() -> str:
    lines = [f"- Suffix {suffix} -> {exchange}, currency {symbol}" for suffix, exchange, symbol in EXCHANGE_RULES]
    lines.append("- No suffix -> assume a US listing (NYSE/NASDAQ), currency $, unless the query names another market.")
    lines.append("- Company names without a ticker: resolve to the primary listing and report prices in that listing's currency.")
    return "\n".join(lines)


def build_prompt(query: str, as_of: Optional[date] = None) -> AnalysisPrompt:
    """Assemble the instruction template for one query. Pure; same input, same prompt."""
    as_of_line = f"\nAS OF: {as_of.isoformat()} (treat anything older as stale).\n" if as_of else ""

    system_instruction = f"""
You are StockGPT, an elite quantitative financial analysis engine.

TASK: Perform a deep-dive financial analysis for: "{query}".
{as_of_line}
CORE OBJECTIVE: ACCURACY > 95%.
You MUST use the Google Search tool to verify the latest price, market cap, P/E ratio and recent news. Do not rely solely on internal knowledge.

PROTOCOL:
1. Search & Verify: first search for the real-time price, today's news and the latest quarterly results.
2. Identify Market: identify the exchange and currency correctly.
3. Analyze:
   - Overview: executive summary of the business and its economic moat.
   - Fundamentals: revenue growth, net margins, cash flow health.
   - Technicals: RSI (14D), MACD, moving averages (20/50/200 DMA).
   - Macro: interest rates, inflation, sector rotation, geopolitics.
4. Forecast: probabilistic price targets (Bull/Base/Bear) for 1M, 6M and 12M.
5. Signal: BUY/SELL/HOLD (or STRONG BUY/STRONG SELL) with a 0-100 confidence score based on data convergence.

EXCHANGE & CURRENCY RULES:
{_exchange_rules_block()}

CRITICAL OUTPUT RULES:
- Return ONLY valid JSON. No markdown formatting, no code fences, no preamble or commentary.
- 'currentPrice' and every 'targetPrice' are numbers (e.g. 150.50), not strings.
- Metric values are display strings; use "N/A" when a figure cannot be verified.
- Never invent news; every news item must come from a search result and carry its URL.

JSON STRUCTURE:
{OUTPUT_SCHEMA}
""".strip()

    return AnalysisPrompt(system_instruction=system_instruction, user_content=query)
