"""
Live-data tools and keyword-based tool dispatch.

Each tool returns a short text snippet for the prompt. A tool never raises:
network or provider trouble becomes an apology string so the chat reply
can still be produced.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from agentchat.config import Settings

logger = logging.getLogger(__name__)

DUCKDUCKGO_URL = "https://api.duckduckgo.com/"
COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
NEWSAPI_EVERYTHING_URL = "https://newsapi.org/v2/everything"
NEWSAPI_HEADLINES_URL = "https://newsapi.org/v2/top-headlines"
OPENWEATHER_URL = "http://api.openweathermap.org/data/2.5/weather"

CRYPTO_RE = re.compile(r"bitcoin|btc|crypto|cryptocurrency|ethereum|eth|price", re.IGNORECASE)
NEWS_RE = re.compile(r"news|latest|breaking|headlines", re.IGNORECASE)
CRYPTO_NEWS_RE = re.compile(r"bitcoin|btc|crypto", re.IGNORECASE)
WEATHER_RE = re.compile(r"weather|temperature|forecast|climate", re.IGNORECASE)
WEB_SEARCH_RE = re.compile(r"search|find|what is|who is|tell me about", re.IGNORECASE)
LOCATION_RE = re.compile(r"\b(?:in|for|at)\s+([a-zA-Z\s]+)", re.IGNORECASE)

CRYPTO_SYMBOLS = (
    (re.compile(r"\b(?:ethereum|eth)\b", re.IGNORECASE), "ethereum"),
    (re.compile(r"\b(?:bitcoin|btc)\b", re.IGNORECASE), "bitcoin"),
)


@dataclass
class Tool:
    name: str
    description: str
    func: Callable[..., Awaitable[str]]


class ToolDispatcher:
    """Registry of live-data tools plus the intent rules that pick them."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.newsapi_key = settings.newsapi_key
        self.weather_api_key = settings.weather_api_key
        self.default_location = settings.default_weather_location
        self.timeout = settings.tool_timeout_seconds
        self._transport = transport

        self.tools: Dict[str, Tool] = {}
        self.register(Tool("web_search", "Search the web for information.", self.web_search))
        self.register(Tool("get_crypto_price", "Get cryptocurrency prices.", self.get_crypto_price))
        self.register(Tool("get_news", "Get latest news.", self.get_news))
        self.register(Tool("get_weather", "Get weather information.", self.get_weather))
        logger.info(f"🛠️ {len(self.tools)} tools registered")

    def register(self, tool: Tool):
        self.tools[tool.name] = tool

    def get_tool(self, name: str) -> Optional[Tool]:
        return self.tools.get(name)

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            return resp.json()

    # ------------------------------------------------------------------
    # web_search
    # ------------------------------------------------------------------
    async def web_search(self, query: str) -> str:
        """DuckDuckGo instant answers: abstract, answer, definition, related topic."""
        try:
            data = await self._get_json(
                DUCKDUCKGO_URL,
                params={"q": query, "format": "json", "no_html": 1, "skip_disambig": 1},
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Web search failed: {e}")
            return "Web search had an issue."

        if data.get("Abstract"):
            return f"Search result: {data['Abstract']}"
        if data.get("Answer"):
            return f"Answer: {data['Answer']}"
        if data.get("Definition"):
            return f"Definition: {data['Definition']}"
        topics = data.get("RelatedTopics") or []
        if topics:
            return f"Related info: {topics[0].get('Text') or 'No specific results found'}"
        return "No specific web results found."

    # ------------------------------------------------------------------
    # get_crypto_price
    # ------------------------------------------------------------------
    async def get_crypto_price(self, symbol: str = "bitcoin") -> str:
        try:
            data = await self._get_json(
                COINGECKO_URL,
                params={"ids": symbol, "vs_currencies": "usd", "include_24hr_change": "true"},
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Crypto price error: {e}")
            return f"Error fetching {symbol} price."

        quote = data.get(symbol) if isinstance(data, dict) else None
        if not quote or quote.get("usd") is None:
            return f"Could not fetch {symbol} price."

        price = quote["usd"]
        change = quote.get("usd_24h_change") or 0
        text = f"{symbol[:1].upper()}{symbol[1:]} is priced at ${price:,}"
        if change:
            text += f" ({'+' if change > 0 else ''}{change:.2f}%)"
        return text

    # ------------------------------------------------------------------
    # get_news
    # ------------------------------------------------------------------
    async def get_news(self, topic: Optional[str] = None, count: int = 3) -> str:
        if self.newsapi_key:
            topic_lower = (topic or "").lower()
            if "bitcoin" in topic_lower or "crypto" in topic_lower:
                url = NEWSAPI_EVERYTHING_URL
                params = {"q": "bitcoin cryptocurrency", "sortBy": "publishedAt", "language": "en"}
            else:
                url = NEWSAPI_HEADLINES_URL
                params = {"country": "us", "language": "en"}
            params["apiKey"] = self.newsapi_key

            try:
                data = await self._get_json(url, params=params)
                articles = (data.get("articles") or [])[:count]
                if articles:
                    items = [f"{i}. {a.get('title')}" for i, a in enumerate(articles, 1)]
                    return "Latest news:\n" + "\n".join(items)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"NewsAPI request failed, falling back to web search: {e}")

        return await self.web_search(f"latest news {topic}" if topic else "latest news today")

    # ------------------------------------------------------------------
    # get_weather
    # ------------------------------------------------------------------
    async def get_weather(self, location: str) -> str:
        if self.weather_api_key:
            try:
                data = await self._get_json(
                    OPENWEATHER_URL,
                    params={"q": location, "appid": self.weather_api_key, "units": "metric"},
                )
                main = data["main"]
                description = data["weather"][0]["description"]
                return f"Weather in {location}: {main['temp']}°C, {description}, humidity {main['humidity']}%"
            except (httpx.HTTPError, ValueError, KeyError, IndexError) as e:
                logger.warning(f"Weather API request failed, falling back to web search: {e}")

        return await self.web_search(f"weather in {location} today")

    # ------------------------------------------------------------------
    # Intent detection
    # ------------------------------------------------------------------
    def extract_location(self, message: str) -> str:
        match = LOCATION_RE.search(message)
        if match and match.group(1).strip():
            return match.group(1).strip()
        return self.default_location

    @staticmethod
    def extract_crypto_symbol(message: str) -> str:
        for pattern, symbol in CRYPTO_SYMBOLS:
            if pattern.search(message):
                return symbol
        return "bitcoin"

    async def run_tool(self, name: str, *args) -> str:
        tool = self.get_tool(name)
        if not tool:
            raise KeyError(f"Unknown tool: {name}")
        return await tool.func(*args)

    @staticmethod
    def extract_news_topic(message: str) -> Optional[str]:
        return "crypto" if CRYPTO_NEWS_RE.search(message) else None

    async def dispatch_intents(self, message: str) -> str:
        """Crypto, news and weather snippets for whichever intents match."""
        context = ""
        try:
            if CRYPTO_RE.search(message):
                info = await self.run_tool("get_crypto_price", self.extract_crypto_symbol(message))
                context += f"Market info: {info}\n"
            if NEWS_RE.search(message):
                info = await self.run_tool("get_news", self.extract_news_topic(message), 3)
                context += f"News: {info}\n"
            if WEATHER_RE.search(message):
                info = await self.run_tool("get_weather", self.extract_location(message))
                context += f"Weather: {info}\n"
        except Exception as e:
            logger.error(f"Tool dispatch failed: {e}", exc_info=True)
        return context

    async def dispatch_web_search(self, message: str) -> str:
        """Catch-all web search. Callers only use it when nothing else matched."""
        if not WEB_SEARCH_RE.search(message):
            return ""
        info = await self.run_tool("web_search", message)
        return f"Web search: {info}\n"

    async def dispatch(self, message: str, existing_context: str = "") -> str:
        context = await self.dispatch_intents(message)
        if not existing_context and not context:
            context += await self.dispatch_web_search(message)
        return context
