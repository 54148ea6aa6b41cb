"""交易所行情提供者

每轮调用一次 GET {TICKER_URL}，返回形如
[{"symbol": "BTCUSDT", "price": "50000.00"}, ...] 的 JSON 数组。
网络错误、非 2xx 状态码和解析错误都抛出 TickerFetchError，由调用方跳过本轮。
解析要么全部成功，要么整体失败，不返回部分结果。
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

logger = logging.getLogger(__name__)


class TickerFetchError(Exception):
    """拉取或解析行情失败（可恢复，下一轮重试）"""


@dataclass(frozen=True)
class TickerQuote:
    symbol: str
    price_raw: str


def decode_quotes(payload) -> List[TickerQuote]:
    if not isinstance(payload, list):
        raise TickerFetchError(f"Expected a JSON array, got {type(payload).__name__}")

    quotes = []
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            raise TickerFetchError(f"Item {index} is not an object")
        symbol = item.get("symbol")
        price = item.get("price")
        if not isinstance(symbol, str) or not symbol:
            raise TickerFetchError(f"Item {index} has no symbol")
        if isinstance(price, (int, float)) and not isinstance(price, bool):
            price = str(price)
        if not isinstance(price, str):
            raise TickerFetchError(f"Item {index} ({symbol}) has no price")
        quotes.append(TickerQuote(symbol=symbol, price_raw=price))
    return quotes


class TickerProvider:
    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def fetch(self) -> List[TickerQuote]:
        try:
            resp = await self._client.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TickerFetchError(f"Failed to fetch {self.url}: {e}") from e

        try:
            payload = resp.json()
        except ValueError as e:
            raise TickerFetchError(f"Failed to decode JSON: {e}") from e

        quotes = decode_quotes(payload)
        logger.debug(f"Fetched {len(quotes)} tickers")
        return quotes

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()
