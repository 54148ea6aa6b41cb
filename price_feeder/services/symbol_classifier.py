"""交易对拆分与价格解析

BTCUSDT -> (BTC, USDT)。计价币来自固定列表：
- first 模式：按列表顺序取第一个匹配的后缀（兼容旧行为，列表顺序会影响结果）
- longest 模式：在所有匹配中取最长的后缀
无法识别的交易对返回 None，由调用方过滤，不视为错误。
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

MATCH_MODES = ("first", "longest")

# token_prices.price 为 NUMERIC(30,8)，整数部分最多 22 位
MAX_PRICE = Decimal(10) ** 22


@dataclass(frozen=True)
class SymbolPair:
    base: str
    quote: str

    @property
    def cache_key(self) -> str:
        return f"{self.base}_{self.quote}"


class SymbolClassifier:
    def __init__(self, quotes: Iterable[str], match_mode: str = "first"):
        if match_mode not in MATCH_MODES:
            raise ValueError(f"match_mode must be one of {MATCH_MODES}, got {match_mode!r}")

        # 去重但保留顺序
        ordered = list(dict.fromkeys(q for q in quotes if q))
        if match_mode == "longest":
            # sorted 是稳定排序，等长后缀仍按原列表顺序
            ordered = sorted(ordered, key=len, reverse=True)

        self.quotes = tuple(ordered)
        self.match_mode = match_mode

    def classify(self, symbol: str) -> Optional[SymbolPair]:
        for quote in self.quotes:
            if len(symbol) > len(quote) and symbol.endswith(quote):
                return SymbolPair(base=symbol[:-len(quote)], quote=quote)
        return None


def parse_price(raw: str) -> Optional[Decimal]:
    """解析价格字符串；非数字、NaN/Infinity、负数、超出列精度的值返回 None"""
    try:
        value = Decimal(raw.strip())
    except (InvalidOperation, AttributeError):
        return None
    if not value.is_finite() or value < 0 or value >= MAX_PRICE:
        return None
    return value
