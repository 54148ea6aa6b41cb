import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from price_feeder.models.token_price import TokenPrice
from price_feeder.services.symbol_classifier import SymbolPair

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
PERCENT_QUANT = Decimal("0.00000001")
# price_change_percent 为 NUMERIC(20,8)
MAX_PERCENT = Decimal(10) ** 12 - PERCENT_QUANT


@dataclass(frozen=True)
class PriceDelta:
    change: Decimal
    change_percent: Decimal


def calculate_delta(prior: Optional[Decimal], new_price: Decimal) -> PriceDelta:
    """没有上一次价格或上一次价格为 0 时，涨跌额和涨跌幅都为 0"""
    if prior is None or prior == 0:
        return PriceDelta(change=ZERO, change_percent=ZERO)

    change = new_price - prior
    change_percent = change / prior * 100
    # 极小的上一次价格会放大涨跌幅，先截断到列能存下的范围再量化
    change_percent = max(-MAX_PERCENT, min(MAX_PERCENT, change_percent))
    change_percent = change_percent.quantize(PERCENT_QUANT, rounding=ROUND_HALF_EVEN)
    return PriceDelta(change=change, change_percent=change_percent)


class PriceDeltaService:
    """从数据库读取上一次价格并计算涨跌

    查询失败时按“无历史价格”处理，只影响当前交易对的本轮计算。
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.lookup_failures = 0

    async def get_previous_price(self, pair: SymbolPair) -> Optional[Decimal]:
        result = await self.session.execute(
            select(TokenPrice.price).where(
                TokenPrice.base_currency == pair.base,
                TokenPrice.quote_currency == pair.quote,
            )
        )
        return result.scalar_one_or_none()

    async def compute_delta(self, pair: SymbolPair, new_price: Decimal) -> PriceDelta:
        try:
            prior = await self.get_previous_price(pair)
        except Exception as e:
            self.lookup_failures += 1
            logger.warning(f"Previous price lookup failed for {pair.cache_key}: {e}")
            # 失败的事务需要回滚，否则后续查询都会失败
            try:
                await self.session.rollback()
            except Exception as rollback_error:
                logger.warning(f"Rollback after lookup failure failed: {rollback_error}")
            prior = None

        return calculate_delta(prior, new_price)
