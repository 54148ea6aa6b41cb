import logging
from decimal import Decimal
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def format_cache_price(price: Decimal) -> str:
    """缓存中的价格统一保留 6 位小数，例如 50000.000000"""
    return f"{Decimal(price):.6f}"


class PriceCache:
    """
    Redis 价格镜像

    只保存每个交易对的最新价格，无过期时间，最后一次写入生效。
    缓存不是数据源，写失败只记录日志。
    """

    def __init__(self, redis_client, prefix: str = ""):
        self.redis = redis_client
        self.prefix = prefix

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def mirror(self, key: str, price: Decimal) -> bool:
        value = format_cache_price(price)
        try:
            await self.redis.set(self._make_key(key), value)
        except Exception as e:
            logger.warning(f"Redis set failed for {key}: {e}")
            return False
        logger.debug(f"Cached {key} = {value}")
        return True

    async def get_price(self, key: str) -> Optional[str]:
        return await self.redis.get(self._make_key(key))

    async def get_all_prices(self) -> Dict[str, str]:
        """列出前缀下的全部价格（供读侧接口使用）"""
        data: Dict[str, str] = {}
        async for raw_key in self.redis.scan_iter(match=f"{self.prefix}*"):
            value = await self.redis.get(raw_key)
            if value is None:
                # 扫描和读取之间被删除
                continue
            data[raw_key[len(self.prefix):]] = value
        return data
