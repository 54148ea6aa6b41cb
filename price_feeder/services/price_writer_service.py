"""价格批量落库

一轮同步的所有交易对合并为一条 INSERT ... ON CONFLICT DO UPDATE 语句，
以 (base_currency, quote_currency) 为冲突键。
失败只记录日志，不在本轮重试；下一轮会再次拉取同样的交易对。
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from price_feeder.models.token_price import TokenPrice
from price_feeder.services.symbol_classifier import SymbolPair

logger = logging.getLogger(__name__)

UPDATE_COLUMNS = ("price", "price_change", "price_change_percent", "updated_at")


@dataclass(frozen=True)
class StagedPrice:
    pair: SymbolPair
    price: Decimal
    change: Decimal
    change_percent: Decimal


def build_upsert(dialect_name: str, values: List[dict]):
    """按方言生成批量 upsert 语句"""
    if dialect_name == "postgresql":
        stmt = postgresql.insert(TokenPrice).values(values)
        return stmt.on_conflict_do_update(
            index_elements=["base_currency", "quote_currency"],
            set_={col: stmt.excluded[col] for col in UPDATE_COLUMNS},
        )
    if dialect_name == "sqlite":
        stmt = sqlite.insert(TokenPrice).values(values)
        return stmt.on_conflict_do_update(
            index_elements=["base_currency", "quote_currency"],
            set_={col: stmt.excluded[col] for col in UPDATE_COLUMNS},
        )
    if dialect_name in ("mysql", "mariadb"):
        # MySQL UPSERT: INSERT ... ON DUPLICATE KEY UPDATE
        stmt = mysql.insert(TokenPrice).values(values)
        return stmt.on_duplicate_key_update(
            **{col: stmt.inserted[col] for col in UPDATE_COLUMNS}
        )
    raise ValueError(f"Unsupported dialect for upsert: {dialect_name}")


class PriceWriterService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @staticmethod
    def _to_values(rows: Iterable[StagedPrice], updated_at: datetime) -> List[dict]:
        # 同一批次内重复的交易对只保留最后一条，ON CONFLICT 不能在一条语句里更新同一行两次
        latest: Dict[Tuple[str, str], dict] = {}
        for row in rows:
            latest[(row.pair.base, row.pair.quote)] = {
                "base_currency": row.pair.base,
                "quote_currency": row.pair.quote,
                "price": row.price,
                "price_change": row.change,
                "price_change_percent": row.change_percent,
                "updated_at": updated_at,
            }
        return list(latest.values())

    async def upsert_batch(self, rows: Iterable[StagedPrice], updated_at: datetime) -> bool:
        values = self._to_values(rows, updated_at)
        if not values:
            return True

        async with self.session_factory() as session:
            try:
                stmt = build_upsert(session.bind.dialect.name, values)
                await session.execute(stmt)
                await session.commit()
            except Exception as e:
                logger.error(f"Batch upsert of {len(values)} pairs failed: {e}")
                try:
                    await session.rollback()
                except Exception as rollback_error:
                    logger.warning(f"Rollback after batch failure failed: {rollback_error}")
                return False

        logger.debug(f"Upserted {len(values)} pairs")
        return True
