"""
价格同步任务（单轮）

流程: 拉取行情 -> 拆分交易对 -> 解析价格 -> 计算涨跌 -> 批量落库 -> 写缓存 -> 发布事件

状态: IDLE -> FETCHING -> PROCESSING -> DONE
拉取失败时直接 FETCHING -> DONE，不读写数据库和缓存。
所有读（上一次价格）都在唯一的一次批量写之前完成。
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List

from price_feeder.core.cache import PriceCache
from price_feeder.providers.ticker_provider import TickerFetchError, TickerProvider
from price_feeder.services.price_delta_service import PriceDeltaService
from price_feeder.services.price_writer_service import PriceWriterService, StagedPrice
from price_feeder.services.symbol_classifier import SymbolClassifier, parse_price

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    PROCESSING = "PROCESSING"
    DONE = "DONE"


@dataclass
class CycleReport:
    state: CycleState = CycleState.IDLE
    fetch_failed: bool = False
    fetched: int = 0
    unknown_symbols: int = 0
    invalid_prices: int = 0
    lookup_failures: int = 0
    staged: int = 0
    written: bool = False
    cached: int = 0
    cache_failures: int = 0
    published: int = 0
    duration: float = 0.0


class PriceSyncJob:
    def __init__(
        self,
        provider: TickerProvider,
        classifier: SymbolClassifier,
        session_factory,
        writer: PriceWriterService,
        cache: PriceCache,
        publisher,
    ):
        self.provider = provider
        self.classifier = classifier
        self.session_factory = session_factory
        self.writer = writer
        self.cache = cache
        self.publisher = publisher

    async def run_cycle(self) -> CycleReport:
        report = CycleReport()
        start_time = time.monotonic()

        report.state = CycleState.FETCHING
        try:
            quotes = await self.provider.fetch()
        except TickerFetchError as e:
            logger.warning(f"Ticker fetch failed, skipping cycle: {e}")
            report.fetch_failed = True
            report.state = CycleState.DONE
            report.duration = time.monotonic() - start_time
            return report

        report.fetched = len(quotes)
        report.state = CycleState.PROCESSING

        staged = await self._stage(quotes, report)
        report.staged = len(staged)

        report.written = await self.writer.upsert_batch(staged, datetime.now(timezone.utc))
        if not report.written:
            logger.error(f"Durable write failed for {len(staged)} pairs, will retry next cycle")

        # 缓存和事件与落库结果互不影响
        for row in staged:
            key = row.pair.cache_key
            if await self.cache.mirror(key, row.price):
                report.cached += 1
            else:
                report.cache_failures += 1
            if self.publisher.publish(key, row.price):
                report.published += 1

        report.state = CycleState.DONE
        report.duration = time.monotonic() - start_time
        logger.info(
            f"Cycle done: {report.staged}/{report.fetched} pairs staged, "
            f"written={report.written}, cached={report.cached}, "
            f"cache_failures={report.cache_failures}, unknown={report.unknown_symbols}, "
            f"invalid={report.invalid_prices}, lookup_failures={report.lookup_failures}, "
            f"took {report.duration:.3f}s"
        )
        return report

    async def _stage(self, quotes, report: CycleReport) -> List[StagedPrice]:
        staged: List[StagedPrice] = []
        async with self.session_factory() as session:
            delta_service = PriceDeltaService(session)
            for quote in quotes:
                pair = self.classifier.classify(quote.symbol)
                if pair is None:
                    report.unknown_symbols += 1
                    continue

                price = parse_price(quote.price_raw)
                if price is None:
                    report.invalid_prices += 1
                    continue

                delta = await delta_service.compute_delta(pair, price)
                staged.append(StagedPrice(
                    pair=pair,
                    price=price,
                    change=delta.change,
                    change_percent=delta.change_percent,
                ))
                logger.debug(
                    f"{pair.base:<10} {pair.quote:<6} => {price} | "
                    f"change {delta.change} ({delta.change_percent}%)"
                )
            report.lookup_failures = delta_service.lookup_failures
        return staged
