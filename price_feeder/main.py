"""
价格同步进程入口

用法:
    python -m price_feeder.main            # 持续运行
    python -m price_feeder.main --once     # 只跑一轮
    python -m price_feeder.main --cycles 10 --interval 2
"""

import argparse
import asyncio
import logging
import signal
import sys

from price_feeder.core.cache import PriceCache
from price_feeder.core.config import settings
from price_feeder.core.logging_config import setup_logging
from price_feeder.jobs.price_sync_job import PriceSyncJob
from price_feeder.jobs.scheduler import CycleScheduler
from price_feeder.models.db import (
    StartupError,
    check_connections,
    create_engine_from_settings,
    create_redis_client,
    create_session_factory,
    ensure_tables,
)
from price_feeder.providers.ticker_provider import TickerProvider
from price_feeder.services.event_publisher import NullEventPublisher, RedisStreamEventPublisher
from price_feeder.services.price_writer_service import PriceWriterService
from price_feeder.services.symbol_classifier import SymbolClassifier

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=settings.APP_NAME)
    parser.add_argument("--once", action="store_true", help="run a single cycle and exit")
    parser.add_argument("--cycles", type=int, default=None, help="stop after N cycles")
    parser.add_argument("--interval", type=float, default=None, help="seconds between cycles")
    parser.add_argument("--log-level", default=None, help="override LOG_LEVEL")
    return parser.parse_args(argv)


def build_publisher(redis_client):
    if not settings.PUBLISHER_ENABLED:
        return NullEventPublisher()
    return RedisStreamEventPublisher(
        redis_client,
        stream=settings.PUBLISH_STREAM,
        queue_size=settings.PUBLISH_QUEUE_SIZE,
        maxlen=settings.PUBLISH_STREAM_MAXLEN,
    )


async def run(args) -> int:
    engine = create_engine_from_settings(settings)
    redis_client = create_redis_client(settings)

    try:
        await check_connections(engine, redis_client)
        await ensure_tables(engine)
    except StartupError as e:
        logger.critical(str(e))
        await redis_client.aclose()
        await engine.dispose()
        return 1

    session_factory = create_session_factory(engine)
    provider = TickerProvider(settings.TICKER_URL, timeout=settings.FETCH_TIMEOUT_SECONDS)
    publisher = build_publisher(redis_client)
    await publisher.start()

    job = PriceSyncJob(
        provider=provider,
        classifier=SymbolClassifier(settings.QUOTE_CURRENCIES, settings.SYMBOL_MATCH_MODE),
        session_factory=session_factory,
        writer=PriceWriterService(session_factory),
        cache=PriceCache(redis_client, prefix=settings.CACHE_PREFIX),
        publisher=publisher,
    )

    interval = args.interval if args.interval is not None else settings.CYCLE_INTERVAL_SECONDS
    scheduler = CycleScheduler(job, interval_seconds=interval)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except NotImplementedError:
            # Windows 不支持 add_signal_handler
            pass

    max_cycles = 1 if args.once else args.cycles
    try:
        await scheduler.run(max_cycles=max_cycles)
    finally:
        await publisher.close()
        await provider.aclose()
        await redis_client.aclose()
        await engine.dispose()
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level or settings.LOG_LEVEL)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
