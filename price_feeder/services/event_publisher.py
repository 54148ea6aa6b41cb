"""价格事件发布

消息代理使用 Redis Streams：一个 stream 对应一个 topic，
每条消息 {key: BTC_USDT, value: 50000.00000000}。

publish() 只把消息放进有界队列，由独立的 drain 任务写入 Redis，
不会阻塞同步周期。队列满时丢弃并计数；写入失败只记录日志，不重试。
"""

import asyncio
import logging
from decimal import Decimal
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


def format_event_price(price) -> str:
    return f"{Decimal(price):.8f}"


class NullEventPublisher:
    """未启用事件发布时的空实现"""

    async def start(self):
        return None

    def publish(self, key: str, price: Decimal) -> bool:
        return False

    def publish_snapshot(self, entries: Dict[str, str]) -> int:
        return 0

    async def close(self, timeout: float = 5.0):
        return None


class RedisStreamEventPublisher:
    def __init__(
        self,
        redis_client,
        stream: str = "prices",
        queue_size: int = 10000,
        maxlen: Optional[int] = 100000,
    ):
        self.redis = redis_client
        self.stream = stream
        self.maxlen = maxlen
        self._queue: asyncio.Queue[Tuple[str, str]] = asyncio.Queue(maxsize=queue_size)
        self._task: Optional[asyncio.Task] = None

        self.published = 0
        self.dropped = 0
        self.failed = 0

    async def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._drain(), name="price-event-drain")
            logger.info(f"Event publisher started, stream={self.stream}")

    def _enqueue(self, key: str, value: str) -> bool:
        try:
            self._queue.put_nowait((key, value))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Event queue full, dropped {key}")
            return False
        return True

    def publish(self, key: str, price: Decimal) -> bool:
        return self._enqueue(key, format_event_price(price))

    def publish_snapshot(self, entries: Dict[str, str]) -> int:
        """把缓存快照（key -> 价格字符串）整体入队"""
        queued = sum(1 for key, value in entries.items() if self._enqueue(key, value))
        logger.info(f"Queued {queued}/{len(entries)} cached pairs for publishing")
        return queued

    async def _send(self, key: str, value: str):
        try:
            await self.redis.xadd(
                self.stream,
                {"key": key, "value": value},
                maxlen=self.maxlen,
                approximate=True,
            )
        except Exception as e:
            self.failed += 1
            logger.warning(f"Failed to publish {key}: {e}")
        else:
            self.published += 1
            logger.debug(f"Published {key} => {value}")

    async def _drain(self):
        while True:
            key, value = await self._queue.get()
            try:
                await self._send(key, value)
            finally:
                self._queue.task_done()

    async def close(self, timeout: float = 5.0):
        """等待队列清空（最多 timeout 秒），然后停止 drain 任务"""
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Event queue not drained in {timeout}s, {self._queue.qsize()} messages left")

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(
            f"Event publisher closed: {self.published} published, "
            f"{self.failed} failed, {self.dropped} dropped"
        )
