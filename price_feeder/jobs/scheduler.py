"""
同步周期调度器（基于 APScheduler）

每一轮结束后再用 DateTrigger 安排下一轮，间隔从上一轮结束开始计算（固定延迟，
不是固定频率），所以慢的周期会拉长实际间隔。
同一时间只有一轮在执行；单轮抛出的异常只记录日志，不会停止调度。
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)

JOB_ID = "price_sync_cycle"


class CycleScheduler:
    def __init__(self, job, interval_seconds: float = 1.0):
        self.job = job
        self.interval = timedelta(seconds=interval_seconds)
        self.completed_cycles = 0

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._max_cycles: Optional[int] = None
        self._stopping = False
        self._finished: Optional[asyncio.Event] = None
        self._idle: Optional[asyncio.Event] = None

    def _build_scheduler(self) -> AsyncIOScheduler:
        job_defaults = {
            'coalesce': True,
            # 下一轮在本轮收尾前就可能被提交
            'max_instances': 2,
            'misfire_grace_time': None,  # 延迟的周期仍然执行
        }
        return AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults=job_defaults,
            timezone='UTC',
        )

    def _schedule_next(self, delay: timedelta):
        run_date = datetime.now(timezone.utc) + delay
        self._scheduler.add_job(
            self._tick,
            trigger=DateTrigger(run_date=run_date, timezone='UTC'),
            id=JOB_ID,
            name="Price sync cycle",
            replace_existing=True,
        )

    async def _tick(self):
        self._idle.clear()
        try:
            await self.job.run_cycle()
        except Exception as e:
            logger.error(f"Price sync cycle crashed: {e}", exc_info=True)
        finally:
            self.completed_cycles += 1
            self._idle.set()

        if self._max_cycles is not None and self.completed_cycles >= self._max_cycles:
            self._stopping = True

        if self._stopping:
            self._finished.set()
        else:
            self._schedule_next(self.interval)

    async def run(self, max_cycles: Optional[int] = None) -> int:
        """运行直到 stop() 被调用或完成 max_cycles 轮，返回完成的轮数"""
        self._max_cycles = max_cycles
        self._stopping = False
        self._finished = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

        if max_cycles is not None and max_cycles <= 0:
            return 0

        self._scheduler = self._build_scheduler()
        self._scheduler.start()
        self._schedule_next(timedelta(0))
        logger.info(f"Scheduler started, interval={self.interval.total_seconds()}s")

        try:
            await self._finished.wait()
            # 等待正在执行的周期结束
            await self._idle.wait()
        finally:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info(f"Scheduler stopped after {self.completed_cycles} cycles")
        return self.completed_cycles

    def stop(self):
        """请求停止：取消尚未开始的下一轮，正在执行的一轮会执行完"""
        if self._finished is None or self._stopping:
            return
        self._stopping = True
        if self._scheduler is not None and self._scheduler.get_job(JOB_ID) is not None:
            self._scheduler.remove_job(JOB_ID)
        if self._idle.is_set():
            self._finished.set()
