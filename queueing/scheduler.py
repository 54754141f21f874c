"""定时任务调度器 - 每日统计校对

通用的调度框架只负责按时触发，具体任务通过回调注入。
默认注册的唯一任务是每日统计校对（StatisticsAggregator.reconcile）。
"""
import asyncio
from typing import Callable, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from config.settings import settings
from .errors import QueueError
from .statistics import StatisticsAggregator

RECONCILE_JOB_ID = "statistics_reconcile"


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """解析 'HH:MM' 为 (小时, 分钟)。"""
    try:
        hour_str, minute_str = value.strip().split(":")
        hour, minute = int(hour_str), int(minute_str)
    except ValueError:
        raise ValueError(f"Invalid time of day: {value!r}, expected HH:MM")
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid time of day: {value!r}, expected HH:MM")
    return hour, minute


class Scheduler:
    """定时任务调度器"""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Args:
            loop: 调度器运行的事件循环，默认使用当前线程的运行中循环
        """
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = asyncio.new_event_loop()
                asyncio.set_event_loop(loop)
        self.scheduler = AsyncIOScheduler(event_loop=loop)

    def add_daily_task(
        self,
        task_func: Callable,
        hour: int = 23,
        minute: int = 55,
        task_id: str = 'daily_task',
        task_name: str = '每日任务'
    ):
        """添加每日定时任务

        Args:
            task_func: 任务函数（async 函数）
            hour: 小时 (0-23)
            minute: 分钟 (0-59)
            task_id: 任务ID
            task_name: 任务名称
        """
        self.scheduler.add_job(
            task_func,
            trigger=CronTrigger(hour=hour, minute=minute),
            id=task_id,
            name=task_name,
            replace_existing=True
        )
        logger.info(f"已添加每日任务 '{task_name}'，执行时间 {hour:02d}:{minute:02d}")

    def add_reconcile_task(self, aggregator: StatisticsAggregator,
                           at: Optional[str] = None):
        """注册每日统计校对任务。

        Args:
            aggregator: 统计聚合器
            at: 执行时间 HH:MM，默认取 settings.reconcile_time
        """
        hour, minute = parse_time_of_day(at or settings.reconcile_time)

        async def reconcile_today():
            try:
                # 同步数据库操作放到线程池执行
                corrected = await asyncio.to_thread(aggregator.reconcile)
            except QueueError as e:
                logger.error(f"每日统计校对失败: {e.message}")
                return
            if corrected:
                logger.warning(f"每日统计校对修正了 {len(corrected)} 行")

        self.add_daily_task(reconcile_today, hour=hour, minute=minute,
                            task_id=RECONCILE_JOB_ID, task_name='每日统计校对')

    def start(self):
        """启动调度器"""
        self.scheduler.start()
        logger.info("调度器已启动")

    def stop(self):
        """停止调度器"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("调度器已停止")

    def get_job(self, job_id: str):
        return self.scheduler.get_job(job_id)

    def remove_job(self, job_id: str):
        """移除任务

        Args:
            job_id: 任务ID
        """
        try:
            self.scheduler.remove_job(job_id)
            logger.info(f"任务已移除: {job_id}")
        except Exception as e:
            logger.warning(f"移除任务 {job_id} 失败: {e}")
