"""
Recurring background jobs: the monthly salary deduction batch and the daily
leave rollover, run on an APScheduler AsyncIOScheduler.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.api.v1.leaves.service import run_leave_rollover
from app.api.v1.salary_deductions.service import process_monthly_deductions, run_salary_deduction_check
from app.core.config import settings

logger = logging.getLogger(__name__)

SALARY_DEDUCTION_TASK = "salary_deduction"
SALARY_DEDUCTION_RETRY_TASK = "salary_deduction_retry"
LEAVE_ROLLOVER_TASK = "leave_rollover"


class RecurringTask:
    """
    A named coroutine run on a trigger, or on demand through trigger_now().
    A trigger that arrives while a run is in flight joins that run instead of
    starting another one.
    """

    def __init__(self, name: str, func: Callable[[], Awaitable[Any]], trigger: BaseTrigger) -> None:
        self.name = name
        self.func = func
        self.trigger = trigger
        self.last_run_at: Optional[datetime] = None
        self.last_finished_at: Optional[datetime] = None
        self.last_result: Any = None
        self.last_error: Optional[str] = None
        self.run_count = 0
        self._inflight: Optional[asyncio.Task] = None
        self._accepting = True

    @property
    def is_running(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def _run(self) -> Any:
        self.last_run_at = datetime.utcnow()
        self.run_count += 1
        logger.info("Job %s started", self.name)
        try:
            result = await self.func()
        except Exception as e:
            self.last_error = f"{type(e).__name__}: {e}"
            self.last_result = None
            logger.exception("Job %s failed", self.name)
            return None
        finally:
            self.last_finished_at = datetime.utcnow()
        self.last_error = None
        self.last_result = result
        logger.info("Job %s finished", self.name)
        return result

    async def trigger_now(self) -> Any:
        """Run now (or join the run in flight) and return its result. None once shut down."""
        if not self._accepting:
            logger.info("Job %s is shutting down; trigger ignored", self.name)
            return None
        if not self.is_running:
            self._inflight = asyncio.ensure_future(self._run())
        return await asyncio.shield(self._inflight)

    async def shutdown(self) -> None:
        """Refuse new runs and wait for the one in flight."""
        self._accepting = False
        if self.is_running:
            await self._inflight


class JobScheduler:
    def __init__(self, session_factory: async_sessionmaker, timezone: Optional[str] = None) -> None:
        self.session_factory = session_factory
        self.timezone = timezone or settings.scheduler_timezone
        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        self.tasks: Dict[str, RecurringTask] = {}
        self._register_default_tasks()

    def _register_default_tasks(self) -> None:
        self.add_task(
            RecurringTask(
                SALARY_DEDUCTION_TASK,
                self._salary_deduction_job,
                IntervalTrigger(minutes=settings.deduction_check_interval_minutes, timezone=self.timezone),
            )
        )
        self.add_task(
            RecurringTask(
                LEAVE_ROLLOVER_TASK,
                self._leave_rollover_job,
                CronTrigger(hour=0, minute=0, timezone=self.timezone),
            )
        )

    def add_task(self, task: RecurringTask) -> None:
        self.tasks[task.name] = task
        if self.scheduler.running:
            self._schedule(task)

    def _schedule(self, task: RecurringTask) -> None:
        self.scheduler.add_job(
            task.trigger_now,
            trigger=task.trigger,
            id=task.name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    def get(self, name: str) -> Optional[RecurringTask]:
        return self.tasks.get(name)

    def list_tasks(self) -> List[RecurringTask]:
        return list(self.tasks.values())

    async def _salary_deduction_job(self):
        summary = await run_salary_deduction_check(self.session_factory)
        if summary is not None and summary.failed:
            self._schedule_deduction_retry(len(summary.failed))
        return summary

    def _schedule_deduction_retry(self, failed: int) -> None:
        # The interval check stops once any deduction exists this month, so failures get a one-off rerun.
        if not self.scheduler.running:
            return
        run_at = datetime.now(self.scheduler.timezone) + timedelta(minutes=settings.deduction_retry_delay_minutes)
        trigger = DateTrigger(run_date=run_at, timezone=self.timezone)
        logger.warning("%d salary deductions failed; retrying batch at %s", failed, run_at)
        task = self.get(SALARY_DEDUCTION_RETRY_TASK)
        if task is None:
            self.add_task(RecurringTask(SALARY_DEDUCTION_RETRY_TASK, self._deduction_retry_job, trigger))
        else:
            task.trigger = trigger
            self._schedule(task)

    async def _deduction_retry_job(self):
        return await process_monthly_deductions(self.session_factory)

    async def _leave_rollover_job(self):
        async with self.session_factory() as db:
            return await run_leave_rollover(db)

    def start(self) -> None:
        for task in self.tasks.values():
            self._schedule(task)
        self.scheduler.start()
        logger.info("Scheduler started with jobs: %s", ", ".join(self.tasks))

    async def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await asyncio.gather(*(task.shutdown() for task in self.tasks.values()))
        logger.info("Scheduler stopped")
