import logging
from typing import Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import async_session_maker
from ingestion.run_history import record_run
from ingestion.runner import PipelineOrchestrator
from schemas.pipeline import RunStats

logger = logging.getLogger(__name__)

PipelineFactory = Callable[[], PipelineOrchestrator]


class ETLScheduler:
    """
    Run registered pipelines on an interval.

    A factory builds a fresh pipeline for every job run, since a pipeline
    instance runs once. Failures are logged; the scheduler keeps going.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = async_session_maker,
        interval_minutes: Optional[int] = None,
    ):
        self.scheduler = AsyncIOScheduler()
        self.session_factory = session_factory
        self.interval_minutes = interval_minutes or settings.SCHEDULER_INTERVAL_MINUTES
        self.pipelines: Dict[str, PipelineFactory] = {}

    def register(self, name: str, factory: PipelineFactory) -> None:
        self.pipelines[name] = factory

    async def run_pipeline_job(self, name: str) -> Optional[RunStats]:
        """Job to run one pipeline and record its outcome"""
        logger.info(f"Scheduler: starting {name}")
        try:
            pipeline = self.pipelines[name]()
            stats = await pipeline.run()
        except Exception as e:
            logger.error(f"Scheduler: {name} failed to run - {e}")
            return None

        logger.info(
            f"Scheduler: {name} finished in state {stats.state.value} "
            f"({stats.extraction.failure} extraction failures, {stats.load.failure} load failures)"
        )

        try:
            async with self.session_factory() as session:
                await record_run(session, stats)
        except Exception as e:
            logger.error(f"Scheduler: could not record run of {name} - {e}")

        return stats

    def start(self):
        """Start the scheduler"""
        for name in self.pipelines:
            self.scheduler.add_job(
                self.run_pipeline_job,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                args=[name],
                id=f"etl_job_{name}",
                replace_existing=True,
                max_instances=1,
            )
        self.scheduler.start()
        logger.info(f"ETL Scheduler started with {len(self.pipelines)} pipelines")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("ETL Scheduler stopped")
