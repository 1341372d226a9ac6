import logging
from contextlib import AbstractContextManager
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from cache import UserCache, get_cache
from config import get_settings
from database import session_scope
from insights import prune_stale_insights


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(
        self,
        cache: Optional[UserCache] = None,
        session_factory: Callable[[], AbstractContextManager[Session]] = session_scope,
    ) -> None:
        self.settings = get_settings()
        self.cache = cache if cache is not None else get_cache()
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> dict[str, int]:
        logger.info(f"housekeeping_run: source={source}")
        swept = self.cache.sweep_expired()
        with self.session_factory() as session:
            pruned = prune_stale_insights(
                session, self.settings.insight_retention_days
            )
        logger.info(
            f"housekeeping_run: source={source} cache_swept={swept} insights_pruned={pruned}"
        )
        return {"cache_swept": swept, "insights_pruned": pruned}

    def start(self) -> None:
        self._run_job("startup")

        self.scheduler.add_job(
            self._run_job,
            IntervalTrigger(hours=1),
            args=["hourly"],
            id="housekeeping_hourly",
            replace_existing=True,
            misfire_grace_time=300,
        )
        self.scheduler.add_job(
            self._run_job,
            CronTrigger(hour=3, minute=15),
            args=["daily_03:15"],
            id="housekeeping_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with hourly housekeeping and daily 03:15 run")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
