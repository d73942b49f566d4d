"""APScheduler wiring for the once-a-minute tick."""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadflow.core.config import settings
from leadflow.modules.automations.delay import DelayProcessor
from leadflow.modules.leads.sla import SlaChecker
from leadflow.modules.routing.pool import PoolMonitor
from leadflow.modules.scheduler.tick import Ticker
from leadflow.modules.stage_automations.sweep import StageSweep
from leadflow.platform.ports.messaging import MessagingGatewayPort

logger = logging.getLogger(__name__)


def build_ticker(session_factory: async_sessionmaker[AsyncSession], messaging: MessagingGatewayPort | None = None) -> Ticker:
    return Ticker([
        PoolMonitor(session_factory),
        DelayProcessor(session_factory, messaging=messaging),
        StageSweep(session_factory),
        SlaChecker(session_factory),
    ])


def create_scheduler(ticker: Ticker) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        ticker.tick,
        CronTrigger.from_crontab(settings.SCHEDULER_CRON, timezone="UTC"),
        id="leadflow_tick",
        name="Lead routing background jobs",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    logger.info("Scheduler configured with cron '%s'", settings.SCHEDULER_CRON)
    return scheduler
