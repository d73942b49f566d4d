import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadflow.core.config import settings
from leadflow.modules.automations.executor import AutomationExecutor, truncate
from leadflow.modules.automations.repository import ExecutionRepository
from leadflow.modules.events.outbox import OutboxService, AUTOMATION_FAILED
from leadflow.modules.scheduler.tick import JobSummary
from leadflow.platform.ports.messaging import MessagingGatewayPort

log = logging.getLogger("automations.delay")


class DelayProcessor:
    """Resumes waiting executions whose wait is over, oldest first, one session per execution."""

    name = "delay_processor"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], messaging: MessagingGatewayPort | None = None, batch_size: int | None = None):
        self.session_factory = session_factory
        self.messaging = messaging
        self.batch_size = batch_size or settings.DELAY_BATCH_SIZE

    async def run(self, now: datetime) -> JobSummary:
        summary = JobSummary()
        async with self.session_factory() as session:
            due = list(await ExecutionRepository(session).due(now, self.batch_size))
        if not due:
            return summary

        for execution_id in due:
            summary.processed += 1
            async with self.session_factory() as session:
                try:
                    outcome = await AutomationExecutor(session, messaging=self.messaging).resume(execution_id, now=now)
                except Exception as e:
                    log.exception("Resume failed for execution %s", execution_id)
                    await session.rollback()
                    await self._mark_failed(session, execution_id, e)
                    summary.failed += 1
                    continue
            if outcome == "resumed":
                summary.succeeded += 1
            else:
                summary.skipped += 1
        log.info("Delay sweep: %d due, %d resumed, %d failed, %d skipped", len(due), summary.succeeded, summary.failed, summary.skipped)
        return summary

    async def _mark_failed(self, session: AsyncSession, execution_id, error: Exception) -> None:
        # never leave an execution stuck in running after a crash
        try:
            execution = await ExecutionRepository(session).get(execution_id)
            if execution and execution.status in ("running", "waiting"):
                execution.status = "failed"
                execution.next_execution_at = None
                execution.error_message = truncate(f"Executor error: {error}")
                await OutboxService(session).enqueue(
                    execution.organization_id, AUTOMATION_FAILED, "automation_execution", execution.id,
                    {"automation_id": str(execution.automation_id), "error": execution.error_message},
                )
                await session.commit()
        except Exception:
            log.exception("Could not mark execution %s failed", execution_id)
            await session.rollback()
