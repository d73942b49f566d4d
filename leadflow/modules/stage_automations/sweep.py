import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadflow.core.base import as_utc
from leadflow.core.config import settings
from leadflow.modules.leads.changes import LeadChanges
from leadflow.modules.leads.repository import LeadRepository, LeadActivityRepository, StageRepository
from leadflow.modules.notifications.service import NotificationService
from leadflow.modules.scheduler.tick import JobSummary
from leadflow.modules.stage_automations.models import StageAutomation
from leadflow.modules.stage_automations.repository import StageAutomationRepository, StageAutomationLogRepository

log = logging.getLogger("stage_automations.sweep")


@dataclass
class _Rule:
    id: uuid.UUID
    organization_id: uuid.UUID
    stage_id: uuid.UUID
    automation_type: str
    trigger_days: int
    target_stage_id: uuid.UUID | None
    alert_message: str | None

    @classmethod
    def of(cls, sa: StageAutomation) -> "_Rule":
        return cls(
            id=sa.id,
            organization_id=sa.organization_id,
            stage_id=sa.stage_id,
            automation_type=sa.automation_type,
            trigger_days=sa.trigger_days or settings.STAGE_SWEEP_DEFAULT_TRIGGER_DAYS,
            target_stage_id=sa.target_stage_id,
            alert_message=sa.alert_message,
        )


class StageSweep:
    """Moves or flags leads that sat in a stage without any activity for ``trigger_days``."""

    name = "stage_sweep"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def run(self, now: datetime) -> JobSummary:
        summary = JobSummary()
        async with self.session_factory() as session:
            rules = [_Rule.of(sa) for sa in await StageAutomationRepository(session).list_active()]

        for rule in rules:
            cutoff = now - timedelta(days=rule.trigger_days)
            async with self.session_factory() as session:
                leads = await LeadRepository(session).list_in_stage(rule.organization_id, rule.stage_id)
                lead_ids = [l.id for l in leads]
                last_seen = await LeadActivityRepository(session).last_activity_at(lead_ids)
            for lead_id in lead_ids:
                last = as_utc(last_seen.get(lead_id))
                # no activity at all counts as inactive forever
                if last is not None and last >= cutoff:
                    continue
                summary.processed += 1
                async with self.session_factory() as session:
                    try:
                        done = await self.apply(session, rule, lead_id, cutoff=cutoff, last_activity=last, now=now)
                    except Exception:
                        log.exception("Stage automation %s failed for lead %s", rule.id, lead_id)
                        await session.rollback()
                        summary.failed += 1
                        continue
                if done:
                    summary.succeeded += 1
                else:
                    summary.skipped += 1
        return summary

    async def apply(self, session: AsyncSession, rule: _Rule, lead_id: uuid.UUID, *, cutoff: datetime, last_activity: datetime | None, now: datetime) -> bool:
        lead = await LeadRepository(session).get(rule.organization_id, lead_id, fresh=True)
        if not lead or lead.stage_id != rule.stage_id:
            return False
        logs = StageAutomationLogRepository(session)
        details = {
            "trigger_days": rule.trigger_days,
            "last_activity_at": last_activity.isoformat() if last_activity else None,
        }

        if rule.automation_type == "move_after_inactivity":
            if rule.target_stage_id is None:
                raise ValueError(f"stage automation {rule.id} has no target stage")
            target = await StageRepository(session).get(rule.organization_id, rule.target_stage_id)
            if not target:
                raise ValueError(f"target stage {rule.target_stage_id} not found")
            previous = await LeadChanges(session).move_stage(lead, target, reason="inactivity", now=now)
            if previous is None:
                return False
            await logs.add(rule.organization_id, rule.id, lead.id, "moved", {**details, "from_stage_id": str(previous), "to_stage_id": str(target.id)}, at=now)
            await session.commit()
            log.info("Lead %s moved to stage %s after %d idle days", lead.id, target.id, rule.trigger_days)
            return True

        if rule.automation_type == "alert_on_inactivity":
            if lead.assigned_user_id is None:
                return False
            # one alert per inactivity window
            if await logs.exists_since(rule.id, lead.id, cutoff):
                return False
            content = rule.alert_message or f"{lead.name or 'Lead'} has had no activity for {rule.trigger_days} days"
            notification_id = await NotificationService(session).create(
                rule.organization_id,
                user_id=lead.assigned_user_id,
                title="Inactive lead",
                content=content,
                type="inactivity_alert",
                lead_id=lead.id,
            )
            await logs.add(rule.organization_id, rule.id, lead.id, "alerted", {**details, "notification_id": str(notification_id)}, at=now)
            await session.commit()
            return True

        raise ValueError(f"unknown stage automation type '{rule.automation_type}'")
