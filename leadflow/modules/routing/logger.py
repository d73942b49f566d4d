import uuid
import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.core.base import utcnow
from leadflow.modules.events.outbox import OutboxService, LEAD_ASSIGNED, LEAD_REDISTRIBUTED
from leadflow.modules.leads.models import Lead
from leadflow.modules.leads.repository import LeadActivityRepository
from leadflow.modules.routing.models import AssignmentLog
from leadflow.modules.routing.repository import AssignmentRepository, QueueRepository
from leadflow.modules.routing.selector import Selection

log = logging.getLogger("routing.assignment")

REASONS = ("rule_match", "fallback", "manual", "pool_timeout")


class AssignmentLogger:
    """
    The only code path that changes who owns a lead.

    The lead row is written first, through a guarded update. If the guard
    does not hold (someone else assigned the lead, or another sweep already
    redistributed it) nothing else is written and ``None`` comes back; the
    caller is expected to roll back so the cursor advance is undone too.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.assignments = AssignmentRepository(session)
        self.queues = QueueRepository(session)
        self.activities = LeadActivityRepository(session)
        self.outbox = OutboxService(session)

    async def record(self, lead: Lead, selection: Selection, reason: str, *, rule_id: uuid.UUID | None = None, now: datetime | None = None) -> AssignmentLog | None:
        return await self._assign(
            lead, selection.agent_id, reason,
            queue_id=selection.queue_id, member_id=selection.member_id, rule_id=rule_id, now=now,
        )

    async def record_direct(self, lead: Lead, agent_id: uuid.UUID, *, now: datetime | None = None) -> AssignmentLog | None:
        """Hands the lead to a named agent without going through a queue."""
        return await self._assign(lead, agent_id, "manual", now=now)

    async def _assign(self, lead: Lead, agent_id: uuid.UUID, reason: str, *, queue_id: uuid.UUID | None = None, member_id: uuid.UUID | None = None, rule_id: uuid.UUID | None = None, now: datetime | None = None) -> AssignmentLog | None:
        if reason not in REASONS:
            raise ValueError("invalid_assignment_reason")
        now = now or utcnow()
        previous_agent_id = lead.assigned_user_id
        expected_count = lead.redistribution_count or 0

        if reason == "pool_timeout":
            ok = await self.assignments.redistribute(lead.id, agent_id=agent_id, at=now, expected_count=expected_count)
        elif reason == "manual":
            ok = await self.assignments.reassign(lead.id, agent_id=agent_id, at=now, previous_agent_id=previous_agent_id)
        else:
            ok = await self.assignments.assign_unassigned(lead.id, agent_id=agent_id, at=now)
        if not ok:
            log.info("Assignment guard failed for lead %s (reason=%s); skipping", lead.id, reason)
            return None

        entry = await self.assignments.append(
            lead.organization_id,
            queue_id=queue_id,
            lead_id=lead.id,
            member_id=member_id,
            agent_id=agent_id,
            reason=reason,
            rule_id=rule_id,
            previous_agent_id=previous_agent_id,
            created_at=now,
        )
        if member_id is not None:
            await self.queues.bump_member_count(member_id)
        await self.activities.add(
            lead.organization_id, lead.id, "lead_assigned",
            f"Lead assigned ({reason})",
            meta={
                "queue_id": str(queue_id) if queue_id else None,
                "agent_id": str(agent_id),
                "previous_agent_id": str(previous_agent_id) if previous_agent_id else None,
                "reason": reason,
                "rule_id": str(rule_id) if rule_id else None,
            },
            at=now,
        )
        payload = {
            "lead_id": str(lead.id),
            "queue_id": str(queue_id) if queue_id else None,
            "agent_id": str(agent_id),
            "reason": reason,
        }
        if reason == "pool_timeout":
            payload["redistribution_count"] = expected_count + 1
            payload["previous_agent_id"] = str(previous_agent_id) if previous_agent_id else None
        event_type = LEAD_REDISTRIBUTED if reason == "pool_timeout" else LEAD_ASSIGNED
        await self.outbox.enqueue(lead.organization_id, event_type, "lead", lead.id, payload, occurred_at=now)
        log.info("Lead %s assigned to %s via queue %s (%s)", lead.id, agent_id, queue_id, reason)
        return entry
