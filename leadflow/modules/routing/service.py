import uuid
import logging
from datetime import datetime
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.core.base import utcnow, as_utc
from leadflow.modules.leads.models import Lead
from leadflow.modules.leads.repository import LeadRepository, PipelineRepository
from leadflow.modules.routing.matcher import RuleMatch, LeadSnapshot, CandidateRule, match_route
from leadflow.modules.routing.models import RoutingRule
from leadflow.modules.routing.repository import QueueRepository, RuleRepository, AssignmentRepository
from leadflow.modules.routing.selector import RoundRobinSelector
from leadflow.modules.routing.logger import AssignmentLogger
from leadflow.modules.routing.schemas import QueueCreate, QueueUpdate, MemberCreate, RuleCreate, RoutingResult

log = logging.getLogger("routing.service")

def snapshot_of(lead: Lead, at: datetime | None = None) -> LeadSnapshot:
    return LeadSnapshot(
        pipeline_id=lead.pipeline_id,
        source=lead.source,
        campaign_name=lead.campaign_name,
        origin_form_id=lead.origin_form_id,
        tags=list(lead.tags or []),
        city=lead.city,
        at=at or as_utc(lead.created_at),
    )

def _candidate(rule: RoutingRule) -> CandidateRule | None:
    try:
        match = RuleMatch.model_validate(rule.match or {})
    except ValidationError as e:
        log.warning("Ignoring routing rule %s with invalid match: %s", rule.id, e)
        return None
    return CandidateRule(id=rule.id, queue_id=rule.queue_id, priority=rule.priority, created_at=as_utc(rule.created_at), match=match, name=rule.name)

class RoutingService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.leads = LeadRepository(session)
        self.pipelines = PipelineRepository(session)
        self.queues = QueueRepository(session)
        self.rules = RuleRepository(session)
        self.assignments = AssignmentRepository(session)
        self.selector = RoundRobinSelector(session)
        self.logger = AssignmentLogger(session)

    # ---- Configuration ----
    async def create_queue(self, organization_id: uuid.UUID, payload: QueueCreate):
        obj = await self.queues.create(organization_id, **payload.model_dump())
        await self.session.commit()
        return obj

    async def update_queue(self, organization_id: uuid.UUID, queue_id: uuid.UUID, payload: QueueUpdate):
        obj = await self.queues.get(organization_id, queue_id)
        if not obj:
            return None
        for k, v in payload.model_dump(exclude_unset=True).items():
            setattr(obj, k, v)
        await self.session.commit()
        return obj

    async def list_queues(self, organization_id: uuid.UUID):
        return await self.queues.list(organization_id)

    async def add_member(self, organization_id: uuid.UUID, queue_id: uuid.UUID, payload: MemberCreate):
        q = await self.queues.get(organization_id, queue_id)
        if not q:
            return None
        obj = await self.queues.add_member(organization_id, queue_id, **payload.model_dump())
        await self.session.commit()
        return obj

    async def list_members(self, organization_id: uuid.UUID, queue_id: uuid.UUID):
        return await self.queues.members(organization_id, queue_id)

    async def create_rule(self, organization_id: uuid.UUID, payload: RuleCreate):
        q = await self.queues.get(organization_id, payload.queue_id)
        if not q:
            raise ValueError("queue_not_found")
        data = payload.model_dump(exclude={"match"})
        data["match"] = payload.match.model_dump(mode="json", exclude_none=True)
        obj = await self.rules.create(organization_id, **data)
        await self.session.commit()
        return obj

    async def list_rules(self, organization_id: uuid.UUID, queue_id: uuid.UUID | None = None):
        return await self.rules.list(organization_id, queue_id)

    async def list_assignments(self, organization_id: uuid.UUID, lead_id: uuid.UUID):
        return await self.assignments.list_for_lead(organization_id, lead_id)

    # ---- Routing ----
    async def route_lead(self, organization_id: uuid.UUID, lead_id: uuid.UUID, *, now: datetime | None = None) -> RoutingResult | None:
        """
        Matches the lead against the routing rules, picks the next queue member and
        records the assignment. Runs in its own transaction: a lost guard rolls back
        the cursor advance together with everything else.
        """
        now = now or utcnow()
        lead = await self.leads.get(organization_id, lead_id, fresh=True)
        if not lead:
            return None
        if lead.assigned_user_id is not None:
            return RoutingResult(lead_id=lead.id, status="already_assigned", agent_id=lead.assigned_user_id)

        pipeline = await self.pipelines.get(organization_id, lead.pipeline_id) if lead.pipeline_id else None
        fallback_queue_id = pipeline.default_queue_id if pipeline else None
        queues = await self.queues.for_pipeline(organization_id, lead.pipeline_id, fallback_queue_id)
        active_ids = {q.id for q in queues if q.is_active}
        rows = await self.rules.active_for_queues(organization_id, [q.id for q in queues])
        candidates = [c for c in (_candidate(r) for r in rows) if c is not None]

        decision = match_route(snapshot_of(lead, now), candidates, active_ids, fallback_queue_id=fallback_queue_id)
        if not decision.routed:
            log.info("No route for lead %s; leaving unassigned", lead.id)
            return RoutingResult(lead_id=lead.id, status="no_route")

        selection = await self.selector.select(organization_id, decision.queue_id)
        if selection is None:
            await self.session.rollback()
            return RoutingResult(lead_id=lead_id, status="no_eligible_member", queue_id=decision.queue_id, rule_id=decision.rule_id, reason=decision.reason)

        entry = await self.logger.record(lead, selection, decision.reason, rule_id=decision.rule_id, now=now)
        if entry is None:
            await self.session.rollback()
            return RoutingResult(lead_id=lead_id, status="skipped", queue_id=decision.queue_id, rule_id=decision.rule_id, reason=decision.reason)

        await self.session.commit()
        return RoutingResult(lead_id=lead_id, status="assigned", queue_id=selection.queue_id, rule_id=decision.rule_id, agent_id=selection.agent_id, reason=decision.reason)

    async def assign_manual(self, organization_id: uuid.UUID, queue_id: uuid.UUID, lead_id: uuid.UUID | None = None, *, now: datetime | None = None) -> RoutingResult | None:
        now = now or utcnow()
        queue = await self.queues.get(organization_id, queue_id)
        if not queue:
            return None
        if lead_id is not None:
            lead = await self.leads.get(organization_id, lead_id, fresh=True)
            if not lead:
                raise ValueError("lead_not_found")
        else:
            lead = await self.leads.oldest_unassigned(organization_id, queue.target_pipeline_id)
            if not lead:
                raise ValueError("no_unassigned_lead")
        lead_id = lead.id

        selection = await self.selector.select(organization_id, queue_id)
        if selection is None:
            await self.session.rollback()
            return RoutingResult(lead_id=lead_id, status="no_eligible_member", queue_id=queue_id, reason="manual")

        entry = await self.logger.record(lead, selection, "manual", now=now)
        if entry is None:
            await self.session.rollback()
            return RoutingResult(lead_id=lead_id, status="skipped", queue_id=queue_id, reason="manual")

        await self.session.commit()
        return RoutingResult(lead_id=lead_id, status="assigned", queue_id=queue_id, agent_id=selection.agent_id, reason="manual")
