from datetime import timedelta

from sqlalchemy import select

from leadflow.modules.leads.models import LeadActivity
from leadflow.modules.leads.service import LeadService
from leadflow.modules.routing.models import AssignmentLog
from tests.conftest import ORG, T0


async def test_measured_from_creation_by_default(seed, session):
    pipeline = await seed.pipeline()
    lead = await seed.lead(pipeline_id=pipeline.id, created_at=T0)

    out = await LeadService(session).record_first_response(ORG, lead.id, channel="phone", at=T0 + timedelta(minutes=5))

    assert out.recorded
    assert out.lead.first_response_seconds == 300
    assert out.lead.first_response_channel == "phone"


async def test_measured_from_first_assignment(seed, session):
    pipeline = await seed.pipeline(first_response_start="lead_assigned")
    agent = await seed.agent()
    lead = await seed.lead(pipeline_id=pipeline.id, created_at=T0, assigned_user_id=agent.id, assigned_at=T0 + timedelta(minutes=20))
    log = AssignmentLog(organization_id=ORG, lead_id=lead.id, agent_id=agent.id, reason="manual")
    log.created_at = T0 + timedelta(minutes=10)
    await seed._save(log)

    out = await LeadService(session).record_first_response(ORG, lead.id, channel="email", at=T0 + timedelta(minutes=25))

    assert out.recorded
    assert out.lead.first_response_seconds == 15 * 60


async def test_unassigned_lead_falls_back_to_creation(seed, session):
    pipeline = await seed.pipeline(first_response_start="lead_assigned")
    lead = await seed.lead(pipeline_id=pipeline.id, created_at=T0)

    out = await LeadService(session).record_first_response(ORG, lead.id, channel="manual", at=T0 + timedelta(minutes=3))

    assert out.recorded
    assert out.lead.first_response_at is not None
    assert out.lead.first_response_seconds == 180


async def test_automated_touch_ignored_when_pipeline_excludes_it(seed, session):
    pipeline = await seed.pipeline(include_automation_in_first_response=False)
    lead = await seed.lead(pipeline_id=pipeline.id, created_at=T0)
    service = LeadService(session)

    automated = await service.record_first_response(ORG, lead.id, channel="whatsapp", is_automation=True, at=T0 + timedelta(minutes=1))
    assert not automated.recorded
    assert automated.lead.first_response_at is None

    manual = await service.record_first_response(ORG, lead.id, channel="phone", at=T0 + timedelta(minutes=4))
    assert manual.recorded
    assert manual.lead.first_response_is_automation is False
    assert manual.lead.first_response_seconds == 240


async def test_second_response_is_not_recorded(seed, session):
    lead = await seed.lead(created_at=T0)
    service = LeadService(session)

    assert (await service.record_first_response(ORG, lead.id, channel="phone", at=T0 + timedelta(minutes=1))).recorded
    again = await service.record_first_response(ORG, lead.id, channel="email", at=T0 + timedelta(minutes=2))

    assert not again.recorded
    assert again.lead.first_response_channel == "phone"
    acts = (await session.execute(select(LeadActivity.type).where(LeadActivity.lead_id == lead.id))).scalars().all()
    assert acts == ["first_response"]
