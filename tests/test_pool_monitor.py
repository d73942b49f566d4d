from datetime import timedelta

import pytest
from sqlalchemy import select

from leadflow.core.base import as_utc
from leadflow.modules.events.outbox import EventOutbox, LEAD_REDISTRIBUTED
from leadflow.modules.leads.models import Lead
from leadflow.modules.routing.models import AssignmentLog, Queue
from leadflow.modules.routing.pool import PoolMonitor
from tests.conftest import T0


@pytest.fixture
async def pool(seed):
    """Pipeline with a 10 minute pool over a two agent queue, agent A already holding the cursor."""
    a, b = await seed.agent("A"), await seed.agent("B")
    queue = await seed.queue([a, b], last_assigned_index=0)
    pipeline = await seed.pipeline(pool_enabled=True, pool_timeout_minutes=10, pool_max_redistributions=3, pool_queue_id=queue.id)
    stage = await seed.stage(pipeline)
    return pipeline, stage, queue, a, b


async def held_lead(seed, pool, **kw):
    pipeline, stage, _, a, _ = pool
    kw.setdefault("assigned_user_id", a.id)
    kw.setdefault("assigned_at", T0)
    return await seed.lead(pipeline_id=pipeline.id, stage_id=stage.id, created_at=T0, **kw)


async def test_unanswered_lead_moves_to_next_agent(session_factory, seed, pool):
    _, _, queue, a, b = pool
    lead = await held_lead(seed, pool)

    summary = await PoolMonitor(session_factory).run(T0 + timedelta(minutes=11))

    assert (summary.processed, summary.succeeded) == (1, 1)
    stored = await seed.reload(Lead, lead.id)
    assert stored.assigned_user_id == b.id
    assert stored.redistribution_count == 1
    assert as_utc(stored.assigned_at) == T0 + timedelta(minutes=11)

    logs = (await seed.session.execute(select(AssignmentLog).where(AssignmentLog.lead_id == lead.id))).scalars().all()
    assert [(e.reason, e.previous_agent_id, e.agent_id) for e in logs] == [("pool_timeout", a.id, b.id)]
    events = (await seed.session.execute(select(EventOutbox).where(EventOutbox.event_type == LEAD_REDISTRIBUTED))).scalars().all()
    assert len(events) == 1
    assert events[0].payload["redistribution_count"] == 1
    assert (await seed.reload(Queue, queue.id)).last_assigned_index == 1


async def test_lead_within_timeout_is_left_alone(session_factory, seed, pool):
    _, _, _, a, _ = pool
    lead = await held_lead(seed, pool)

    summary = await PoolMonitor(session_factory).run(T0 + timedelta(minutes=5))

    assert summary.processed == 0
    assert (await seed.reload(Lead, lead.id)).assigned_user_id == a.id


async def test_second_sweep_does_not_move_lead_again(session_factory, seed, pool):
    _, _, _, _, b = pool
    lead = await held_lead(seed, pool)
    monitor = PoolMonitor(session_factory)
    now = T0 + timedelta(minutes=11)

    await monitor.run(now)
    again = await monitor.run(now)

    assert again.processed == 0
    stored = await seed.reload(Lead, lead.id)
    assert stored.assigned_user_id == b.id
    assert stored.redistribution_count == 1


async def test_lead_at_redistribution_limit_stays(session_factory, seed, pool):
    _, _, _, a, _ = pool
    lead = await held_lead(seed, pool, redistribution_count=3)

    summary = await PoolMonitor(session_factory).run(T0 + timedelta(hours=1))

    assert summary.processed == 0
    assert (await seed.reload(Lead, lead.id)).assigned_user_id == a.id


async def test_answered_lead_stays(session_factory, seed, pool):
    _, _, _, a, _ = pool
    lead = await held_lead(seed, pool, first_response_at=T0 + timedelta(minutes=2))

    summary = await PoolMonitor(session_factory).run(T0 + timedelta(hours=1))

    assert summary.processed == 0
    assert (await seed.reload(Lead, lead.id)).assigned_user_id == a.id


async def test_lone_assignee_is_not_replaced_by_itself(session_factory, seed):
    a = await seed.agent("A")
    queue = await seed.queue([a])
    pipeline = await seed.pipeline(pool_enabled=True, pool_timeout_minutes=10, pool_queue_id=queue.id)
    lead = await seed.lead(pipeline_id=pipeline.id, assigned_user_id=a.id, assigned_at=T0, created_at=T0)

    summary = await PoolMonitor(session_factory).run(T0 + timedelta(minutes=30))

    assert (summary.processed, summary.succeeded, summary.skipped) == (1, 0, 1)
    stored = await seed.reload(Lead, lead.id)
    assert stored.assigned_user_id == a.id
    assert stored.redistribution_count == 0
    assert (await seed.reload(Queue, queue.id)).last_assigned_index == -1


async def test_pipeline_without_pool_is_ignored(session_factory, seed):
    a, b = await seed.agent("A"), await seed.agent("B")
    queue = await seed.queue([a, b])
    pipeline = await seed.pipeline(pool_enabled=False, default_queue_id=queue.id)
    lead = await seed.lead(pipeline_id=pipeline.id, assigned_user_id=a.id, assigned_at=T0, created_at=T0)

    summary = await PoolMonitor(session_factory).run(T0 + timedelta(days=1))

    assert summary.processed == 0
    assert (await seed.reload(Lead, lead.id)).assigned_user_id == a.id


async def test_one_failing_lead_does_not_stop_the_batch(session_factory, seed, pool, monkeypatch):
    _, _, _, a, b = pool
    first = await held_lead(seed, pool, assigned_at=T0 - timedelta(minutes=3))
    broken = await held_lead(seed, pool, assigned_at=T0 - timedelta(minutes=2))
    last = await held_lead(seed, pool, assigned_at=T0 - timedelta(minutes=1))
    original = PoolMonitor.redistribute

    async def redistribute(self, session, organization_id, lead_id, queue_id, **kw):
        if lead_id == broken.id:
            raise RuntimeError("db hiccup")
        return await original(self, session, organization_id, lead_id, queue_id, **kw)

    monkeypatch.setattr(PoolMonitor, "redistribute", redistribute)
    summary = await PoolMonitor(session_factory).run(T0 + timedelta(minutes=11))

    assert (summary.processed, summary.succeeded, summary.failed) == (3, 2, 1)
    assert (await seed.reload(Lead, first.id)).assigned_user_id == b.id
    assert (await seed.reload(Lead, last.id)).assigned_user_id == b.id
    untouched = await seed.reload(Lead, broken.id)
    assert untouched.assigned_user_id == a.id
    assert untouched.redistribution_count == 0
