from datetime import timedelta

import pytest
from sqlalchemy import select

from leadflow.core.base import as_utc
from leadflow.modules.automations.delay import DelayProcessor
from leadflow.modules.automations.executor import AutomationExecutor
from leadflow.modules.automations.models import AutomationExecution
from leadflow.modules.events.outbox import EventOutbox, AUTOMATION_FAILED
from tests.conftest import T0, FakeMessaging


def tag_wait_message_graph():
    return {
        "entry_node_id": "tag",
        "nodes": [
            {"type": "action", "id": "tag", "config": {"action_type": "add_tag", "tag": "nurturing"}, "next": "wait"},
            {"type": "wait", "id": "wait", "duration_value": 1, "duration_unit": "hours", "next": "msg"},
            {"type": "action", "id": "msg", "config": {"action_type": "send_message", "instance": "main", "message": "Hi ${lead_name}"}},
        ],
    }


@pytest.fixture
async def waiting(seed, session):
    """Starts one execution at T0 that parks on a one hour wait."""
    lead = await seed.lead(name="Ana", phone="5511999990000", created_at=T0)
    definition = await seed.automation(tag_wait_message_graph())
    fake = FakeMessaging()
    execution = await AutomationExecutor(session, messaging=fake).start(definition, lead.id, now=T0)
    return execution, fake


async def test_not_resumed_before_wait_is_over(session_factory, seed, waiting):
    execution, fake = waiting
    summary = await DelayProcessor(session_factory, messaging=fake).run(T0 + timedelta(minutes=30))

    assert summary.processed == 0
    assert fake.sent == []
    assert (await seed.reload(AutomationExecution, execution.id)).status == "waiting"


async def test_resumed_exactly_once_after_wait(session_factory, seed, waiting):
    execution, fake = waiting
    processor = DelayProcessor(session_factory, messaging=fake)

    first = await processor.run(T0 + timedelta(minutes=61))
    second = await processor.run(T0 + timedelta(minutes=61, seconds=30))

    assert (first.processed, first.succeeded, first.failed) == (1, 1, 0)
    assert second.processed == 0
    assert fake.sent == [("main", "5511999990000", "Hi Ana")]
    stored = await seed.reload(AutomationExecution, execution.id)
    assert stored.status == "completed"
    assert as_utc(stored.completed_at) == T0 + timedelta(minutes=61)


async def test_concurrent_resume_only_one_wins(session_factory, seed, waiting):
    execution, fake = waiting
    later = T0 + timedelta(hours=2)
    async with session_factory() as s1, session_factory() as s2:
        first = await AutomationExecutor(s1, messaging=fake).resume(execution.id, now=later)
        second = await AutomationExecutor(s2, messaging=fake).resume(execution.id, now=later)

    assert sorted([first, second]) == ["resumed", "skipped"]
    assert len(fake.sent) == 1


async def test_batch_takes_oldest_due_first(session_factory, seed, session):
    definition = await seed.automation(tag_wait_message_graph())
    fake = FakeMessaging()
    ids = []
    for minute in (20, 0, 10):
        lead = await seed.lead(name=f"L{minute}", phone="5511000000000", created_at=T0)
        execution = await AutomationExecutor(session, messaging=fake).start(definition, lead.id, now=T0 + timedelta(minutes=minute))
        ids.append((minute, execution.id))

    summary = await DelayProcessor(session_factory, messaging=fake, batch_size=2).run(T0 + timedelta(hours=3))

    assert summary.processed == 2
    states = {minute: (await seed.reload(AutomationExecution, eid)).status for minute, eid in ids}
    assert states == {0: "completed", 10: "completed", 20: "waiting"}


async def test_executor_crash_marks_execution_failed(session_factory, seed, waiting, monkeypatch):
    execution, fake = waiting

    async def explode(self, execution_id, **kw):
        raise RuntimeError("boom")

    monkeypatch.setattr(AutomationExecutor, "resume", explode)
    summary = await DelayProcessor(session_factory, messaging=fake).run(T0 + timedelta(hours=2))

    assert (summary.processed, summary.failed) == (1, 1)
    stored = await seed.reload(AutomationExecution, execution.id)
    assert stored.status == "failed"
    assert stored.error_message == "Executor error: boom"
    events = (await seed.session.execute(select(EventOutbox).where(EventOutbox.event_type == AUTOMATION_FAILED))).scalars().all()
    assert len(events) == 1
