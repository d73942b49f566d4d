import uuid
from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from leadflow.core.base import as_utc
from leadflow.core.config import settings
from leadflow.modules.automations.executor import AutomationExecutor, truncate
from leadflow.modules.automations.graph import ConditionConfig
from leadflow.modules.automations.models import AutomationExecution
from leadflow.modules.automations.triggers import AutomationTriggerService, trigger_matches, validate_trigger_config
from leadflow.modules.leads.models import Lead
from leadflow.modules.notifications.models import Notification
from tests.conftest import ORG, T0, FakeMessaging


def action(id, config, next=None):
    return {"type": "action", "id": id, "config": config, "next": next}


def wait(id, value, unit="minutes", next=None):
    return {"type": "wait", "id": id, "duration_value": value, "duration_unit": unit, "next": next}


def welcome_graph():
    return {
        "entry_node_id": "tag",
        "nodes": [
            action("tag", {"action_type": "add_tag", "tag": "nurturing"}, "wait"),
            wait("wait", 1, "hours", "msg"),
            action("msg", {"action_type": "send_message", "instance": "main", "message": "Hi ${lead_name} from ${lead_city}"}, "end"),
            {"type": "end", "id": "end"},
        ],
    }


@pytest.fixture
async def lead(seed):
    pipeline = await seed.pipeline()
    stage = await seed.stage(pipeline)
    return await seed.lead(pipeline_id=pipeline.id, stage_id=stage.id, name="Ana", phone="5511999990000", city="SP", created_at=T0)


async def test_wait_node_parks_execution(seed, session, lead):
    definition = await seed.automation(welcome_graph())
    fake = FakeMessaging()

    execution = await AutomationExecutor(session, messaging=fake).start(definition, lead.id, now=T0)

    stored = await seed.reload(AutomationExecution, execution.id)
    assert stored.status == "waiting"
    assert stored.current_node_id == "wait"
    assert as_utc(stored.next_execution_at) == T0 + timedelta(hours=1)
    assert fake.sent == []
    assert (await seed.reload(Lead, lead.id)).tags == ["nurturing"]


async def test_resume_after_wait_completes_and_renders_template(seed, session, lead):
    definition = await seed.automation(welcome_graph())
    fake = FakeMessaging()
    executor = AutomationExecutor(session, messaging=fake)
    execution = await executor.start(definition, lead.id, now=T0)

    outcome = await executor.resume(execution.id, now=T0 + timedelta(minutes=61))

    assert outcome == "resumed"
    stored = await seed.reload(AutomationExecution, execution.id)
    assert stored.status == "completed"
    assert stored.next_execution_at is None
    assert fake.sent == [("main", "5511999990000", "Hi Ana from SP")]
    updated = await seed.reload(Lead, lead.id)
    assert updated.first_response_channel == "whatsapp"
    assert updated.first_response_is_automation is True
    assert [s["node_id"] for s in stored.execution_data["steps"]] == ["tag", "wait", "msg", "end"]


async def test_resume_before_due_is_skipped(seed, session, lead):
    definition = await seed.automation(welcome_graph())
    executor = AutomationExecutor(session, messaging=FakeMessaging())
    execution = await executor.start(definition, lead.id, now=T0)

    assert await executor.resume(execution.id, now=T0 + timedelta(minutes=30)) == "skipped"
    assert (await seed.reload(AutomationExecution, execution.id)).status == "waiting"


async def test_forced_resume_ignores_due_time(seed, session, lead):
    definition = await seed.automation(welcome_graph())
    executor = AutomationExecutor(session, messaging=FakeMessaging())
    execution = await executor.start(definition, lead.id, now=T0)

    assert await executor.resume(execution.id, now=T0 + timedelta(minutes=1), require_due=False) == "resumed"
    assert (await seed.reload(AutomationExecution, execution.id)).status == "completed"


async def test_resume_of_finished_execution_changes_nothing(seed, session, lead):
    definition = await seed.automation(welcome_graph())
    fake = FakeMessaging()
    executor = AutomationExecutor(session, messaging=fake)
    execution = await executor.start(definition, lead.id, now=T0)
    await executor.resume(execution.id, now=T0 + timedelta(hours=2))

    assert await executor.resume(execution.id, now=T0 + timedelta(hours=3)) == "skipped"
    assert len(fake.sent) == 1


async def test_resume_unknown_execution(session):
    assert await AutomationExecutor(session, messaging=FakeMessaging()).resume(uuid.uuid4()) == "not_found"


async def test_deactivated_definition_halts_waiting_execution(seed, session, lead):
    definition = await seed.automation(welcome_graph())
    fake = FakeMessaging()
    executor = AutomationExecutor(session, messaging=fake)
    execution = await executor.start(definition, lead.id, now=T0)
    definition.is_active = False
    await session.commit()

    assert await executor.resume(execution.id, now=T0 + timedelta(hours=2)) == "resumed"

    stored = await seed.reload(AutomationExecution, execution.id)
    assert stored.status == "failed"
    assert "inactive or deleted" in stored.error_message
    assert fake.sent == []


async def test_zero_wait_passes_straight_through(seed, session, lead):
    graph = {
        "entry_node_id": "w",
        "nodes": [wait("w", 0, next="tag"), action("tag", {"action_type": "add_tag", "tag": "fast"})],
    }
    definition = await seed.automation(graph)
    execution = await AutomationExecutor(session, messaging=FakeMessaging()).start(definition, lead.id, now=T0)

    assert (await seed.reload(AutomationExecution, execution.id)).status == "completed"
    assert (await seed.reload(Lead, lead.id)).tags == ["fast"]


async def test_condition_follows_matching_edge(seed, session, lead):
    graph = {
        "entry_node_id": "check",
        "nodes": [
            {"type": "condition", "id": "check", "condition": {"condition_type": "is_assigned"},
             "edges": {"true": "assigned", "default": "unassigned"}},
            action("assigned", {"action_type": "add_tag", "tag": "owned"}),
            action("unassigned", {"action_type": "add_tag", "tag": "orphan"}),
        ],
    }
    definition = await seed.automation(graph)
    await AutomationExecutor(session, messaging=FakeMessaging()).start(definition, lead.id, now=T0)

    assert (await seed.reload(Lead, lead.id)).tags == ["orphan"]


async def test_condition_without_default_edge_fails(seed, session, lead):
    graph = {
        "entry_node_id": "check",
        "nodes": [
            {"type": "condition", "id": "check", "condition": {"condition_type": "always"}, "edges": {"true": "end"}},
            {"type": "end", "id": "end"},
        ],
    }
    definition = await seed.automation(graph)
    execution = await AutomationExecutor(session, messaging=FakeMessaging()).start(definition, lead.id, now=T0)

    stored = await seed.reload(AutomationExecution, execution.id)
    assert stored.status == "failed"
    assert "default edge" in stored.error_message


async def test_cycle_is_cut_by_step_limit(seed, session, lead):
    graph = {
        "entry_node_id": "tag",
        "nodes": [
            action("tag", {"action_type": "add_tag", "tag": "loop"}, "check"),
            {"type": "condition", "id": "check", "condition": {"condition_type": "always"}, "edges": {"default": "tag"}},
        ],
    }
    definition = await seed.automation(graph)
    execution = await AutomationExecutor(session, messaging=FakeMessaging(), max_steps=10).start(definition, lead.id, now=T0)

    stored = await seed.reload(AutomationExecution, execution.id)
    assert stored.status == "failed"
    assert "Step limit" in stored.error_message


async def test_failed_send_fails_execution_with_bounded_message(seed, session, lead):
    graph = {
        "entry_node_id": "msg",
        "nodes": [action("msg", {"action_type": "send_message", "instance": "main", "message": "hello"})],
    }
    definition = await seed.automation(graph)
    fake = FakeMessaging(ok=False, provider_response="x" * 2000)

    execution = await AutomationExecutor(session, messaging=fake).start(definition, lead.id, now=T0)

    stored = await seed.reload(AutomationExecution, execution.id)
    assert stored.status == "failed"
    assert stored.error_message.startswith("Failed to send message")
    assert len(stored.error_message) == settings.ERROR_MESSAGE_MAX_LENGTH
    assert stored.error_message.endswith("...")
    assert (await seed.reload(Lead, lead.id)).first_response_at is None


async def test_send_without_phone_fails(seed, session):
    lead = await seed.lead(name="No Phone", created_at=T0)
    graph = {
        "entry_node_id": "msg",
        "nodes": [action("msg", {"action_type": "send_message", "instance": "main", "message": "hello"})],
    }
    definition = await seed.automation(graph)
    execution = await AutomationExecutor(session, messaging=FakeMessaging()).start(definition, lead.id, now=T0)

    stored = await seed.reload(AutomationExecution, execution.id)
    assert stored.status == "failed"
    assert stored.error_message == "Lead has no phone number"


async def test_notification_goes_to_assignee(seed, session):
    agent = await seed.agent("Owner")
    lead = await seed.lead(name="Ana", assigned_user_id=agent.id, assigned_at=T0, created_at=T0)
    graph = {
        "entry_node_id": "notify",
        "nodes": [action("notify", {"action_type": "send_notification", "title": "Call ${lead_name}", "content": "now"})],
    }
    definition = await seed.automation(graph)
    await AutomationExecutor(session, messaging=FakeMessaging()).start(definition, lead.id, now=T0)

    rows = (await session.execute(select(Notification))).scalars().all()
    assert len(rows) == 1
    assert rows[0].user_id == agent.id
    assert rows[0].title == "Call Ana"


def test_truncate_keeps_short_messages():
    assert truncate("boom", 10) == "boom"
    assert truncate("x" * 20, 10) == "xxxxxxx..."


def test_trigger_filters():
    validate_trigger_config("message_received", {"keyword": "price"})
    with pytest.raises(ValueError, match="invalid_trigger_config"):
        validate_trigger_config("tag_added", {"keyword": "price"})
    with pytest.raises(ValueError, match="invalid_trigger_type"):
        validate_trigger_config("lead_deleted", {})

    class Definition:
        trigger_config = {"keyword": "Price"}

    assert trigger_matches(Definition, {"text": "what is the PRICE?"})
    assert not trigger_matches(Definition, {"text": "hello"})


async def test_fire_starts_matching_definitions_only(seed, session, lead):
    graph = {"entry_node_id": "end", "nodes": [{"type": "end", "id": "end"}]}
    await seed.automation(graph, trigger_type="tag_added", trigger_config={"tag": "vip"}, name="vip")
    await seed.automation(graph, trigger_type="tag_added", trigger_config={"tag": "cold"}, name="cold")
    await seed.automation(graph, trigger_type="tag_added", trigger_config={"tag": "vip"}, is_active=False, name="off")

    started = await AutomationTriggerService(session, messaging=FakeMessaging()).fire(ORG, "tag_added", lead.id, {"tag": "vip"}, now=T0)

    assert len(started) == 1
    assert (await seed.reload(AutomationExecution, started[0].id)).status == "completed"


def test_field_equals_only_accepts_comparable_fields():
    assert ConditionConfig(condition_type="field_equals", field="city", value="SP").field == "city"
    with pytest.raises(ValidationError):
        ConditionConfig(condition_type="field_equals", field="first_response_at", value="x")
    with pytest.raises(ValidationError):
        ConditionConfig(condition_type="field_equals")
