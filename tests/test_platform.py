import json
import uuid
from datetime import timedelta

import httpx
import pytest
from fastapi import HTTPException
from sqlalchemy import select

from leadflow.core.base import as_utc, utcnow
from leadflow.core.security import Principal, principal_from_claims
from leadflow.modules.events.outbox import EventOutbox, OutboxService, relay_once, LEAD_ASSIGNED
from leadflow.platform.adapters.messaging_evolution import EvolutionMessagingGateway, normalize_phone_number
from leadflow.platform.provider_registry import registry
from tests.conftest import ORG


class RecordingBus:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []

    async def publish(self, topic, key, value, headers=None):
        if self.fail:
            raise ConnectionError("bus down")
        self.published.append((topic, key, value))


@pytest.fixture
def bus():
    recording = RecordingBus()
    registry.override_event_bus(recording)
    yield recording
    registry.override_event_bus(None)


def test_phone_normalization():
    assert normalize_phone_number("(11) 99999-0000", "55") == "5511999990000"
    assert normalize_phone_number("+55 11 99999-0000", "55") == "5511999990000"
    assert normalize_phone_number("12345", "55") == "12345"


async def test_evolution_gateway_posts_text():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["apikey"] = request.headers["apikey"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"key": {"id": "abc"}})

    gateway = EvolutionMessagingGateway("http://evo.local/", "secret", transport=httpx.MockTransport(handler))
    result = await gateway.send("main", "11 99999-0000", "Hi")

    assert result.ok
    assert result.provider_response == {"key": {"id": "abc"}}
    assert seen["url"] == "http://evo.local/message/sendText/main"
    assert seen["apikey"] == "secret"
    assert seen["body"] == {"number": "5511999990000", "text": "Hi"}


async def test_evolution_gateway_reports_rejection():
    transport = httpx.MockTransport(lambda request: httpx.Response(400, text="instance not connected"))
    gateway = EvolutionMessagingGateway("http://evo.local", "secret", transport=transport)

    result = await gateway.send("main", "5511999990000", "Hi")

    assert not result.ok
    assert result.provider_response == "instance not connected"


def test_evolution_gateway_needs_configuration():
    with pytest.raises(RuntimeError):
        EvolutionMessagingGateway("", "")


async def test_relay_publishes_pending_events(session, bus):
    lead_id = uuid.uuid4()
    await OutboxService(session).enqueue(ORG, LEAD_ASSIGNED, "lead", lead_id, {"reason": "manual"})
    await session.commit()

    assert await relay_once(session) == 1

    topic, key, value = bus.published[0]
    assert topic == "leadflow.events"
    assert key == str(lead_id)
    assert value["event_type"] == LEAD_ASSIGNED
    assert value["organization_id"] == str(ORG)
    event = (await session.execute(select(EventOutbox))).scalar_one()
    assert event.status == "sent"
    assert await relay_once(session) == 0


async def test_relay_backs_off_when_bus_fails(session, bus):
    bus.fail = True
    await OutboxService(session).enqueue(ORG, LEAD_ASSIGNED, "lead", uuid.uuid4(), {})
    await session.commit()

    await relay_once(session)

    event = (await session.execute(select(EventOutbox))).scalar_one()
    assert event.status == "pending"
    assert event.attempts == 1
    assert event.last_error == "bus down"
    assert as_utc(event.next_attempt_at) > utcnow() + timedelta(seconds=1)


def test_scope_wildcards():
    p = Principal(user_id=uuid.uuid4(), organization_id=ORG, scopes=["routing:*", "leads:read"])
    assert p.allows("routing:assign")
    assert p.allows("leads:read")
    assert not p.allows("leads:write")


def test_claims_with_space_delimited_scope():
    user = uuid.uuid4()
    p = principal_from_claims({"sub": str(user), "organization_id": str(ORG), "scope": "leads:write jobs:run"})
    assert p.user_id == user
    assert p.scopes == ["leads:write", "jobs:run"]


def test_claims_without_subject_are_rejected():
    with pytest.raises(HTTPException) as exc:
        principal_from_claims({"organization_id": str(ORG)})
    assert exc.value.status_code == 401
