import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from leadflow.core.base import Base
from leadflow.core.config import settings
from leadflow.core.db import import_models
from leadflow.modules.agents.models import Agent, Team
from leadflow.modules.automations.models import AutomationDefinition
from leadflow.modules.leads.models import Pipeline, Stage, Lead, LeadActivity
from leadflow.modules.routing.models import Queue, QueueMember, RoutingRule
from leadflow.platform.ports.messaging import SendResult
from leadflow.platform.provider_registry import registry

ORG = uuid.UUID(settings.DEFAULT_ORG_ID)
T0 = datetime(2024, 6, 5, 10, 0, tzinfo=timezone.utc)  # a Wednesday


class FakeMessaging:
    def __init__(self, ok: bool = True, provider_response=None):
        self.ok = ok
        self.provider_response = provider_response
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, instance: str, phone_number: str, text: str) -> SendResult:
        self.sent.append((instance, phone_number, text))
        return SendResult(ok=self.ok, provider_response=self.provider_response)


class Seeder:
    """Inserts rows straight through the ORM and commits each one."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.commit()
        return obj

    async def team(self, name: str = "Team") -> Team:
        return await self._save(Team(organization_id=ORG, name=name))

    async def agent(self, name: str = "Agent", *, is_active: bool = True, team: Team | None = None) -> Agent:
        return await self._save(Agent(organization_id=ORG, name=name, is_active=is_active, team_id=team.id if team else None))

    async def pipeline(self, name: str = "Sales", **kw) -> Pipeline:
        return await self._save(Pipeline(organization_id=ORG, name=name, **kw))

    async def stage(self, pipeline: Pipeline, name: str = "New", position: int = 0) -> Stage:
        return await self._save(Stage(organization_id=ORG, pipeline_id=pipeline.id, name=name, position=position))

    async def queue(self, agents: list[Agent] | None = None, *, name: str = "Queue", strategy: str = "simple", weights: list[int] | None = None, **kw) -> Queue:
        q = await self._save(Queue(organization_id=ORG, name=name, strategy=strategy, **kw))
        for i, a in enumerate(agents or []):
            weight = weights[i] if weights else 1
            self.session.add(QueueMember(organization_id=ORG, queue_id=q.id, agent_id=a.id, position=i, weight=weight))
        await self.session.commit()
        return q

    async def team_member(self, queue: Queue, team: Team, *, position: int = 0, weight: int = 1) -> QueueMember:
        return await self._save(QueueMember(organization_id=ORG, queue_id=queue.id, team_id=team.id, position=position, weight=weight))

    async def rule(self, queue: Queue, *, priority: int = 100, match: dict | None = None, name: str = "rule", **kw) -> RoutingRule:
        return await self._save(RoutingRule(organization_id=ORG, queue_id=queue.id, name=name, priority=priority, match=match or {}, **kw))

    async def lead(self, **kw) -> Lead:
        kw.setdefault("source", "site")
        kw.setdefault("tags", [])
        return await self._save(Lead(organization_id=ORG, **kw))

    async def activity(self, lead: Lead, type: str = "note", at: datetime | None = None) -> LeadActivity:
        act = LeadActivity(organization_id=ORG, lead_id=lead.id, type=type)
        if at is not None:
            act.created_at = at
        return await self._save(act)

    async def automation(self, graph: dict, *, trigger_type: str = "manual", trigger_config: dict | None = None, is_active: bool = True, name: str = "flow") -> AutomationDefinition:
        return await self._save(AutomationDefinition(
            organization_id=ORG, name=name, trigger_type=trigger_type,
            trigger_config=trigger_config or {}, graph=graph, is_active=is_active,
        ))

    async def reload(self, model, obj_id):
        res = await self.session.execute(select(model).where(model.id == obj_id).execution_options(populate_existing=True))
        return res.scalar_one()


@pytest.fixture
async def engine(tmp_path):
    import_models()
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def seed(session):
    return Seeder(session)


@pytest.fixture
def messaging():
    fake = FakeMessaging()
    registry.override_messaging(fake)
    yield fake
    registry.override_messaging(None)
