import uuid
from typing import Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.modules.agents.models import Agent

class AgentRepository:
    def __init__(self, session: AsyncSession):
        self.s = session

    async def get(self, organization_id: uuid.UUID, agent_id: uuid.UUID) -> Agent | None:
        r = await self.s.execute(select(Agent).where(
            Agent.id == agent_id, Agent.organization_id == organization_id, Agent.deleted_at.is_(None)
        ))
        return r.scalar_one_or_none()

    async def active_by_team(self, organization_id: uuid.UUID, team_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, list[uuid.UUID]]:
        """Active agent ids per team, oldest agent first."""
        if not team_ids:
            return {}
        r = await self.s.execute(
            select(Agent.team_id, Agent.id).where(
                Agent.organization_id == organization_id,
                Agent.team_id.in_(team_ids),
                Agent.is_active.is_(True),
                Agent.deleted_at.is_(None),
            ).order_by(Agent.created_at.asc(), Agent.id.asc())
        )
        out: dict[uuid.UUID, list[uuid.UUID]] = {}
        for team_id, agent_id in r.all():
            out.setdefault(team_id, []).append(agent_id)
        return out
