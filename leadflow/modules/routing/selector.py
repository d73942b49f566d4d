import uuid
import logging
from dataclasses import dataclass
from typing import Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.core.config import settings
from leadflow.modules.agents.repository import AgentRepository
from leadflow.modules.routing.models import QueueMember
from leadflow.modules.routing.repository import QueueRepository

log = logging.getLogger("routing.selector")


@dataclass
class Selection:
    queue_id: uuid.UUID
    member_id: uuid.UUID
    agent_id: uuid.UUID
    team_id: uuid.UUID | None
    index: int
    previous_index: int


def rotation(members: Sequence[QueueMember], strategy: str) -> list[QueueMember]:
    """
    The sequence the cursor walks over.

    For ``simple`` it is the members in position order. For ``weighted`` each
    member is repeated ``weight`` times back to back, so a full lap hands out
    exactly ``weight`` picks per member.
    """
    ordered = sorted(members, key=lambda m: m.position)
    if strategy != "weighted":
        return ordered
    seq: list[QueueMember] = []
    for m in ordered:
        seq.extend([m] * max(int(m.weight or 1), 1))
    return seq


def next_in_team(agent_ids: Sequence[uuid.UUID], cursor: int, *, exclude_agent_id: uuid.UUID | None = None) -> tuple[int, uuid.UUID] | None:
    """The team agent after ``cursor``, skipping the excluded one."""
    n = len(agent_ids)
    for step in range(n):
        idx = (cursor + 1 + step) % n
        if agent_ids[idx] != exclude_agent_id:
            return idx, agent_ids[idx]
    return None


def pick(
    members: Sequence[QueueMember],
    strategy: str,
    cursor: int,
    *,
    exclude_agent_id: uuid.UUID | None = None,
    team_agents: Mapping[uuid.UUID, Sequence[uuid.UUID]] | None = None,
) -> tuple[int, QueueMember] | None:
    """
    Next member after ``cursor``. A team member (no ``agent_id``) counts only
    when ``team_agents`` lists an agent for its team other than the excluded one.
    """
    seq = rotation(members, strategy)
    n = len(seq)
    if n == 0:
        return None
    team_agents = team_agents or {}
    # a cursor left over from a bigger rotation is clamped by the modulo
    start = (cursor + 1) % n
    for step in range(n):
        idx = (start + step) % n
        m = seq[idx]
        if m.agent_id is None:
            if next_in_team(team_agents.get(m.team_id, []), -1, exclude_agent_id=exclude_agent_id) is None:
                continue
        elif exclude_agent_id is not None and m.agent_id == exclude_agent_id:
            continue
        return idx, m
    return None


class RoundRobinSelector:
    """Owns the queue rotation cursor. Nothing else writes ``last_assigned_index``."""

    def __init__(self, session: AsyncSession, max_attempts: int | None = None):
        self.session = session
        self.queues = QueueRepository(session)
        self.agents = AgentRepository(session)
        self.max_attempts = max_attempts or settings.ROUND_ROBIN_MAX_ATTEMPTS

    async def select(self, organization_id: uuid.UUID, queue_id: uuid.UUID, *, exclude_agent_id: uuid.UUID | None = None) -> Selection | None:
        for attempt in range(1, self.max_attempts + 1):
            queue = await self.queues.get(organization_id, queue_id, fresh=True)
            if not queue or not queue.is_active:
                return None
            members = await self.queues.active_members(organization_id, queue_id)
            team_ids = {m.team_id for m in members if m.agent_id is None}
            team_agents = await self.agents.active_by_team(organization_id, list(team_ids))
            picked = pick(members, queue.strategy, queue.last_assigned_index, exclude_agent_id=exclude_agent_id, team_agents=team_agents)
            if picked is None:
                log.info("Queue %s has no eligible member", queue_id)
                return None
            idx, member = picked
            agent_id, team_index = member.agent_id, None
            if agent_id is None:
                team_index, agent_id = next_in_team(team_agents[member.team_id], member.team_cursor, exclude_agent_id=exclude_agent_id)
            advanced = await self.queues.advance_cursor(
                queue.id,
                expected_index=queue.last_assigned_index,
                new_index=idx,
                distributed=(queue.leads_distributed or 0) + 1,
            )
            if advanced:
                # the queue cursor swap above serializes writers of the team cursor
                if team_index is not None:
                    await self.queues.set_team_cursor(member.id, team_index)
                return Selection(
                    queue_id=queue.id,
                    member_id=member.id,
                    agent_id=agent_id,
                    team_id=member.team_id,
                    index=idx,
                    previous_index=queue.last_assigned_index,
                )
            log.info("Cursor contention on queue %s (attempt %d/%d)", queue_id, attempt, self.max_attempts)
        log.warning("Gave up advancing queue %s after %d attempts", queue_id, self.max_attempts)
        return None
