import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, ForeignKey, JSON, CheckConstraint
from leadflow.core.base import Base, TimestampedTenantMixin

class Queue(Base, TimestampedTenantMixin):
    name: Mapped[str] = mapped_column(String(120))
    is_active: Mapped[bool] = mapped_column(default=True)
    strategy: Mapped[str] = mapped_column(String(16), default="simple")  # simple | weighted
    # rotation cursor; -1 means nobody has been picked yet
    last_assigned_index: Mapped[int] = mapped_column(Integer, default=-1)
    target_pipeline_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("pipeline.id"), nullable=True)  # null = organization-wide
    leads_distributed: Mapped[int] = mapped_column(Integer, default=0)

class QueueMember(Base, TimestampedTenantMixin):
    __tablename__ = "queue_member"
    __table_args__ = (
        CheckConstraint("weight >= 1", name="ck_queue_member_weight"),
        CheckConstraint("agent_id IS NOT NULL OR team_id IS NOT NULL", name="ck_queue_member_target"),
    )

    queue_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("queue.id"), index=True)
    # an agent member, or a team member (agent_id null) whose pick rotates over the team's active agents
    agent_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("agent.id"), nullable=True)
    team_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("team.id"), nullable=True)
    team_cursor: Mapped[int] = mapped_column(Integer, default=-1)
    position: Mapped[int] = mapped_column(Integer, default=0)
    weight: Mapped[int] = mapped_column(Integer, default=1)
    leads_count: Mapped[int] = mapped_column(Integer, default=0)

class RoutingRule(Base, TimestampedTenantMixin):
    __tablename__ = "routing_rule"

    queue_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("queue.id"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    priority: Mapped[int] = mapped_column(Integer, default=100)  # lower runs first
    is_active: Mapped[bool] = mapped_column(default=True)
    # {pipeline_id?, source?[], campaign_name_contains?, origin_form_id?[], tag_in?[], city_in?[], schedule?{days[], start, end}}
    match: Mapped[dict] = mapped_column(JSON, default=dict)

class AssignmentLog(Base, TimestampedTenantMixin):
    __tablename__ = "assignment_log"

    queue_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("queue.id"), nullable=True, index=True)
    lead_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("lead.id"), index=True)
    member_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("queue_member.id"), nullable=True)
    agent_id: Mapped[uuid.UUID] = mapped_column()
    reason: Mapped[str] = mapped_column(String(16))  # rule_match | fallback | manual | pool_timeout
    rule_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("routing_rule.id"), nullable=True)
    previous_agent_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
