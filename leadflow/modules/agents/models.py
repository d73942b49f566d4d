import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, ForeignKey
from leadflow.core.base import Base, TimestampedTenantMixin

# Agents and teams are owned by the identity/user system; the routing core only reads them.

class Team(Base, TimestampedTenantMixin):
    name: Mapped[str] = mapped_column(String(120))

class Agent(Base, TimestampedTenantMixin):
    name: Mapped[str] = mapped_column(String(120))
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    team_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("team.id"), nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True)
