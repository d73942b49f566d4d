import uuid
import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.modules.automations.executor import AutomationExecutor
from leadflow.modules.automations.models import AutomationDefinition, AutomationExecution
from leadflow.modules.automations.repository import DefinitionRepository
from leadflow.platform.ports.messaging import MessagingGatewayPort

log = logging.getLogger("automations.triggers")

TRIGGER_TYPES = ("lead_created", "stage_change", "tag_added", "tag_removed", "message_received", "manual")

# filter keys each trigger type understands; anything else is rejected on save
TRIGGER_FILTERS = {
    "lead_created": {"pipeline_id", "source"},
    "stage_change": {"from_stage_id", "to_stage_id"},
    "tag_added": {"tag"},
    "tag_removed": {"tag"},
    "message_received": {"instance", "keyword"},
    "manual": set(),
}


def validate_trigger_config(trigger_type: str, config: dict | None) -> dict:
    if trigger_type not in TRIGGER_TYPES:
        raise ValueError("invalid_trigger_type")
    config = {k: v for k, v in (config or {}).items() if v not in (None, "")}
    unknown = set(config) - TRIGGER_FILTERS[trigger_type]
    if unknown:
        raise ValueError("invalid_trigger_config")
    return config


def trigger_matches(definition: AutomationDefinition, data: dict) -> bool:
    """Every filter configured on the definition must agree with the event data."""
    config = definition.trigger_config or {}
    for key, expected in config.items():
        if expected in (None, ""):
            continue
        if key == "keyword":
            text = str(data.get("text") or "")
            if str(expected).casefold() not in text.casefold():
                return False
        elif key == "source":
            if str(data.get("source") or "").casefold() != str(expected).casefold():
                return False
        elif str(data.get(key)) != str(expected):
            return False
    return True


class AutomationTriggerService:
    def __init__(self, session: AsyncSession, messaging: MessagingGatewayPort | None = None):
        self.session = session
        self.definitions = DefinitionRepository(session)
        self.messaging = messaging

    async def fire(self, organization_id: uuid.UUID, trigger_type: str, lead_id: uuid.UUID | None, data: dict | None = None, *, now: datetime | None = None) -> list[AutomationExecution]:
        data = {k: (str(v) if isinstance(v, uuid.UUID) else v) for k, v in (data or {}).items()}
        candidates = await self.definitions.list(organization_id, trigger_type=trigger_type, active_only=True)
        started: list[AutomationExecution] = []
        for definition in candidates:
            if not trigger_matches(definition, data):
                continue
            executor = AutomationExecutor(self.session, messaging=self.messaging)
            execution = await executor.start(definition, lead_id, trigger_data={"type": trigger_type, **data}, now=now)
            started.append(execution)
        if started:
            log.info("Trigger %s started %d execution(s) for lead %s", trigger_type, len(started), lead_id)
        return started
