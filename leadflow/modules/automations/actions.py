import logging
from dataclasses import dataclass
from datetime import datetime
from string import Template

from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.modules.agents.repository import AgentRepository
from leadflow.modules.automations.graph import (
    SendMessageConfig, AddTagConfig, RemoveTagConfig, MoveStageConfig, AssignUserConfig, SendNotificationConfig,
)
from leadflow.modules.automations.models import AutomationExecution
from leadflow.modules.leads.changes import LeadChanges
from leadflow.modules.leads.models import Lead
from leadflow.modules.leads.repository import StageRepository
from leadflow.modules.notifications.service import NotificationService
from leadflow.modules.routing.logger import AssignmentLogger
from leadflow.platform.ports.messaging import MessagingGatewayPort

log = logging.getLogger("automations.actions")


class ActionError(Exception):
    """An action node could not perform its effect. The execution is failed with this message."""


@dataclass
class ActionContext:
    session: AsyncSession
    execution: AutomationExecution
    lead: Lead | None
    messaging: MessagingGatewayPort
    now: datetime


def template_variables(lead: Lead) -> dict:
    return {
        "lead_name": lead.name or "",
        "lead_phone": lead.phone or "",
        "lead_email": lead.email or "",
        "lead_source": lead.source or "",
        "lead_city": lead.city or "",
        "campaign_name": lead.campaign_name or "",
    }


def render(text: str, lead: Lead) -> str:
    return Template(text or "").safe_substitute(template_variables(lead))


def _require_lead(ctx: ActionContext) -> Lead:
    if ctx.lead is None:
        raise ActionError("Execution has no lead")
    return ctx.lead


async def send_message(ctx: ActionContext, cfg: SendMessageConfig) -> dict:
    lead = _require_lead(ctx)
    if not lead.phone:
        raise ActionError("Lead has no phone number")
    text = render(cfg.message, lead)
    result = await ctx.messaging.send(cfg.instance, lead.phone, text)
    if not result.ok:
        raise ActionError(f"Failed to send message: {result.provider_response}")
    await LeadChanges(ctx.session).record_first_response(lead, channel="whatsapp", is_automation=True, at=ctx.now)
    return {"sent": True, "instance": cfg.instance}


async def add_tag(ctx: ActionContext, cfg: AddTagConfig) -> dict:
    changed = await LeadChanges(ctx.session).add_tag(_require_lead(ctx), cfg.tag)
    return {"tag": cfg.tag, "changed": changed}


async def remove_tag(ctx: ActionContext, cfg: RemoveTagConfig) -> dict:
    changed = await LeadChanges(ctx.session).remove_tag(_require_lead(ctx), cfg.tag)
    return {"tag": cfg.tag, "changed": changed}


async def move_stage(ctx: ActionContext, cfg: MoveStageConfig) -> dict:
    lead = _require_lead(ctx)
    stage = await StageRepository(ctx.session).get(lead.organization_id, cfg.stage_id)
    if not stage:
        raise ActionError(f"Stage {cfg.stage_id} not found")
    previous = await LeadChanges(ctx.session).move_stage(lead, stage, reason="automation", now=ctx.now)
    return {"from_stage_id": str(previous) if previous else None, "to_stage_id": str(stage.id)}


async def assign_user(ctx: ActionContext, cfg: AssignUserConfig) -> dict:
    lead = _require_lead(ctx)
    agent = await AgentRepository(ctx.session).get(lead.organization_id, cfg.user_id)
    if not agent or not agent.is_active:
        raise ActionError(f"User {cfg.user_id} not found or inactive")
    if lead.assigned_user_id == agent.id:
        return {"user_id": str(agent.id), "changed": False}
    entry = await AssignmentLogger(ctx.session).record_direct(lead, agent.id, now=ctx.now)
    if entry is None:
        raise ActionError("Lead assignment changed concurrently")
    return {"user_id": str(agent.id), "changed": True}


async def send_notification(ctx: ActionContext, cfg: SendNotificationConfig) -> dict:
    lead = ctx.lead
    user_id = cfg.user_id or (lead.assigned_user_id if lead else None)
    if user_id is None:
        raise ActionError("No user to notify")
    content = render(cfg.content, lead) if lead else cfg.content
    notification_id = await NotificationService(ctx.session).create(
        ctx.execution.organization_id,
        user_id=user_id,
        title=render(cfg.title, lead) if lead else cfg.title,
        content=content,
        type="automation",
        lead_id=lead.id if lead else None,
    )
    return {"notification_id": str(notification_id)}


HANDLERS = {
    "send_message": send_message,
    "add_tag": add_tag,
    "remove_tag": remove_tag,
    "move_stage": move_stage,
    "assign_user": assign_user,
    "send_notification": send_notification,
}


async def perform(ctx: ActionContext, cfg) -> dict:
    handler = HANDLERS.get(cfg.action_type)
    if handler is None:
        raise ActionError(f"Unknown action type '{cfg.action_type}'")
    log.debug("Execution %s: %s", ctx.execution.id, cfg.action_type)
    return await handler(ctx, cfg)
