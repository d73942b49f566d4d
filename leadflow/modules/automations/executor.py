"""
Automation executor.

An execution walks its definition's graph node by node inside one "pass".
Action and condition nodes chain within the pass; a wait node with a
positive duration ends it, leaving the execution ``waiting`` with
``next_execution_at`` set and ``current_node_id`` on the wait node itself.
Resuming picks up at the wait node's ``next``.

Execution state lives in the ``automation_execution`` row, so any process
can resume any execution. The ``waiting -> running`` step is a guarded
update: of two concurrent resumes exactly one proceeds.
"""
import uuid
import logging
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.core.base import utcnow
from leadflow.core.config import settings
from leadflow.modules.automations.actions import ActionContext, ActionError, perform
from leadflow.modules.automations.conditions import evaluate
from leadflow.modules.automations.graph import AutomationGraph, ActionNode, WaitNode, ConditionNode, EndNode
from leadflow.modules.automations.models import AutomationDefinition, AutomationExecution
from leadflow.modules.automations.repository import DefinitionRepository, ExecutionRepository
from leadflow.modules.events.outbox import OutboxService, AUTOMATION_COMPLETED, AUTOMATION_FAILED
from leadflow.modules.leads.repository import LeadRepository
from leadflow.platform.ports.messaging import MessagingGatewayPort
from leadflow.platform.provider_registry import registry

log = logging.getLogger("automations.executor")

TRACE_LIMIT = 50


class GraphError(Exception):
    """The graph cannot be walked: bad structure or a probable cycle."""


def truncate(message: str, limit: int | None = None) -> str:
    limit = limit or settings.ERROR_MESSAGE_MAX_LENGTH
    return message if len(message) <= limit else message[: limit - 3] + "..."


def parse_graph(raw: dict | None) -> AutomationGraph:
    try:
        return AutomationGraph.model_validate(raw or {})
    except ValidationError as e:
        details = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise GraphError(f"Invalid automation graph: {details}")


class AutomationExecutor:
    def __init__(self, session: AsyncSession, messaging: MessagingGatewayPort | None = None, max_steps: int | None = None):
        self.session = session
        self.definitions = DefinitionRepository(session)
        self.executions = ExecutionRepository(session)
        self.leads = LeadRepository(session)
        self.messaging = messaging or registry.messaging()
        self.max_steps = max_steps or settings.AUTOMATION_MAX_STEPS

    # ---- Entry points ----
    async def start(self, definition: AutomationDefinition, lead_id: uuid.UUID | None, *, trigger_data: dict | None = None, now: datetime | None = None) -> AutomationExecution:
        now = now or utcnow()
        entry = (definition.graph or {}).get("entry_node_id")
        execution = await self.executions.create(
            definition.organization_id,
            automation_id=definition.id,
            lead_id=lead_id,
            status="running",
            current_node_id=entry,
            execution_data={"trigger": trigger_data or {}, "steps": []},
            started_at=now,
        )
        # the row must survive a rollback of the pass below
        await self.session.commit()
        log.info("Execution %s started for automation %s (lead %s)", execution.id, definition.id, lead_id)
        try:
            graph = parse_graph(definition.graph)
        except GraphError as e:
            await self._finish_failed(execution, str(e))
            return execution
        await self._run(execution, graph, graph.entry_node_id, now)
        return execution

    async def resume(self, execution_id: uuid.UUID, *, organization_id: uuid.UUID | None = None, now: datetime | None = None, require_due: bool = True) -> str:
        """
        Continues a waiting execution past its wait node.

        Returns ``resumed``, ``skipped`` (not waiting, not due, or claimed by a
        concurrent caller) or ``not_found``.
        """
        now = now or utcnow()
        execution = await self.executions.get(execution_id, organization_id)
        if not execution:
            return "not_found"
        claimed = await self.executions.claim(execution_id, now=now if require_due else None)
        if not claimed:
            await self.session.rollback()
            return "skipped"
        await self.session.commit()
        execution = await self.executions.get(execution_id)

        definition = await self.definitions.get(execution.organization_id, execution.automation_id)
        if not definition or not definition.is_active:
            await self._finish_failed(execution, f"Automation {execution.automation_id} is inactive or deleted; execution halted")
            return "resumed"
        try:
            graph = parse_graph(definition.graph)
            next_node_id = self._after_wait(graph, execution.current_node_id)
        except GraphError as e:
            await self._finish_failed(execution, str(e))
            return "resumed"
        await self._run(execution, graph, next_node_id, now)
        return "resumed"

    # ---- Step loop ----
    def _after_wait(self, graph: AutomationGraph, node_id: str | None) -> str | None:
        if node_id is None:
            raise GraphError("Waiting execution has no current node")
        try:
            node = graph.node(node_id)
        except KeyError:
            raise GraphError(f"Node '{node_id}' no longer exists in the graph")
        if isinstance(node, WaitNode):
            return node.next
        # graph edited under a waiting execution; re-enter at the current node
        return node.id

    async def _run(self, execution: AutomationExecution, graph: AutomationGraph, node_id: str | None, now: datetime) -> None:
        lead = await self.leads.get(execution.organization_id, execution.lead_id) if execution.lead_id else None
        ctx = ActionContext(session=self.session, execution=execution, lead=lead, messaging=self.messaging, now=now)
        steps = 0
        try:
            while True:
                if node_id is None:
                    await self._finish_completed(execution, now)
                    return
                if steps >= self.max_steps:
                    raise GraphError(f"Step limit of {self.max_steps} exceeded at node '{node_id}'; probable cycle in graph")
                steps += 1
                try:
                    node = graph.node(node_id)
                except KeyError:
                    raise GraphError(f"Unknown node '{node_id}'")
                execution.current_node_id = node.id

                if isinstance(node, EndNode):
                    self._trace(execution, node, now)
                    await self._finish_completed(execution, now)
                    return
                if isinstance(node, ActionNode):
                    result = await perform(ctx, node.config)
                    self._trace(execution, node, now, result)
                    node_id = node.next
                elif isinstance(node, ConditionNode):
                    outcome = evaluate(node.condition, lead)
                    self._trace(execution, node, now, {"result": outcome})
                    node_id = node.branch(outcome)
                elif isinstance(node, WaitNode):
                    if node.duration.total_seconds() <= 0:
                        self._trace(execution, node, now, {"skipped": True})
                        node_id = node.next
                        continue
                    execution.status = "waiting"
                    execution.next_execution_at = now + node.duration
                    self._trace(execution, node, now, {"until": execution.next_execution_at.isoformat()})
                    await self.session.commit()
                    log.info("Execution %s waiting until %s at node %s", execution.id, execution.next_execution_at, node.id)
                    return
        except (ActionError, GraphError) as e:
            await self._finish_failed(execution, str(e))
        except Exception as e:
            log.exception("Execution %s crashed at node %s", execution.id, node_id)
            await self.session.rollback()
            execution = await self.executions.get(execution.id)
            await self._finish_failed(execution, f"{type(e).__name__}: {e}")

    def _trace(self, execution: AutomationExecution, node, now: datetime, result: dict | None = None) -> None:
        data = dict(execution.execution_data or {})
        steps = list(data.get("steps", []))
        steps.append({"node_id": node.id, "type": node.type, "at": now.isoformat(), "result": result})
        data["steps"] = steps[-TRACE_LIMIT:]
        execution.execution_data = data

    # ---- Terminal states ----
    async def _finish_completed(self, execution: AutomationExecution, now: datetime) -> None:
        execution.status = "completed"
        execution.next_execution_at = None
        execution.completed_at = now
        await OutboxService(self.session).enqueue(
            execution.organization_id, AUTOMATION_COMPLETED, "automation_execution", execution.id,
            {"automation_id": str(execution.automation_id), "lead_id": str(execution.lead_id) if execution.lead_id else None},
        )
        await self.session.commit()
        log.info("Execution %s completed", execution.id)

    async def _finish_failed(self, execution: AutomationExecution, message: str) -> None:
        execution.status = "failed"
        execution.next_execution_at = None
        execution.error_message = truncate(message)
        execution.completed_at = utcnow()
        await OutboxService(self.session).enqueue(
            execution.organization_id, AUTOMATION_FAILED, "automation_execution", execution.id,
            {"automation_id": str(execution.automation_id), "error": execution.error_message},
        )
        await self.session.commit()
        log.warning("Execution %s failed: %s", execution.id, execution.error_message)
