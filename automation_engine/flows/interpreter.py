from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import AutomationNotFound, InvalidFlow
from .graph import FlowGraph, FlowNode, NodeKind, parse_flow_graph
from .store import EventPublisher, FlowStore
from .variables import ExecutionContext, substitute_variables

log = logging.getLogger(__name__)

DEFAULT_MAX_NODES = 50


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class FlowInterpreter:
    """Runs an automation's flow graph breadth-first from its start node.

    Nodes are not deduplicated across levels (only within the next frontier),
    so cyclic graphs keep re-entering until `max_nodes` is exhausted. The
    budget is checked between levels.
    """

    def __init__(
        self,
        store: FlowStore,
        *,
        publisher: Optional[EventPublisher] = None,
        max_nodes: int = DEFAULT_MAX_NODES,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.max_nodes = max(1, int(max_nodes))

    async def execute(
        self,
        automation_id: str,
        tenant_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        contact_id: Optional[str] = None,
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        automation = await self._load_automation(automation_id)
        if not bool(automation.get("is_active")):
            return {"success": False, "message": "Automation is not active"}

        graph = parse_flow_graph(automation.get("flow_data"))
        start = graph.start_node()
        if start is None:
            raise InvalidFlow("No start node found")

        trigger_data = trigger_data if isinstance(trigger_data, dict) else {}
        ctx = ExecutionContext(
            tenant_id=str(tenant_id or automation.get("tenant_id") or ""),
            automation_id=str(automation_id),
            conversation_id=conversation_id or None,
            contact_id=contact_id or None,
            trigger_data=trigger_data,
        )
        await self._enrich_context(ctx)

        execution = await self.store.insert_execution({
            "automation_id": ctx.automation_id,
            "tenant_id": ctx.tenant_id,
            "conversation_id": ctx.conversation_id,
            "contact_id": ctx.contact_id,
            "trigger_data": trigger_data,
            "status": "running",
            "started_at": _now_iso(),
        })
        ctx.execution_id = execution.get("id")
        await self._publish(ctx, "execution_started")

        path: List[str] = []
        try:
            frontier = await self._traverse(graph, start, path, ctx)
            completed_at = _now_iso()
            await self.store.update_execution(ctx.execution_id, {
                "status": "completed",
                "completed_at": completed_at,
                "current_node_id": path[-1] if path else None,
                "execution_path": path,
            })
        except Exception as exc:
            await self._mark_failed(ctx, path, exc)
            raise

        # The row is terminal from here on; counter failures must not rewrite it.
        try:
            await self.store.record_automation_run(ctx.automation_id, completed_at)
        except Exception as exc:
            log.error("Automation %s counters not updated (execution %s completed): %s", ctx.automation_id, ctx.execution_id, exc)
            raise

        truncated = any(graph.get_node(node_id) is not None for node_id in frontier)
        cycle_detected = graph.has_cycle(start.id)
        if truncated:
            log.warning(
                "Automation %s stopped at node budget (%s); %s node(s) left unvisited cycle=%s",
                ctx.automation_id,
                self.max_nodes,
                len(frontier),
                cycle_detected,
            )
        log.info(
            "Automation executed automation_id=%s execution_id=%s nodes_processed=%s",
            ctx.automation_id,
            ctx.execution_id,
            len(path),
        )
        await self._publish(ctx, "execution_completed", nodes_processed=len(path))
        return {
            "success": True,
            "execution_id": ctx.execution_id,
            "nodes_processed": len(path),
            "truncated": truncated,
            "cycle_detected": cycle_detected,
        }

    async def dry_run(self, automation_id: str) -> Dict[str, Any]:
        """Validate a flow and count the nodes a run would visit, without side effects."""
        automation = await self._load_automation(automation_id)
        graph = parse_flow_graph(automation.get("flow_data"))
        start = graph.start_node()
        if start is None:
            raise InvalidFlow("No start node found")

        path: List[str] = []
        frontier = await self._traverse(graph, start, path)
        return {
            "success": True,
            "execution_id": f"test_{int(time.time() * 1000)}",
            "nodes_processed": len(path),
            "truncated": any(graph.get_node(node_id) is not None for node_id in frontier),
            "cycle_detected": graph.has_cycle(start.id),
            "dry_run": True,
        }

    # ---------- internals ----------

    async def _load_automation(self, automation_id: str) -> Dict[str, Any]:
        automation = await self.store.get_automation(automation_id) if automation_id else None
        if not automation:
            raise AutomationNotFound("Automation not found")
        return automation

    async def _enrich_context(self, ctx: ExecutionContext) -> None:
        contact: Dict[str, Any] = {}
        if ctx.contact_id:
            contact = await self.store.get_contact(ctx.contact_id) or {}
        td = ctx.trigger_data
        ctx.contact_name = contact.get("name") or td.get("contact_name") or None
        ctx.contact_phone = contact.get("phone") or td.get("contact_phone") or None
        variables = td.get("variables")
        if isinstance(variables, dict):
            ctx.variables.update(variables)

    async def _traverse(
        self,
        graph: FlowGraph,
        start: FlowNode,
        path: List[str],
        ctx: Optional[ExecutionContext] = None,
    ) -> List[str]:
        """Walk the graph level by level, appending visited ids to `path`.

        Node side effects only run when `ctx` is given. Returns the frontier
        left when the budget ran out (empty when the walk finished).
        """
        frontier = graph.next_node_ids(start.id)
        while frontier and len(path) < self.max_nodes:
            next_ids: List[str] = []
            for node_id in frontier:
                node = graph.get_node(node_id)
                if node is None:
                    log.debug("Skipping dangling edge target %s", node_id)
                    continue
                if ctx is not None:
                    await self._run_node(node, ctx)
                path.append(node.id)
                next_ids.extend(graph.next_node_ids(node.id))
            frontier = list(dict.fromkeys(next_ids))
        return frontier

    async def _run_node(self, node: FlowNode, ctx: ExecutionContext) -> None:
        if node.kind is NodeKind.SEND_MESSAGE:
            if not (ctx.contact_id and ctx.conversation_id):
                return
            content = substitute_variables(node.data.get("message"), ctx)
            await self.store.insert_message({
                "tenant_id": ctx.tenant_id,
                "conversation_id": ctx.conversation_id,
                "contact_id": ctx.contact_id,
                "direction": "outbound",
                "message_type": "text",
                "content": content,
                "status": "pending",
            })
        # Other kinds (condition, delay, action, ...) only pass control along.

    async def _mark_failed(self, ctx: ExecutionContext, path: List[str], exc: BaseException) -> None:
        log.error("Automation %s failed after %s node(s): %s", ctx.automation_id, len(path), exc)
        try:
            await self.store.update_execution(ctx.execution_id, {
                "status": "failed",
                "completed_at": _now_iso(),
                "current_node_id": path[-1] if path else None,
                "execution_path": path,
                "error_message": str(exc)[:4000],
            })
        except Exception as mark_exc:
            log.warning("Could not mark execution %s failed: %s", ctx.execution_id, mark_exc)
        await self._publish(ctx, "execution_failed", error=str(exc))

    async def _publish(self, ctx: ExecutionContext, event_type: str, **extra: Any) -> None:
        if self.publisher is None:
            return
        event = {
            "type": event_type,
            "automation_id": ctx.automation_id,
            "execution_id": ctx.execution_id,
            "conversation_id": ctx.conversation_id,
            "timestamp": _now_iso(),
        }
        event.update(extra)
        try:
            await self.publisher.publish_execution_event(ctx.tenant_id, event)
        except Exception as exc:
            log.warning("Execution event publish failed type=%s err=%s", event_type, exc)
