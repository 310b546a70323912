from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..observability.context import reset_tenant_id, set_tenant_id
from .runtime import EngineRuntime
from .triggers import match_triggers

log = logging.getLogger(__name__)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


def create_automation_router(rt: EngineRuntime) -> APIRouter:
    router = APIRouter()

    @router.post("/automation-engine")
    async def automation_engine(request: Request):
        """Single entry point; the `action` field selects the operation."""
        try:
            body = json.loads((await request.body()).decode("utf-8") or "{}")
        except Exception:
            return _bad_request("Invalid JSON body")
        if not isinstance(body, dict):
            return _bad_request("Invalid JSON body")

        action = str(body.get("action") or "").strip()
        tenant_id = body.get("tenant_id") or None
        trigger_data = body.get("trigger_data") if isinstance(body.get("trigger_data"), dict) else {}

        tok = set_tenant_id(tenant_id)
        try:
            if action == "execute":
                if not body.get("automation_id"):
                    return _bad_request("automation_id is required")
                return await rt.interpreter().execute(
                    str(body["automation_id"]),
                    tenant_id=tenant_id,
                    conversation_id=body.get("conversation_id") or None,
                    contact_id=body.get("contact_id") or None,
                    trigger_data=trigger_data,
                )

            if action == "trigger_match":
                if not tenant_id:
                    return _bad_request("tenant_id is required")
                matched = await match_triggers(rt.db_manager, str(tenant_id), trigger_data.get("message_content"))
                return {"matched_automations": matched}

            if action == "test":
                if not body.get("automation_id"):
                    return _bad_request("automation_id is required")
                return await rt.interpreter().dry_run(str(body["automation_id"]))

            if action == "history":
                if not body.get("automation_id") or not tenant_id:
                    return _bad_request("automation_id and tenant_id are required")
                executions = await rt.db_manager.list_executions(
                    str(body["automation_id"]), str(tenant_id), limit=rt.history_limit
                )
                return {"executions": executions}

            return _bad_request("Invalid action")
        except Exception as exc:
            log.exception("Automation engine error: %s", exc)
            return JSONResponse({"error": str(exc) or "Unknown error"}, status_code=500)
        finally:
            reset_tenant_id(tok)

    return router
