from __future__ import annotations

from typing import Any, Dict, Iterable, List

from .store import FlowStore


def _keywords(automation: Dict[str, Any]) -> List[str]:
    cfg = automation.get("trigger_config") or {}
    if not isinstance(cfg, dict):
        return []
    raw = cfg.get("keywords")
    if not isinstance(raw, list):
        return []
    return [str(k or "").strip().lower() for k in raw if str(k or "").strip()]


def match_keyword_automations(automations: Iterable[Dict[str, Any]], message_content: Any) -> List[str]:
    """Ids of keyword-triggered automations whose keywords occur in the message."""
    text_lc = str(message_content if message_content is not None else "").lower()
    matched: List[str] = []
    for automation in automations or []:
        if not isinstance(automation, dict):
            continue
        if str(automation.get("trigger_type") or "") != "keyword":
            continue
        if any(k in text_lc for k in _keywords(automation)):
            matched.append(str(automation.get("id")))
    return matched


async def match_triggers(store: FlowStore, tenant_id: str, message_content: Any) -> List[str]:
    """Match an inbound message against the tenant's active automations.

    Only reports matches; running them is up to the caller.
    """
    automations = await store.list_active_automations(tenant_id)
    return match_keyword_automations(automations, message_content)
