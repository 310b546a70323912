from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ExecutionContext:
    """Per-run state handed to node handlers. Never persisted."""

    tenant_id: str
    automation_id: str
    execution_id: Optional[str] = None
    conversation_id: Optional[str] = None
    contact_id: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_name: Optional[str] = None
    trigger_data: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)


def substitute_variables(text: Any, ctx: ExecutionContext) -> Any:
    """Replace `{{contact_name}}`, `{{contact_phone}}` and `{{<variable>}}` tokens.

    Tokens are matched literally (no whitespace inside the braces). Unknown
    tokens are left untouched. Falsy input is returned as-is.
    """
    if not text:
        return text
    result = str(text)
    result = result.replace("{{contact_name}}", ctx.contact_name or "")
    result = result.replace("{{contact_phone}}", ctx.contact_phone or "")
    for key, value in (ctx.variables or {}).items():
        result = result.replace("{{" + str(key) + "}}", str(value))
    return result
