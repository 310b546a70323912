from __future__ import annotations

from contextvars import ContextVar, Token
from typing import Optional
import uuid

# NOTE: These are request-scoped for HTTP handlers. Work started outside a request
# will have empty values unless explicitly set.
_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_TENANT_ID: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)


def get_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


def set_request_id(value: Optional[str] = None) -> tuple[str, Token[Optional[str]]]:
    rid = (value or "").strip() or uuid.uuid4().hex
    tok = _REQUEST_ID.set(rid)
    return rid, tok


def reset_request_id(token: Token[Optional[str]]) -> None:
    _REQUEST_ID.reset(token)


def get_tenant_id() -> Optional[str]:
    return _TENANT_ID.get()


def set_tenant_id(value: Optional[str]) -> Token[Optional[str]]:
    v = str(value).strip() if value else None
    return _TENANT_ID.set(v or None)


def reset_tenant_id(token: Token[Optional[str]]) -> None:
    _TENANT_ID.reset(token)
