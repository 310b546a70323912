from __future__ import annotations

import logging
from typing import Callable, Optional


class _ContextFilter(logging.Filter):
    def __init__(
        self,
        *,
        request_id_getter: Optional[Callable[[], Optional[str]]] = None,
        tenant_getter: Optional[Callable[[], Optional[str]]] = None,
    ) -> None:
        super().__init__()
        self._request_id_getter = request_id_getter
        self._tenant_getter = tenant_getter

    def filter(self, record: logging.LogRecord) -> bool:
        # Inject defaults so formatters can always reference these fields.
        record.request_id = None
        record.tenant_id = None
        try:
            if self._request_id_getter:
                record.request_id = self._request_id_getter()
        except Exception:
            record.request_id = None
        try:
            if self._tenant_getter:
                record.tenant_id = self._tenant_getter()
        except Exception:
            record.tenant_id = None
        return True


def configure_logging(
    *,
    level: str = "INFO",
    request_id_getter: Optional[Callable[[], Optional[str]]] = None,
    tenant_getter: Optional[Callable[[], Optional[str]]] = None,
) -> None:
    """Configure root logging with consistent contextual fields.

    The filter is attached to the handler as well as the root logger so records
    propagated from child loggers (which skip logger-level filters) still carry
    request_id/tenant_id.
    """
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(lvl)

    ctx_filter = _ContextFilter(
        request_id_getter=request_id_getter,
        tenant_getter=tenant_getter,
    )

    # If something already configured handlers (uvicorn), avoid duplicating them.
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(lvl)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s "
                "request_id=%(request_id)s tenant=%(tenant_id)s "
                "%(message)s"
            )
        )
        handler.addFilter(ctx_filter)
        root.addHandler(handler)

    root.addFilter(ctx_filter)
