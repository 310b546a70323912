import asyncio
import logging
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse

from .config import (
    ALLOWED_ORIGINS,
    AUTOMATION_MAX_NODES,
    HEALTH_DB_TIMEOUT_SECONDS,
    LOG_LEVEL,
    LOG_VERBOSE,
)
from .db import DatabaseManager
from .flows import EngineRuntime, create_automation_router
from .observability.context import (
    get_request_id as _get_request_id,
    get_tenant_id as _get_tenant_id,
    reset_request_id as _reset_request_id,
    set_request_id as _set_request_id,
)
from .observability.logging import configure_logging as _configure_logging
from .realtime import RedisManager

_configure_logging(
    level="DEBUG" if LOG_VERBOSE else LOG_LEVEL,
    request_id_getter=_get_request_id,
    tenant_getter=_get_tenant_id,
)
log = logging.getLogger(__name__)

db_manager = DatabaseManager()
redis_manager = RedisManager()
engine_runtime = EngineRuntime(
    db_manager=db_manager,
    redis_manager=redis_manager,
    max_nodes=int(AUTOMATION_MAX_NODES),
)

# FastAPI app
app = FastAPI(default_response_class=ORJSONResponse)
app.include_router(create_automation_router(engine_runtime))


# ── Request context: request_id (for tracing) ──────────────────────
@app.middleware("http")
async def request_id_middleware(request: StarletteRequest, call_next):
    incoming = (request.headers.get("x-request-id") or "").strip()
    rid, tok = _set_request_id(incoming or None)
    try:
        resp: StarletteResponse = await call_next(request)
        resp.headers["X-Request-Id"] = rid
        return resp
    finally:
        _reset_request_id(tok)


# The engine is invoked cross-origin by the dashboard; default to '*'.
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS if ALLOWED_ORIGINS else ["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-request-id"],
)

Instrumentator().instrument(app).expose(app, endpoint="/metrics")


@app.on_event("startup")
async def startup():
    # Fail startup if the store can't be initialized so traffic never reaches a broken instance.
    await asyncio.wait_for(engine_runtime.db_manager.init_db(), timeout=30.0)
    await engine_runtime.redis_manager.connect()
    log.info(
        "Automation engine started db=%s redis=%s max_nodes=%s",
        "postgres" if engine_runtime.db_manager.use_postgres else "sqlite",
        "connected" if engine_runtime.redis_manager.redis_client else "disabled",
        engine_runtime.max_nodes,
    )


@app.on_event("shutdown")
async def shutdown():
    await engine_runtime.redis_manager.close()


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    dm = engine_runtime.db_manager
    db_ok = False
    try:
        db_ok = await asyncio.wait_for(dm.ping(), timeout=HEALTH_DB_TIMEOUT_SECONDS)
    except Exception:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "redis": "connected" if engine_runtime.redis_manager.redis_client else "disconnected",
        "db": {
            "backend": "postgres" if dm.use_postgres else "sqlite",
            "ok": bool(db_ok),
        },
        "engine": {"max_nodes": engine_runtime.max_nodes},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
