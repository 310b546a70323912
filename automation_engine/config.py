import os
from pathlib import Path

from dotenv import load_dotenv

# Absolute paths
ROOT_DIR = Path(__file__).resolve().parent.parent

# Load environment variables early so defaults below can be overridden by a local `.env`.
# On managed platforms the variables are injected directly and this is a no-op.
load_dotenv()

PORT = int(os.getenv("PORT", "8080"))
DB_PATH = os.getenv("DB_PATH") or str(ROOT_DIR / "data" / "automation_engine.db")
DATABASE_URL = os.getenv("DATABASE_URL")  # optional PostgreSQL URL
PG_POOL_MIN = int(os.getenv("PG_POOL_MIN", "1"))
PG_POOL_MAX = int(os.getenv("PG_POOL_MAX", "10"))
REQUIRE_POSTGRES = int(os.getenv("REQUIRE_POSTGRES", "1"))  # when 1 and DATABASE_URL is set, never fallback to SQLite
PG_CONNECT_TIMEOUT_SECONDS = float(os.getenv("PG_CONNECT_TIMEOUT_SECONDS", "10"))
PG_POOL_RETRY_BACKOFF_SECONDS = float(os.getenv("PG_POOL_RETRY_BACKOFF_SECONDS", "15"))
SQLITE_BUSY_TIMEOUT_MS = int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "3000"))
HEALTH_DB_TIMEOUT_SECONDS = float(os.getenv("HEALTH_DB_TIMEOUT_SECONDS", "2"))

REDIS_URL = os.getenv("REDIS_URL", "")
AUTOMATION_EVENTS_CHANNEL_PREFIX = (
    os.getenv("AUTOMATION_EVENTS_CHANNEL_PREFIX", "automation:executions") or "automation:executions"
).strip()

# Upper bound on nodes processed per run; guards against cyclic flows.
AUTOMATION_MAX_NODES = max(1, int(os.getenv("AUTOMATION_MAX_NODES", "50")))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_VERBOSE = os.getenv("LOG_VERBOSE", "0") == "1"

_allowed_origins = os.getenv("ALLOWED_ORIGINS", "*")
ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins.split(",") if o.strip()]
