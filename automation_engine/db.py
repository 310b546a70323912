import asyncio
import json
import logging
import re
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import aiosqlite
import asyncpg

from .config import (
    DATABASE_URL,
    DB_PATH,
    PG_CONNECT_TIMEOUT_SECONDS,
    PG_POOL_MAX,
    PG_POOL_MIN,
    PG_POOL_RETRY_BACKOFF_SECONDS,
    REQUIRE_POSTGRES,
    SQLITE_BUSY_TIMEOUT_MS,
)
from .errors import StoreUnavailable

log = logging.getLogger(__name__)


def _normalize_db_url(db_url: str | None) -> str | None:
    # Some platforms/tools provide SQLAlchemy-style URLs like
    # "postgresql+asyncpg://..." which asyncpg does NOT accept.
    raw_url = (db_url or "").strip() or None
    if not raw_url:
        return None
    for prefix in ("postgresql+asyncpg://", "postgres+asyncpg://", "postgresql+psycopg://", "postgresql+psycopg2://"):
        if raw_url.startswith(prefix):
            raw_url = raw_url.replace(prefix, "postgresql://", 1)
    try:
        scheme = (urlparse(raw_url).scheme or "").lower()
    except Exception:
        scheme = ""
    if scheme not in ("postgresql", "postgres"):
        return None
    return raw_url


def _db_url_summary(url: str) -> str:
    # Avoid leaking credentials in logs. Only log basic routing info.
    try:
        p = urlparse(url)
        dbname = (p.path or "").lstrip("/") or None
        return f"{p.scheme}://{p.username or '?'}@{p.hostname or '?'}:{p.port or '?'}{('/' + dbname) if dbname else ''} (password={'set' if p.password else 'missing'})"
    except Exception:
        return "unparseable"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DatabaseManager:
    """Record store for automations, executions, messages and contacts (SQLite or PostgreSQL)."""

    def __init__(self, db_path: str | None = None, db_url: str | None = None):
        self.db_url = _normalize_db_url(db_url if db_url is not None else DATABASE_URL)
        self.db_path = db_path or DB_PATH
        self.use_postgres = bool(self.db_url)
        if not self.use_postgres:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._pool: Optional[asyncpg.pool.Pool] = None
        # Pool creation can be slow/fail on cold start. Protect with a lock and add backoff
        # so every request doesn't stampede the DB.
        self._pool_lock = asyncio.Lock()
        self._pool_failed_until: float = 0.0
        self._pool_last_error: Optional[BaseException] = None

        # Writable columns per table (ids/created_at are set here, not by callers)
        self.automation_columns = {
            "tenant_id",
            "name",
            "description",
            "is_active",
            "flow_data",
            "executions_count",
            "last_executed_at",
            "trigger_type",
            "trigger_config",
            "created_by",
            "updated_at",
        }
        self.execution_columns = {
            "automation_id",
            "tenant_id",
            "conversation_id",
            "contact_id",
            "trigger_data",
            "status",
            "started_at",
            "completed_at",
            "current_node_id",
            "execution_path",
            "error_message",
        }
        self.message_columns = {
            "tenant_id",
            "conversation_id",
            "contact_id",
            "direction",
            "message_type",
            "content",
            "media_url",
            "status",
            "whatsapp_message_id",
        }
        self.contact_columns = {
            "tenant_id",
            "name",
            "phone",
            "email",
            "tags",
            "attributes",
        }
        # Columns holding JSON documents (stored as TEXT in both backends)
        self.json_columns = {"flow_data", "trigger_config", "trigger_data", "execution_path", "tags", "attributes"}

    async def _get_pool(self):
        if self._pool:
            return self._pool
        if not self.db_url:
            return None

        # Fast-fail during backoff windows to avoid repeated slow connection attempts.
        now = time.time()
        if self._pool_failed_until and now < self._pool_failed_until:
            remaining = max(0.0, self._pool_failed_until - now)
            last = type(self._pool_last_error).__name__ if self._pool_last_error else "unknown"
            raise StoreUnavailable(f"Postgres pool unavailable (retry in ~{remaining:.0f}s; last_error={last})")

        async with self._pool_lock:
            if self._pool:
                return self._pool
            try:
                self._pool = await asyncpg.create_pool(
                    self.db_url,
                    min_size=PG_POOL_MIN,
                    max_size=PG_POOL_MAX,
                    timeout=float(PG_CONNECT_TIMEOUT_SECONDS),
                    # PgBouncer (transaction pooling) + prepared statements don't mix
                    statement_cache_size=0,
                    max_inactive_connection_lifetime=60.0,
                )
                self._pool_last_error = None
                self._pool_failed_until = 0.0
            except Exception as exc:
                self._pool_last_error = exc
                self._pool_failed_until = time.time() + float(PG_POOL_RETRY_BACKOFF_SECONDS)
                log.error(
                    "Postgres pool creation failed (will back off %ss). db=%s err=%s",
                    float(PG_POOL_RETRY_BACKOFF_SECONDS),
                    _db_url_summary(self.db_url or ""),
                    exc,
                )
                if REQUIRE_POSTGRES:
                    # Explicitly require Postgres: surface error and do not silently fallback
                    raise StoreUnavailable(f"Postgres pool unavailable: {exc}") from exc
                log.warning("Falling back to SQLite at %s", self.db_path)
                self.use_postgres = False
                self._pool = None

        return self._pool

    def _convert(self, query: str) -> str:
        """Convert SQLite style placeholders to asyncpg numbered ones."""
        if not self.use_postgres:
            return query

        idx = 1

        def repl(match):
            nonlocal idx
            rep = f"${idx}"
            idx += 1
            return rep

        return re.sub(r"\?", repl, query)

    # ── basic connection helper ──
    @asynccontextmanager
    async def _conn(self):
        if self.use_postgres:
            pool = await self._get_pool()
            if pool:
                async with pool.acquire() as conn:
                    yield conn
                return
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        # Keep lock waits bounded so requests don't hang indefinitely.
        timeout_s = max(0.1, float(SQLITE_BUSY_TIMEOUT_MS) / 1000.0)
        async with aiosqlite.connect(self.db_path, timeout=timeout_s) as db:
            db.row_factory = aiosqlite.Row
            await db.execute(f"PRAGMA busy_timeout = {int(SQLITE_BUSY_TIMEOUT_MS)}")
            yield db

    async def _execute(self, query: str, params: tuple) -> None:
        async with self._conn() as db:
            q = self._convert(query)
            if self.use_postgres:
                await db.execute(q, *params)
            else:
                await db.execute(q, params)
                await db.commit()

    async def _fetchone(self, query: str, params: tuple) -> Optional[dict]:
        async with self._conn() as db:
            q = self._convert(query)
            if self.use_postgres:
                row = await db.fetchrow(q, *params)
            else:
                cur = await db.execute(q, params)
                row = await cur.fetchone()
            return self._decode(dict(row)) if row else None

    async def _fetchall(self, query: str, params: tuple) -> List[dict]:
        async with self._conn() as db:
            q = self._convert(query)
            if self.use_postgres:
                rows = await db.fetch(q, *params)
            else:
                cur = await db.execute(q, params)
                rows = await cur.fetchall()
            return [self._decode(dict(r)) for r in rows or []]

    def _encode(self, column: str, value: Any) -> Any:
        if column in self.json_columns and value is not None and not isinstance(value, str):
            return json.dumps(value)
        if column == "is_active" and value is not None:
            return 1 if bool(value) else 0
        return value

    def _decode(self, row: dict) -> dict:
        for col in self.json_columns:
            if isinstance(row.get(col), str):
                try:
                    row[col] = json.loads(row[col]) if row[col] else None
                except ValueError:
                    log.warning("Undecodable JSON in column %s (id=%s)", col, row.get("id"))
        if "is_active" in row and row["is_active"] is not None:
            row["is_active"] = bool(row["is_active"])
        return row

    async def _insert(self, table: str, allowed: set, record: Dict[str, Any]) -> dict:
        row = {k: self._encode(k, v) for k, v in (record or {}).items() if k in allowed}
        row["id"] = str(record.get("id") or uuid.uuid4())
        row["created_at"] = _now_iso()
        cols = list(row.keys())
        query = f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})"
        await self._execute(query, tuple(row[c] for c in cols))
        return self._decode(dict(row))

    async def ping(self) -> bool:
        """Lightweight DB connectivity check (used by /health)."""
        try:
            row = await self._fetchone("SELECT 1 AS ok", ())
            return bool(row and row.get("ok"))
        except Exception:
            return False

    # ── schema ──
    async def init_db(self):
        # Keep schema compatible with both SQLite and Postgres; timestamps are ISO-8601 TEXT
        # and JSON documents are TEXT so both backends round-trip them the same way.
        script = """
            CREATE TABLE IF NOT EXISTS automations (
                id                TEXT PRIMARY KEY,
                tenant_id         TEXT NOT NULL,
                name              TEXT NOT NULL DEFAULT '',
                description       TEXT,
                is_active         INTEGER DEFAULT 0,
                flow_data         TEXT,
                executions_count  INTEGER DEFAULT 0,
                last_executed_at  TEXT,
                trigger_type      TEXT NOT NULL DEFAULT 'manual',
                trigger_config    TEXT,
                created_by        TEXT,
                created_at        TEXT,
                updated_at        TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_automations_tenant_active
                ON automations (tenant_id, is_active);

            CREATE TABLE IF NOT EXISTS automation_executions (
                id               TEXT PRIMARY KEY,
                automation_id    TEXT NOT NULL,
                tenant_id        TEXT NOT NULL,
                conversation_id  TEXT,
                contact_id       TEXT,
                trigger_data     TEXT,
                status           TEXT DEFAULT 'running',
                started_at       TEXT,
                completed_at     TEXT,
                current_node_id  TEXT,
                execution_path   TEXT,
                error_message    TEXT,
                created_at       TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_executions_automation
                ON automation_executions (automation_id, tenant_id, created_at);

            CREATE TABLE IF NOT EXISTS messages (
                id                   TEXT PRIMARY KEY,
                tenant_id            TEXT NOT NULL,
                conversation_id      TEXT NOT NULL,
                contact_id           TEXT NOT NULL,
                direction            TEXT NOT NULL,
                message_type         TEXT DEFAULT 'text',
                content              TEXT,
                media_url            TEXT,
                status               TEXT DEFAULT 'pending',
                whatsapp_message_id  TEXT,
                created_at           TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_messages_conversation
                ON messages (conversation_id, created_at);

            CREATE TABLE IF NOT EXISTS contacts (
                id          TEXT PRIMARY KEY,
                tenant_id   TEXT NOT NULL,
                name        TEXT,
                phone       TEXT NOT NULL,
                email       TEXT,
                tags        TEXT,
                attributes  TEXT,
                created_at  TEXT
            );
            """
        async with self._conn() as db:
            if self.use_postgres:
                statements = [s.strip() for s in script.split(";") if s and s.strip()]
                for stmt in statements:
                    await db.execute(stmt)
            else:
                await db.executescript(script)
                await db.commit()

    # ── automations ──
    async def upsert_automation(self, automation: Dict[str, Any]) -> dict:
        """Insert or update an automation row.

        Authoring lives in the dashboard; the engine only calls this from test/seed setup.
        """
        aid = str(automation.get("id") or uuid.uuid4())
        existing = await self.get_automation(aid)
        if existing:
            fields = {k: v for k, v in automation.items() if k in self.automation_columns}
            fields["updated_at"] = _now_iso()
            cols = list(fields.keys())
            query = f"UPDATE automations SET {', '.join(c + ' = ?' for c in cols)} WHERE id = ?"
            await self._execute(query, tuple(self._encode(c, fields[c]) for c in cols) + (aid,))
            return await self.get_automation(aid)
        record = dict(automation)
        record["id"] = aid
        record.setdefault("executions_count", 0)
        await self._insert("automations", self.automation_columns, record)
        return await self.get_automation(aid)

    async def get_automation(self, automation_id: str) -> Optional[dict]:
        return await self._fetchone("SELECT * FROM automations WHERE id = ?", (str(automation_id),))

    async def list_active_automations(self, tenant_id: str) -> List[dict]:
        return await self._fetchall(
            "SELECT * FROM automations WHERE tenant_id = ? AND is_active = 1 ORDER BY created_at, id",
            (str(tenant_id),),
        )

    async def record_automation_run(self, automation_id: str, executed_at: str) -> None:
        await self._execute(
            "UPDATE automations SET executions_count = COALESCE(executions_count, 0) + 1, last_executed_at = ? WHERE id = ?",
            (executed_at, str(automation_id)),
        )

    # ── executions ──
    async def insert_execution(self, record: Dict[str, Any]) -> dict:
        return await self._insert("automation_executions", self.execution_columns, record)

    async def update_execution(self, execution_id: str, fields: Dict[str, Any]) -> None:
        cols = [k for k in (fields or {}) if k in self.execution_columns]
        if not cols or not execution_id:
            return
        query = f"UPDATE automation_executions SET {', '.join(c + ' = ?' for c in cols)} WHERE id = ?"
        await self._execute(query, tuple(self._encode(c, fields[c]) for c in cols) + (str(execution_id),))

    async def get_execution(self, execution_id: str) -> Optional[dict]:
        return await self._fetchone("SELECT * FROM automation_executions WHERE id = ?", (str(execution_id),))

    async def list_executions(self, automation_id: str, tenant_id: str, limit: int = 50) -> List[dict]:
        return await self._fetchall(
            "SELECT * FROM automation_executions WHERE automation_id = ? AND tenant_id = ? "
            "ORDER BY created_at DESC LIMIT ?",
            (str(automation_id), str(tenant_id), int(limit)),
        )

    # ── messages ──
    async def insert_message(self, record: Dict[str, Any]) -> dict:
        return await self._insert("messages", self.message_columns, record)

    async def list_messages(self, conversation_id: str) -> List[dict]:
        """Messages of a conversation, oldest first (test/seed helper)."""
        return await self._fetchall(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY created_at, id",
            (str(conversation_id),),
        )

    # ── contacts ──
    async def upsert_contact(self, contact: Dict[str, Any]) -> dict:
        """Replace a contact row (test/seed helper; the engine only reads contacts)."""
        cid = str(contact.get("id") or uuid.uuid4())
        await self._execute("DELETE FROM contacts WHERE id = ?", (cid,))
        record = dict(contact)
        record["id"] = cid
        return await self._insert("contacts", self.contact_columns, record)

    async def get_contact(self, contact_id: str) -> Optional[dict]:
        return await self._fetchone("SELECT * FROM contacts WHERE id = ?", (str(contact_id),))
