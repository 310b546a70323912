import asyncio
import os
import tempfile

import pytest

# Ensure tests always use SQLite (some environments may export DATABASE_URL).
os.environ.pop("DATABASE_URL", None)
os.environ["REQUIRE_POSTGRES"] = "0"
os.environ["REDIS_URL"] = ""
os.environ.setdefault("DB_PATH", os.path.join(tempfile.mkdtemp(prefix="automation-engine-"), "default.sqlite"))

from automation_engine import main
from automation_engine.db import DatabaseManager


@pytest.fixture
def db_manager(tmp_path, monkeypatch):
    db_path = tmp_path / "db.sqlite"
    dm = DatabaseManager(str(db_path), db_url="")
    asyncio.run(dm.init_db())
    monkeypatch.setattr(main.engine_runtime, "db_manager", dm)
    return dm


@pytest.fixture
def client(db_manager):
    from fastapi.testclient import TestClient
    with TestClient(main.app) as c:
        yield c
