import asyncio

from automation_engine import main

from .utils import edge, make_automation, node


def _seed(db_manager, automation, contacts=()):
    asyncio.run(db_manager.upsert_automation(automation))
    for c in contacts:
        asyncio.run(db_manager.upsert_contact(c))


def test_execute_sends_message_and_records_execution(db_manager, client):
    _seed(
        db_manager,
        make_automation(
            [node("s", "trigger"), node("m", "send_message", message="Welcome {{contact_name}}!")],
            [edge("s", "m")],
        ),
        contacts=[{"id": "c1", "tenant_id": "t1", "name": "Ana", "phone": "212600000000"}],
    )
    r = client.post("/automation-engine", json={
        "action": "execute",
        "automation_id": "a1",
        "tenant_id": "t1",
        "conversation_id": "conv1",
        "contact_id": "c1",
    })
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["nodes_processed"] == 1
    assert r.headers.get("X-Request-Id")

    msgs = asyncio.run(db_manager.list_messages("conv1"))
    assert len(msgs) == 1
    assert msgs[0]["content"] == "Welcome Ana!"
    assert msgs[0]["status"] == "pending"

    execution = asyncio.run(db_manager.get_execution(body["execution_id"]))
    assert execution["status"] == "completed"
    assert execution["execution_path"] == ["m"]

    automation = asyncio.run(db_manager.get_automation("a1"))
    assert automation["executions_count"] == 1
    assert automation["last_executed_at"] == execution["completed_at"]


def test_execute_inactive_returns_soft_failure(db_manager, client):
    _seed(db_manager, make_automation([node("s", "start")], [], is_active=False))
    r = client.post("/automation-engine", json={"action": "execute", "automation_id": "a1", "tenant_id": "t1"})
    assert r.status_code == 200
    assert r.json() == {"success": False, "message": "Automation is not active"}
    assert asyncio.run(db_manager.list_executions("a1", "t1")) == []


def test_execute_unknown_automation_is_500(db_manager, client):
    r = client.post("/automation-engine", json={"action": "execute", "automation_id": "missing", "tenant_id": "t1"})
    assert r.status_code == 500
    assert r.json() == {"error": "Automation not found"}


def test_execute_without_start_node_is_500(db_manager, client):
    _seed(db_manager, make_automation([node("m", "send_message", message="x")], []))
    r = client.post("/automation-engine", json={"action": "execute", "automation_id": "a1"})
    assert r.status_code == 500
    assert r.json() == {"error": "No start node found"}


def test_execute_requires_automation_id(client):
    r = client.post("/automation-engine", json={"action": "execute", "tenant_id": "t1"})
    assert r.status_code == 400


def test_store_failure_is_reported_as_500(db_manager, client, monkeypatch):
    async def broken(automation_id):
        raise ConnectionError("store unreachable")

    monkeypatch.setattr(db_manager, "get_automation", broken)
    r = client.post("/automation-engine", json={"action": "execute", "automation_id": "a1"})
    assert r.status_code == 500
    assert r.json() == {"error": "store unreachable"}


def test_trigger_match(db_manager, client):
    _seed(db_manager, make_automation(
        [node("s", "keyword")], [], automation_id="cancel-flow",
        trigger_type="keyword", trigger_config={"keywords": ["cancel"]},
    ))
    _seed(db_manager, make_automation(
        [node("s", "keyword")], [], automation_id="price-flow",
        trigger_type="keyword", trigger_config={"keywords": ["price"]},
    ))
    r = client.post("/automation-engine", json={
        "action": "trigger_match",
        "tenant_id": "t1",
        "trigger_data": {"message_content": "please CANCEL my order"},
    })
    assert r.status_code == 200
    assert r.json() == {"matched_automations": ["cancel-flow"]}
    # matching never executes
    assert asyncio.run(db_manager.list_executions("cancel-flow", "t1")) == []


def test_test_action_is_a_dry_run(db_manager, client):
    _seed(db_manager, make_automation(
        [node("s", "trigger"), node("m", "send_message", message="hi")], [edge("s", "m")],
    ))
    r = client.post("/automation-engine", json={"action": "test", "automation_id": "a1"})
    assert r.status_code == 200
    body = r.json()
    assert body["dry_run"] is True
    assert body["nodes_processed"] == 1
    assert asyncio.run(db_manager.list_executions("a1", "t1")) == []


def test_history_lists_latest_executions(db_manager, client):
    _seed(db_manager, make_automation([node("s", "start"), node("d", "delay")], [edge("s", "d")]))
    for _ in range(2):
        client.post("/automation-engine", json={"action": "execute", "automation_id": "a1", "tenant_id": "t1"})
    r = client.post("/automation-engine", json={"action": "history", "automation_id": "a1", "tenant_id": "t1"})
    assert r.status_code == 200
    executions = r.json()["executions"]
    assert len(executions) == 2
    assert all(e["status"] == "completed" for e in executions)
    assert executions[0]["created_at"] >= executions[1]["created_at"]


def test_invalid_action_is_400(client):
    r = client.post("/automation-engine", json={"action": "explode"})
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid action"}


def test_malformed_body_is_400(client):
    r = client.post("/automation-engine", content=b"{not json", headers={"content-type": "application/json"})
    assert r.status_code == 400


def test_cors_preflight(client):
    r = client.options(
        "/automation-engine",
        headers={"Origin": "https://dashboard.example.com", "Access-Control-Request-Method": "POST"},
    )
    assert r.status_code == 200
    assert r.headers.get("access-control-allow-origin") == "*"


def test_health_reports_sqlite(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["db"] == {"backend": "sqlite", "ok": True}
    assert body["engine"]["max_nodes"] == main.engine_runtime.max_nodes
