import uuid


class FakeStore:
    """In-memory stand-in for DatabaseManager used by interpreter tests."""

    def __init__(self, automations=None, contacts=None):
        self.automations = {a["id"]: dict(a) for a in (automations or [])}
        self.contacts = {c["id"]: dict(c) for c in (contacts or [])}
        self.executions = {}
        self.messages = []
        self.runs = []

    async def get_automation(self, automation_id):
        a = self.automations.get(automation_id)
        return dict(a) if a else None

    async def list_active_automations(self, tenant_id):
        return [dict(a) for a in self.automations.values() if a.get("tenant_id") == tenant_id and a.get("is_active")]

    async def record_automation_run(self, automation_id, executed_at):
        a = self.automations[automation_id]
        a["executions_count"] = int(a.get("executions_count") or 0) + 1
        a["last_executed_at"] = executed_at
        self.runs.append(automation_id)

    async def insert_execution(self, record):
        row = dict(record)
        row["id"] = uuid.uuid4().hex
        self.executions[row["id"]] = row
        return dict(row)

    async def update_execution(self, execution_id, fields):
        self.executions[execution_id].update(fields)

    async def list_executions(self, automation_id, tenant_id, limit=50):
        rows = [e for e in self.executions.values() if e["automation_id"] == automation_id and e["tenant_id"] == tenant_id]
        return rows[::-1][:limit]

    async def insert_message(self, record):
        row = dict(record)
        row["id"] = uuid.uuid4().hex
        self.messages.append(row)
        return row

    async def get_contact(self, contact_id):
        c = self.contacts.get(contact_id)
        return dict(c) if c else None


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def publish_execution_event(self, tenant_id, event):
        self.events.append((tenant_id, event))


def node(node_id, node_type, **data):
    return {"id": node_id, "type": node_type, "data": data, "position": {"x": 0, "y": 0}}


def edge(source, target, edge_id=None):
    return {"id": edge_id or f"{source}-{target}", "source": source, "target": target}


def make_automation(nodes, edges, *, automation_id="a1", tenant_id="t1", is_active=True, **extra):
    automation = {
        "id": automation_id,
        "tenant_id": tenant_id,
        "name": "Test automation",
        "is_active": is_active,
        "flow_data": {"nodes": nodes, "edges": edges},
        "executions_count": 0,
        "last_executed_at": None,
        "trigger_type": "manual",
        "trigger_config": {},
    }
    automation.update(extra)
    return automation
