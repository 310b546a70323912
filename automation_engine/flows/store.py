from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol


class FlowStore(Protocol):
    """Repository surface the interpreter needs from the record store.

    `DatabaseManager` implements it against SQLite/Postgres; tests use an
    in-memory fake.
    """

    async def get_automation(self, automation_id: str) -> Optional[Dict[str, Any]]: ...

    async def list_active_automations(self, tenant_id: str) -> List[Dict[str, Any]]: ...

    async def record_automation_run(self, automation_id: str, executed_at: str) -> None: ...

    async def insert_execution(self, record: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update_execution(self, execution_id: str, fields: Dict[str, Any]) -> None: ...

    async def list_executions(self, automation_id: str, tenant_id: str, limit: int = 50) -> List[Dict[str, Any]]: ...

    async def insert_message(self, record: Dict[str, Any]) -> Dict[str, Any]: ...

    async def get_contact(self, contact_id: str) -> Optional[Dict[str, Any]]: ...


class EventPublisher(Protocol):
    async def publish_execution_event(self, tenant_id: str, event: Dict[str, Any]) -> None: ...
