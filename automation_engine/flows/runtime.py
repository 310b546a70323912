from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .interpreter import FlowInterpreter


@dataclass
class EngineRuntime:
    # Core dependencies (injected from automation_engine.main)
    db_manager: Any
    redis_manager: Any

    max_nodes: int
    history_limit: int = 50

    def interpreter(self) -> FlowInterpreter:
        # Built per request so tests/startup can swap db_manager on the runtime.
        publisher = self.redis_manager if getattr(self.redis_manager, "redis_client", None) else None
        return FlowInterpreter(self.db_manager, publisher=publisher, max_nodes=self.max_nodes)
