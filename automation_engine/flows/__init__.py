"""Automation flow interpretation + trigger matching."""

from .conditions import evaluate_condition
from .graph import FlowEdge, FlowGraph, FlowNode, NodeKind, parse_flow_graph
from .interpreter import FlowInterpreter
from .router import create_automation_router
from .runtime import EngineRuntime
from .triggers import match_keyword_automations, match_triggers
from .variables import ExecutionContext, substitute_variables

__all__ = [
    "EngineRuntime",
    "ExecutionContext",
    "FlowEdge",
    "FlowGraph",
    "FlowInterpreter",
    "FlowNode",
    "NodeKind",
    "create_automation_router",
    "evaluate_condition",
    "match_keyword_automations",
    "match_triggers",
    "parse_flow_graph",
    "substitute_variables",
]
