from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import InvalidFlow


class NodeKind(str, enum.Enum):
    TRIGGER = "trigger"
    KEYWORD = "keyword"
    START = "start"
    SEND_MESSAGE = "send_message"
    MESSAGE = "message"
    CONDITION = "condition"
    DELAY = "delay"
    ACTION = "action"


START_KINDS = frozenset({NodeKind.TRIGGER, NodeKind.KEYWORD, NodeKind.START})


@dataclass
class FlowNode:
    id: str
    kind: NodeKind
    data: Dict[str, Any] = field(default_factory=dict)
    position: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FlowEdge:
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None


@dataclass
class FlowGraph:
    nodes: List[FlowNode]
    edges: List[FlowEdge]

    def __post_init__(self) -> None:
        self._by_id: Dict[str, FlowNode] = {n.id: n for n in self.nodes}

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        return self._by_id.get(node_id)

    def start_node(self) -> Optional[FlowNode]:
        """First node (in list order) whose kind marks a flow entry point."""
        for node in self.nodes:
            if node.kind in START_KINDS:
                return node
        return None

    def next_node_ids(self, node_id: str) -> List[str]:
        """Targets of outgoing edges, in edge-list order."""
        return [e.target for e in self.edges if e.source == node_id]

    def has_cycle(self, from_node_id: Optional[str] = None) -> bool:
        """Whether a cycle is reachable from `from_node_id` (or anywhere when None).

        Edges pointing at unknown node ids are ignored.
        """
        white, grey, black = 0, 1, 2
        color: Dict[str, int] = {n.id: white for n in self.nodes}
        roots = [from_node_id] if from_node_id is not None else [n.id for n in self.nodes]

        for root in roots:
            if color.get(root, black) != white:
                continue
            # iterative DFS: stack of (node_id, iterator over successors)
            color[root] = grey
            stack = [(root, iter(self.next_node_ids(root)))]
            while stack:
                current, successors = stack[-1]
                advanced = False
                for nxt in successors:
                    state = color.get(nxt)
                    if state is None:
                        continue
                    if state == grey:
                        return True
                    if state == white:
                        color[nxt] = grey
                        stack.append((nxt, iter(self.next_node_ids(nxt))))
                        advanced = True
                        break
                if not advanced:
                    color[current] = black
                    stack.pop()
        return False


def _coerce_kind(raw: Any, node_id: str) -> NodeKind:
    try:
        return NodeKind(str(raw or "").strip())
    except ValueError:
        raise InvalidFlow(f"Unknown node type {raw!r} for node {node_id!r}")


def parse_flow_graph(flow_data: Any) -> FlowGraph:
    """Parse the loosely-typed `flow_data` JSON of an automation.

    Raises InvalidFlow when the payload has no nodes, a node lacks an id,
    node ids collide, or a node type is not part of the flow vocabulary.
    Edges are kept as-is; dangling targets are tolerated here and skipped
    during traversal.
    """
    if not isinstance(flow_data, dict):
        raise InvalidFlow("No flow data found")
    raw_nodes = flow_data.get("nodes")
    if not isinstance(raw_nodes, list) or not raw_nodes:
        raise InvalidFlow("No flow data found")

    nodes: List[FlowNode] = []
    seen: set[str] = set()
    for raw in raw_nodes:
        if not isinstance(raw, dict):
            raise InvalidFlow("Flow node must be an object")
        node_id = str(raw.get("id") or "").strip()
        if not node_id:
            raise InvalidFlow("Flow node is missing an id")
        if node_id in seen:
            raise InvalidFlow(f"Duplicate node id {node_id!r}")
        seen.add(node_id)
        data = raw.get("data")
        position = raw.get("position")
        nodes.append(
            FlowNode(
                id=node_id,
                kind=_coerce_kind(raw.get("type"), node_id),
                data=data if isinstance(data, dict) else {},
                position=position if isinstance(position, dict) else {},
            )
        )

    edges: List[FlowEdge] = []
    raw_edges = flow_data.get("edges")
    for idx, raw in enumerate(raw_edges if isinstance(raw_edges, list) else []):
        if not isinstance(raw, dict):
            continue
        source = str(raw.get("source") or "").strip()
        target = str(raw.get("target") or "").strip()
        if not source or not target:
            continue
        handle = raw.get("sourceHandle")
        edges.append(
            FlowEdge(
                id=str(raw.get("id") or f"e{idx}"),
                source=source,
                target=target,
                source_handle=str(handle) if handle is not None else None,
            )
        )

    return FlowGraph(nodes=nodes, edges=edges)
