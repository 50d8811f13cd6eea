"""Breadth-first search over a GraphIndex."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

from .graph import GraphIndex, ProcessFlow


@dataclass(frozen=True)
class GraphPath:
    nodes: Tuple[str, ...] = ()
    flows: Tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.flows)


EMPTY_PATH = GraphPath()


@dataclass(frozen=True)
class Reach:
    """Nodes reachable from a start node, plus the first end event seen."""

    nodes: frozenset
    end_node_id: Optional[str] = None

    @property
    def reaches_end(self) -> bool:
        return self.end_node_id is not None


def reachable_from(graph: GraphIndex, start_id: str) -> Set[str]:
    """Return every node reachable from ``start_id``, including itself."""
    if start_id not in graph:
        return set()
    seen = {start_id}
    queue = deque([start_id])
    while queue:
        current = queue.popleft()
        for flow in graph.outgoing(current):
            target = flow.target_id
            if target in seen or target not in graph:
                continue
            seen.add(target)
            queue.append(target)
    return seen


def walk_from(graph: GraphIndex, node_id: str) -> Reach:
    """Collect nodes reachable through ``node_id``'s outgoing flows.

    The node itself is only included when a cycle leads back to it.
    """
    seen: Set[str] = set()
    end_node_id: Optional[str] = None
    queue = deque(flow.target_id for flow in graph.outgoing(node_id))
    while queue:
        current = queue.popleft()
        if current in seen or current not in graph:
            continue
        seen.add(current)
        if end_node_id is None and graph.is_end(current):
            end_node_id = current
        for flow in graph.outgoing(current):
            if flow.target_id not in seen:
                queue.append(flow.target_id)
    return Reach(nodes=frozenset(seen), end_node_id=end_node_id)


def shortest_path(graph: GraphIndex, from_id: str, to_id: str) -> GraphPath:
    """Fewest-flows path from ``from_id`` to ``to_id``.

    Ties go to the flow declared first at each node. A node only reaches
    itself through an explicit loop; otherwise ``from_id == to_id`` gives
    an empty path.
    """
    if from_id not in graph or to_id not in graph:
        return EMPTY_PATH

    if from_id == to_id:
        for flow in graph.outgoing(from_id):
            if flow.target_id == from_id:
                return GraphPath(nodes=(from_id, from_id), flows=(flow.id,))

    predecessor: Dict[str, ProcessFlow] = {}
    seen = {from_id}
    queue = deque([from_id])
    while queue:
        current = queue.popleft()
        if current == to_id and current != from_id:
            return _rebuild(predecessor, from_id, to_id)
        for flow in graph.outgoing(current):
            target = flow.target_id
            if target in seen or target not in graph:
                continue
            seen.add(target)
            predecessor[target] = flow
            queue.append(target)
    return EMPTY_PATH


def _rebuild(predecessor: Dict[str, ProcessFlow], from_id: str, to_id: str) -> GraphPath:
    nodes = [to_id]
    flows = []
    current = to_id
    while current != from_id:
        flow = predecessor[current]
        flows.append(flow.id)
        current = flow.source_id
        nodes.append(current)
    nodes.reverse()
    flows.reverse()
    return GraphPath(nodes=tuple(nodes), flows=tuple(flows))
