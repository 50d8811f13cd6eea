"""Read-only adjacency index over a process diagram."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

import logging

logger = logging.getLogger(__name__)


class NodeKind(Enum):
    TASK = "task"
    EVENT = "event"
    GATEWAY_EXCLUSIVE = "gateway-exclusive"
    GATEWAY_PARALLEL = "gateway-parallel"
    GATEWAY_OTHER = "gateway-other"
    END_EVENT = "end-event"
    OTHER = "other"


GATEWAY_KINDS = frozenset(
    {NodeKind.GATEWAY_EXCLUSIVE, NodeKind.GATEWAY_PARALLEL, NodeKind.GATEWAY_OTHER}
)


def classify_type(type_tag: str) -> NodeKind:
    """Map a diagram type tag such as ``bpmn:ExclusiveGateway`` to a kind."""
    name = (type_tag or "").rsplit(":", 1)[-1]
    if name.endswith("Gateway"):
        if name == "ExclusiveGateway":
            return NodeKind.GATEWAY_EXCLUSIVE
        if name == "ParallelGateway":
            return NodeKind.GATEWAY_PARALLEL
        return NodeKind.GATEWAY_OTHER
    if name.endswith("EndEvent"):
        return NodeKind.END_EVENT
    if name.endswith("Event"):
        return NodeKind.EVENT
    if name.endswith("Task") or name.lower() == "task":
        return NodeKind.TASK
    return NodeKind.OTHER


@dataclass(frozen=True)
class ProcessFlow:
    id: str
    source_id: str
    target_id: str
    name: Optional[str] = None


@dataclass(frozen=True)
class ProcessNode:
    id: str
    kind: NodeKind
    name: Optional[str] = None
    type_tag: str = ""
    outgoing: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_gateway(self) -> bool:
        return self.kind in GATEWAY_KINDS

    @property
    def is_end(self) -> bool:
        return self.kind is NodeKind.END_EVENT


class GraphIndex:
    """Node and flow lookups built once per diagram import.

    Unknown ids never raise: ``node`` returns ``None`` and ``outgoing``
    returns an empty list, so callers treat them as dead ends.
    """

    def __init__(self, nodes: Dict[str, ProcessNode], flows: Dict[str, ProcessFlow]):
        self._nodes = dict(nodes)
        self._flows = dict(flows)
        self._outgoing: Dict[str, Tuple[ProcessFlow, ...]] = {}
        for node in self._nodes.values():
            resolved = []
            for flow_id in node.outgoing:
                flow = self._flows.get(flow_id)
                if flow is None:
                    logger.debug("Node %s lists unknown flow %s", node.id, flow_id)
                    continue
                resolved.append(flow)
            self._outgoing[node.id] = tuple(resolved)

    @classmethod
    def build(
        cls, nodes: Iterable[ProcessNode], flows: Iterable[ProcessFlow]
    ) -> "GraphIndex":
        """Index nodes and flows.

        A node that does not declare its outgoing flows gets them from the
        flow list, in the order the flows are given.
        """
        flow_list = list(flows)
        declared: Dict[str, List[str]] = {}
        for flow in flow_list:
            declared.setdefault(flow.source_id, []).append(flow.id)

        node_map: Dict[str, ProcessNode] = {}
        for node in nodes:
            if not node.outgoing and declared.get(node.id):
                node = ProcessNode(
                    id=node.id,
                    kind=node.kind,
                    name=node.name,
                    type_tag=node.type_tag,
                    outgoing=tuple(declared[node.id]),
                )
            node_map[node.id] = node
        return cls(node_map, {flow.id: flow for flow in flow_list})

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def node(self, node_id: str) -> Optional[ProcessNode]:
        return self._nodes.get(node_id)

    def flow(self, flow_id: str) -> Optional[ProcessFlow]:
        return self._flows.get(flow_id)

    def outgoing(self, node_id: str) -> List[ProcessFlow]:
        return list(self._outgoing.get(node_id, ()))

    def flow_label(self, flow: ProcessFlow) -> str:
        if flow.name:
            return flow.name
        target = self.node(flow.target_id)
        if target is not None and target.name:
            return target.name
        return flow.target_id

    def is_gateway(self, node_id: Optional[str]) -> bool:
        node = self.node(node_id) if node_id else None
        return node is not None and node.is_gateway

    def is_end(self, node_id: Optional[str]) -> bool:
        node = self.node(node_id) if node_id else None
        return node is not None and node.is_end
