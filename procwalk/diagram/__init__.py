"""Process diagram model and graph search."""

from .bpmn import load_bpmn, parse_bpmn
from .graph import GraphIndex, NodeKind, ProcessFlow, ProcessNode, classify_type
from .reachability import GraphPath, Reach, reachable_from, shortest_path, walk_from

__all__ = [
    "GraphIndex",
    "GraphPath",
    "NodeKind",
    "ProcessFlow",
    "ProcessNode",
    "Reach",
    "classify_type",
    "load_bpmn",
    "parse_bpmn",
    "reachable_from",
    "shortest_path",
    "walk_from",
]
