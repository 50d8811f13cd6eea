"""BPMN 2.0 XML import into a GraphIndex."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Union
import logging
import xml.etree.ElementTree as ET

from ..errors import DiagramError
from .graph import GraphIndex, ProcessFlow, ProcessNode, classify_type

logger = logging.getLogger(__name__)

FLOW_NODE_NAMES = {"task", "subProcess", "callActivity", "transaction"}
FLOW_NODE_SUFFIXES = ("Task", "Event", "Gateway")


def load_bpmn(path: Path) -> GraphIndex:
    try:
        xml_data = Path(path).read_bytes()
    except OSError as exc:
        raise DiagramError(f"Cannot read diagram {path}: {exc}") from exc
    return parse_bpmn(xml_data)


def parse_bpmn(xml_text: Union[str, bytes]) -> GraphIndex:
    if isinstance(xml_text, str):
        xml_text = xml_text.encode("utf-8")
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise DiagramError(f"Malformed diagram XML: {exc}") from exc

    nodes: List[ProcessNode] = []
    flows: List[ProcessFlow] = []
    for element in root.iter():
        name = _local_name(element.tag)
        element_id = element.get("id")
        if not element_id:
            continue
        if name == "sequenceFlow":
            source = element.get("sourceRef")
            target = element.get("targetRef")
            if not source or not target:
                logger.debug("Skipping flow %s without both endpoints", element_id)
                continue
            flows.append(
                ProcessFlow(
                    id=element_id,
                    source_id=source,
                    target_id=target,
                    name=_clean(element.get("name")),
                )
            )
        elif _is_flow_node(name):
            type_tag = "bpmn:" + name[:1].upper() + name[1:]
            nodes.append(
                ProcessNode(
                    id=element_id,
                    kind=classify_type(type_tag),
                    name=_clean(element.get("name")),
                    type_tag=type_tag,
                    outgoing=tuple(_outgoing_refs(element)),
                )
            )

    known_flows: Dict[str, ProcessFlow] = {flow.id: flow for flow in flows}
    ordered: List[ProcessNode] = []
    for node in nodes:
        # <outgoing> refs must agree with the flow's own sourceRef.
        refs = tuple(
            ref for ref in node.outgoing
            if ref in known_flows and known_flows[ref].source_id == node.id
        )
        ordered.append(
            ProcessNode(
                id=node.id,
                kind=node.kind,
                name=node.name,
                type_tag=node.type_tag,
                outgoing=refs,
            )
        )

    graph = GraphIndex.build(ordered, flows)
    logger.debug("Imported diagram with %d nodes and %d flows", len(ordered), len(flows))
    return graph


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    if "}" in tag:
        return tag.rsplit("}", 1)[1]
    return tag.rsplit(":", 1)[-1]


def _is_flow_node(name: str) -> bool:
    if name in FLOW_NODE_NAMES:
        return True
    return name.endswith(FLOW_NODE_SUFFIXES)


def _outgoing_refs(element: ET.Element) -> List[str]:
    refs = []
    for child in element:
        if _local_name(child.tag) == "outgoing" and child.text:
            refs.append(child.text.strip())
    return refs


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    collapsed = " ".join(value.split())
    return collapsed or None
