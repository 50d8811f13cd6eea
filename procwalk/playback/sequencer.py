"""Decides which narrated step comes next during playback.

The sequencer holds no playback state. Every call takes the current step
position and answers from the graph and the authored step order.

Continuations are found by scanning later step positions in ascending
authored order and taking the first one the graph can reach. Authors lay
steps out in narrative order, so the earliest reachable step stands in for
"the branch that gets there soonest in the story". It is not a weighted
shortest path.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

import logging

from ..diagram import GraphIndex, reachable_from, shortest_path, walk_from
from .steps import StepIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Choice:
    label: str
    target_position: int
    flow_id: str


@dataclass(frozen=True)
class LinearNext:
    target_position: Optional[int] = None
    reaches_end: bool = False
    end_node_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.target_position is None


@dataclass(frozen=True)
class Trail:
    nodes: Tuple[str, ...] = ()
    flows: Tuple[str, ...] = ()


Decision = Union[List[Choice], LinearNext]


class Sequencer:
    def __init__(self, graph: GraphIndex, steps: StepIndex, wrap_around: bool = False):
        self.graph = graph
        self.steps = steps
        self.wrap_around = wrap_around

    def is_gateway_position(self, position: int) -> bool:
        return self.graph.is_gateway(self.steps.node_id_of(position))

    def decide(self, position: int) -> Decision:
        """Choices for a gateway-hosted step, otherwise the linear next step.

        A gateway never falls through to linear advance, even when none of
        its flows leads to a later step.
        """
        if self.is_gateway_position(position):
            return self.compute_choices(position)
        return self.compute_linear_next(position)

    def compute_choices(self, position: int) -> List[Choice]:
        node_id = self.steps.node_id_of(position)
        if not self.graph.is_gateway(node_id):
            return []
        return self.choices_at(node_id, position)

    def choices_at(self, node_id: str, after_position: int) -> List[Choice]:
        """One choice per outgoing flow of ``node_id`` that reaches a later step."""
        choices: List[Choice] = []
        for flow in self.graph.outgoing(node_id):
            reachable = reachable_from(self.graph, flow.target_id)
            target = self._first_step_in(reachable, range(after_position + 1, len(self.steps)))
            if target is None:
                logger.debug("Flow %s from %s leads to no later step", flow.id, node_id)
                continue
            choices.append(
                Choice(
                    label=self.graph.flow_label(flow),
                    target_position=target,
                    flow_id=flow.id,
                )
            )
        return choices

    def compute_linear_next(self, position: int) -> LinearNext:
        """Where playback goes after a non-gateway step.

        Later steps win, then a reachable end event. With ``wrap_around``
        the scan then covers steps up to and including ``position``, so a
        loop back to the current step's own node replays it.
        """
        node_id = self.steps.node_id_of(position)
        if node_id is None:
            return LinearNext()

        reach = walk_from(self.graph, node_id)
        target = self._first_step_in(reach.nodes, range(position + 1, len(self.steps)))
        if target is not None:
            return LinearNext(target_position=target)
        if reach.reaches_end:
            return LinearNext(reaches_end=True, end_node_id=reach.end_node_id)
        if self.wrap_around:
            target = self._first_step_in(reach.nodes, range(0, position + 1))
            if target is not None:
                logger.debug("Wrapping from step %d back to step %d", position, target)
                return LinearNext(target_position=target)
        if position + 1 < len(self.steps):
            logger.debug("No graph path from step %d; using authored order", position)
            return LinearNext(target_position=position + 1)
        return LinearNext()

    def resolve_trail(
        self,
        from_position: int,
        to_position: int,
        via_flow: Optional[str] = None,
    ) -> Trail:
        """Nodes and flows to mark between two steps.

        The origin node is always included; the destination node is not,
        since it becomes the highlighted step. With ``via_flow`` the trail
        leaves the origin through that flow.
        """
        origin = self.steps.node_id_of(from_position)
        destination = self.steps.node_id_of(to_position)
        if origin is None:
            return Trail()
        if destination is None:
            return Trail(nodes=(origin,))
        return self._trail_between(origin, destination, via_flow)

    def trail_to_node(self, from_position: int, node_id: str) -> Trail:
        origin = self.steps.node_id_of(from_position)
        if origin is None:
            return Trail()
        trail = self._trail_between(origin, node_id, None)
        return Trail(nodes=trail.nodes + (node_id,), flows=trail.flows)

    def _trail_between(self, origin: str, destination: str, via_flow: Optional[str]) -> Trail:
        nodes: List[str] = [origin]
        flows: List[str] = []

        start = origin
        flow = self.graph.flow(via_flow) if via_flow else None
        if flow is not None and flow.source_id == origin:
            flows.append(flow.id)
            start = flow.target_id
            if start == destination:
                return Trail(nodes=tuple(nodes), flows=tuple(flows))
            nodes.append(start)

        path = shortest_path(self.graph, start, destination)
        for node_id in path.nodes[:-1]:
            if node_id not in nodes:
                nodes.append(node_id)
        flows.extend(path.flows)
        return Trail(nodes=tuple(nodes), flows=tuple(flows))

    def _first_step_in(self, reachable: Iterable[str], positions: range) -> Optional[int]:
        reachable = set(reachable)
        if not reachable:
            return None
        for position in positions:
            if self.steps.node_id_of(position) in reachable:
                return position
        return None
