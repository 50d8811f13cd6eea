"""Stateful run-loop for branching step playback."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from functools import partial
from typing import Iterable, List, Optional, Tuple, Union

import asyncio
import logging

from .sequencer import Choice, Sequencer, Trail
from .suspension import NO_SELECTION, ChoiceWait, Narrator, Suspension
from .view import ChoiceOption, NullView, PlaybackView

logger = logging.getLogger(__name__)


class Phase(Enum):
    IDLE = "idle"
    PLAYING_STEP = "playing-step"
    AWAITING_CHOICE = "awaiting-choice"
    FINISHED = "finished"


@dataclass(frozen=True)
class PlaybackState:
    phase: Phase = Phase.IDLE
    current_position: int = -1
    visited_nodes: frozenset = field(default_factory=frozenset)
    visited_flows: frozenset = field(default_factory=frozenset)
    pending_choices: Tuple[Choice, ...] = ()


@dataclass(frozen=True)
class PlaybackSnapshot:
    phase: Phase
    current_position: int


@dataclass(frozen=True)
class Started:
    position: int = 0


@dataclass(frozen=True)
class StepCompleted:
    trail: Trail = Trail()


@dataclass(frozen=True)
class ChoicesOffered:
    choices: Tuple[Choice, ...]


@dataclass(frozen=True)
class Advanced:
    target_position: int
    trail: Trail = Trail()


@dataclass(frozen=True)
class Finished:
    trail: Trail = Trail()


@dataclass(frozen=True)
class Reset:
    pass


Event = Union[Started, StepCompleted, ChoicesOffered, Advanced, Finished, Reset]

_ACTIVE = (Phase.PLAYING_STEP, Phase.AWAITING_CHOICE)


def transition(state: PlaybackState, event: Event) -> PlaybackState:
    """Apply one event. Events that do not fit the phase leave it unchanged."""
    if isinstance(event, Reset):
        return PlaybackState()

    if isinstance(event, Started):
        if state.phase in _ACTIVE or event.position < 0:
            return _ignored(state, event)
        return PlaybackState(phase=Phase.PLAYING_STEP, current_position=event.position)

    if isinstance(event, StepCompleted):
        if state.phase is not Phase.PLAYING_STEP:
            return _ignored(state, event)
        return _with_trail(state, event.trail)

    if isinstance(event, ChoicesOffered):
        if state.phase is not Phase.PLAYING_STEP or not event.choices:
            return _ignored(state, event)
        return replace(
            state, phase=Phase.AWAITING_CHOICE, pending_choices=tuple(event.choices)
        )

    if isinstance(event, Advanced):
        if state.phase not in _ACTIVE or event.target_position < 0:
            return _ignored(state, event)
        return replace(
            _with_trail(state, event.trail),
            phase=Phase.PLAYING_STEP,
            current_position=event.target_position,
            pending_choices=(),
        )

    if isinstance(event, Finished):
        if state.phase not in _ACTIVE:
            return _ignored(state, event)
        return replace(
            _with_trail(state, event.trail), phase=Phase.FINISHED, pending_choices=()
        )

    return _ignored(state, event)


def _with_trail(state: PlaybackState, trail: Trail) -> PlaybackState:
    return replace(
        state,
        visited_nodes=state.visited_nodes.union(trail.nodes),
        visited_flows=state.visited_flows.union(trail.flows),
    )


def _ignored(state: PlaybackState, event: Event) -> PlaybackState:
    logger.debug("Ignoring %s in phase %s", type(event).__name__, state.phase.value)
    return state


class PlaybackController:
    """Drives one playback run over a sequencer.

    ``run`` plays continuously; ``step_once`` performs a single completion
    on demand. Both share the same decision functions. ``cancel`` is safe
    from any phase: it stops narration, resolves any pending wait, clears
    all marks, and returns to ``Phase.IDLE``.
    """

    def __init__(
        self,
        sequencer: Sequencer,
        view: Optional[PlaybackView] = None,
        narrator: Optional[Narrator] = None,
        auto_choose_single: bool = False,
    ) -> None:
        self.sequencer = sequencer
        self.view = view or NullView()
        self.narrator = narrator or Narrator()
        self.auto_choose_single = auto_choose_single
        self.state = PlaybackState()
        self._narration: Optional[Suspension] = None
        self._choice_wait: Optional[ChoiceWait] = None
        self._generation = 0
        self._run_generation: Optional[int] = None

    @property
    def steps(self):
        return self.sequencer.steps

    @property
    def running(self) -> bool:
        """True while a run-loop is driving the current generation."""
        return self._run_generation == self._generation

    def snapshot(self) -> PlaybackSnapshot:
        return PlaybackSnapshot(
            phase=self.state.phase, current_position=self.state.current_position
        )

    # ===== Host controls =====

    def start(self) -> bool:
        if self.state.phase in _ACTIVE:
            logger.debug("Playback already active at step %d", self.state.current_position)
            return False
        if self.state.phase is Phase.FINISHED:
            self.reset()
        if not len(self.steps):
            return False
        self._apply(Started(0))
        self._show_current()
        return True

    async def run(self) -> PlaybackSnapshot:
        """Play until the run finishes or is cancelled."""
        if self.running:
            return self.snapshot()
        if self.state.phase not in _ACTIVE and not self.start():
            return self.snapshot()

        generation = self._generation
        self._run_generation = generation
        try:
            while self._generation == generation:
                phase = self.state.phase
                if phase is Phase.PLAYING_STEP:
                    position = self.state.current_position
                    await self._begin_narration().wait()
                    if not self._still_at(generation, Phase.PLAYING_STEP, position):
                        continue
                    self._complete_step()
                elif phase is Phase.AWAITING_CHOICE:
                    wait = self._choice_wait
                    if wait is None:
                        break
                    selection = await wait.wait()
                    if selection is NO_SELECTION:
                        logger.debug("Choice wait ended without a selection")
                else:
                    break
        finally:
            # A cancelled loop must not clear the marker of a newer run.
            if self._run_generation == generation:
                self._run_generation = None
        return self.snapshot()

    async def step_once(self) -> PlaybackSnapshot:
        """Advance by exactly one step completion."""
        phase = self.state.phase
        if phase in (Phase.IDLE, Phase.FINISHED):
            self.start()
        elif phase is Phase.PLAYING_STEP:
            if self.running:
                # The run-loop completes the step once narration resolves.
                self._stop_narration()
                return self.snapshot()
            self._stop_narration()
            self._complete_step()
        else:
            return self.snapshot()

        if self.state.phase is Phase.PLAYING_STEP and not self.running:
            self._begin_narration()
        return self.snapshot()

    def choose(self, index: int) -> bool:
        """Take the published choice at ``index``."""
        if self.state.phase is not Phase.AWAITING_CHOICE:
            return False
        choices = self.state.pending_choices
        if index < 0 or index >= len(choices):
            raise ValueError("Choice index out of range")

        choice = choices[index]
        wait = self._choice_wait
        self._choice_wait = None
        self.view.clear_choices()
        self._take_choice(self.state.current_position, choice)
        if wait is not None:
            wait.select(index)
        if not self.running:
            self._narrate_in_background()
        return True

    def dismiss_choices(self) -> bool:
        """End the run at a choice point without taking a branch."""
        if self.state.phase is not Phase.AWAITING_CHOICE:
            return False
        wait = self._choice_wait
        self._choice_wait = None
        self.view.clear_choices()
        self._finish()
        if wait is not None:
            wait.resolve(NO_SELECTION)
        return True

    def cancel(self) -> None:
        self._generation += 1
        self._stop_narration()
        wait = self._choice_wait
        self._choice_wait = None
        if wait is not None:
            wait.cancel()

        node_id = self.steps.node_id_of(self.state.current_position)
        if node_id:
            self.view.clear_current(node_id)
        self.view.clear_choices()
        self.view.clear_all_visited()
        self.view.show_narration_text(None)
        self._apply(Reset())

    reset = cancel

    # ===== Transitions =====

    def _complete_step(self) -> None:
        position = self.state.current_position
        node_id = self.steps.node_id_of(position)
        self._mark(StepCompleted(Trail(nodes=(node_id,)) if node_id else Trail()))

        decision = self.sequencer.decide(position)
        if isinstance(decision, list):
            if decision:
                self._offer_choices(decision)
            else:
                logger.debug("No branch from step %d leads to another step", position)
                self._finish()
            return

        if decision.target_position is not None:
            trail = self.sequencer.resolve_trail(position, decision.target_position)
            self._advance(decision.target_position, trail)
        elif decision.reaches_end and decision.end_node_id:
            trail = self.sequencer.trail_to_node(position, decision.end_node_id)
            self._finish(trail, pulse=decision.end_node_id)
        else:
            self._finish()

    def _offer_choices(self, choices: List[Choice]) -> None:
        if self.auto_choose_single and len(choices) == 1:
            self._take_choice(self.state.current_position, choices[0])
            return
        self._apply(ChoicesOffered(tuple(choices)))
        self._choice_wait = ChoiceWait(choices)
        self.view.publish_choices(
            [
                ChoiceOption(
                    label=choice.label,
                    target_position=choice.target_position,
                    select=partial(self.choose, index),
                )
                for index, choice in enumerate(choices)
            ]
        )

    def _take_choice(self, origin: int, choice: Choice) -> None:
        trail = self.sequencer.resolve_trail(
            origin, choice.target_position, via_flow=choice.flow_id
        )
        self._advance(choice.target_position, trail)

    def _advance(self, target: int, trail: Trail) -> None:
        old_node = self.steps.node_id_of(self.state.current_position)
        self._mark(Advanced(target, trail))
        if old_node:
            self.view.clear_current(old_node)
        self._show_current()

    def _finish(self, trail: Trail = Trail(), pulse: Optional[str] = None) -> None:
        old_node = self.steps.node_id_of(self.state.current_position)
        self._mark(Finished(trail))
        if old_node:
            self.view.clear_current(old_node)
        if pulse:
            self.view.pulse_end(pulse)
        self.view.show_narration_text(None)

    def _mark(self, event: Event) -> None:
        """Apply ``event`` and render trail marks that are new to this run."""
        previous = self.state
        self._apply(event)
        trail = getattr(event, "trail", None)
        if trail is None:
            return
        _mark_new(self.view, trail.nodes, previous.visited_nodes)
        _mark_new(self.view, trail.flows, previous.visited_flows)

    def _apply(self, event: Event) -> None:
        self.state = transition(self.state, event)

    def _show_current(self) -> None:
        step = self.steps.step_at(self.state.current_position)
        if step is None:
            return
        if step.node_id:
            self.view.highlight_current(step.node_id)
        self.view.show_narration_text(step.description)

    # ===== Narration =====

    def _begin_narration(self) -> Suspension:
        self._stop_narration()
        step = self.steps.step_at(self.state.current_position)
        self._narration = self.narrator.begin(step)
        return self._narration

    def _stop_narration(self) -> None:
        narration = self._narration
        self._narration = None
        if narration is not None:
            narration.cancel()

    def _narrate_in_background(self) -> None:
        if self.state.phase is not Phase.PLAYING_STEP:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self._begin_narration()

    def _still_at(self, generation: int, phase: Phase, position: int) -> bool:
        return (
            self._generation == generation
            and self.state.phase is phase
            and self.state.current_position == position
        )


def _mark_new(view: PlaybackView, element_ids: Iterable[str], seen: frozenset) -> None:
    marked = set(seen)
    for element_id in element_ids:
        if element_id in marked:
            continue
        marked.add(element_id)
        view.mark_visited(element_id)
