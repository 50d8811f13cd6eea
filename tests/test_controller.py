import asyncio
import sys
from pathlib import Path
import unittest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from procwalk.diagram.graph import GraphIndex, ProcessFlow, ProcessNode, classify_type
from procwalk.playback.controller import (
    Advanced,
    ChoicesOffered,
    Finished,
    Phase,
    PlaybackController,
    PlaybackState,
    Reset,
    Started,
    transition,
)
from procwalk.playback.sequencer import Choice, Sequencer, Trail
from procwalk.playback.steps import Step, StepIndex
from procwalk.playback.suspension import AudioPlayer, Narrator
from procwalk.playback.view import PlaybackView


def build_graph(types, edges):
    nodes = [
        ProcessNode(id=node_id, kind=classify_type(tag), name=node_id, type_tag=tag)
        for node_id, tag in types.items()
    ]
    flows = [
        ProcessFlow(id=flow_id, source_id=source, target_id=target)
        for flow_id, source, target in edges
    ]
    return GraphIndex.build(nodes, flows)


def build_steps(*node_ids, duration_ms=1, audio_file=None):
    return StepIndex(
        [
            Step(
                id=f"s{i}",
                position=i,
                node_id=node_id,
                duration_ms=duration_ms,
                label=node_id,
                description=f"About {node_id}",
                audio_file=audio_file,
            )
            for i, node_id in enumerate(node_ids)
        ]
    )


def linear_graph():
    return build_graph(
        {"A": "Task", "B": "Task", "C": "Task"},
        [("f1", "A", "B"), ("f2", "B", "C")],
    )


def branching_graph():
    return build_graph(
        {
            "A": "Task",
            "G": "bpmn:ExclusiveGateway",
            "B": "Task",
            "C": "Task",
            "End": "bpmn:EndEvent",
        },
        [
            ("f1", "A", "G"),
            ("fB", "G", "B"),
            ("fC", "G", "C"),
            ("b_end", "B", "End"),
            ("c_end", "C", "End"),
        ],
    )


class RecordingView(PlaybackView):
    def __init__(self):
        self.calls = []
        self.choices = []

    def highlight_current(self, node_id):
        self.calls.append(("highlight", node_id))

    def clear_current(self, node_id):
        self.calls.append(("clear", node_id))

    def mark_visited(self, element_id):
        self.calls.append(("visited", element_id))

    def clear_all_visited(self):
        self.calls.append(("clear_visited",))

    def publish_choices(self, options):
        self.choices = list(options)
        self.calls.append(("choices", tuple(option.label for option in options)))

    def clear_choices(self):
        self.choices = []
        self.calls.append(("clear_choices",))

    def show_narration_text(self, text):
        self.calls.append(("text", text))

    def pulse_end(self, node_id):
        self.calls.append(("pulse", node_id))

    def visited(self):
        return [call[1] for call in self.calls if call[0] == "visited"]


class FailingPlayer(AudioPlayer):
    async def play(self, path):
        raise RuntimeError("device unavailable")

    def stop(self):
        pass


class HangingPlayer(AudioPlayer):
    def __init__(self):
        self.started = asyncio.Event()
        self.stopped = False
        self._release = asyncio.Event()

    async def play(self, path):
        self.started.set()
        await self._release.wait()

    def stop(self):
        self.stopped = True
        self._release.set()


async def wait_until(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


class TestTransition(unittest.TestCase):
    def test_reset_returns_to_idle_from_any_phase(self):
        state = PlaybackState(
            phase=Phase.AWAITING_CHOICE,
            current_position=2,
            visited_nodes=frozenset({"A"}),
            pending_choices=(Choice("B", 3, "fB"),),
        )
        self.assertEqual(transition(state, Reset()), PlaybackState())

    def test_start_only_from_inactive_phases(self):
        started = transition(PlaybackState(), Started(0))
        self.assertEqual(started.phase, Phase.PLAYING_STEP)
        self.assertEqual(started.current_position, 0)
        self.assertIs(transition(started, Started(0)), started)

    def test_events_outside_their_phase_are_ignored(self):
        idle = PlaybackState()
        self.assertIs(transition(idle, ChoicesOffered((Choice("B", 1, "fB"),))), idle)
        self.assertIs(transition(idle, Finished()), idle)
        self.assertIs(transition(idle, Advanced(1)), idle)

    def test_advance_from_choice_clears_pending_and_adds_trail(self):
        state = PlaybackState(
            phase=Phase.AWAITING_CHOICE,
            current_position=1,
            visited_nodes=frozenset({"A"}),
            pending_choices=(Choice("B", 2, "fB"),),
        )
        advanced = transition(state, Advanced(2, Trail(nodes=("G",), flows=("fB",))))
        self.assertEqual(advanced.phase, Phase.PLAYING_STEP)
        self.assertEqual(advanced.current_position, 2)
        self.assertEqual(advanced.pending_choices, ())
        self.assertEqual(advanced.visited_nodes, frozenset({"A", "G"}))
        self.assertEqual(advanced.visited_flows, frozenset({"fB"}))


class TestManualStepping(unittest.IsolatedAsyncioTestCase):
    async def test_linear_chain_runs_to_finished(self):
        view = RecordingView()
        controller = PlaybackController(
            Sequencer(linear_graph(), build_steps("A", "B", "C")), view
        )

        snapshot = await controller.step_once()
        self.assertEqual((snapshot.phase, snapshot.current_position), (Phase.PLAYING_STEP, 0))
        self.assertEqual((await controller.step_once()).current_position, 1)
        self.assertEqual((await controller.step_once()).current_position, 2)
        snapshot = await controller.step_once()

        self.assertEqual(snapshot.phase, Phase.FINISHED)
        self.assertEqual(view.visited(), ["A", "f1", "B", "f2", "C"])
        self.assertEqual(controller.state.visited_nodes, frozenset({"A", "B", "C"}))
        controller.cancel()

    async def test_trail_is_marked_before_destination_highlight(self):
        view = RecordingView()
        controller = PlaybackController(
            Sequencer(linear_graph(), build_steps("A", "C")), view
        )
        await controller.step_once()
        await controller.step_once()

        highlight = view.calls.index(("highlight", "C"))
        self.assertLess(view.calls.index(("visited", "f1")), highlight)
        self.assertLess(view.calls.index(("visited", "B")), highlight)
        self.assertLess(view.calls.index(("visited", "f2")), highlight)
        self.assertLess(view.calls.index(("clear", "A")), highlight)
        controller.cancel()

    async def test_start_is_noop_while_active(self):
        controller = PlaybackController(Sequencer(linear_graph(), build_steps("A", "B")))
        self.assertTrue(controller.start())
        state = controller.state
        self.assertFalse(controller.start())
        self.assertIs(controller.state, state)

    async def test_start_with_no_steps_stays_idle(self):
        controller = PlaybackController(Sequencer(linear_graph(), StepIndex([])))
        self.assertFalse(controller.start())
        self.assertEqual(controller.snapshot().phase, Phase.IDLE)
        self.assertEqual(controller.snapshot().current_position, -1)

    async def test_restart_after_finish_clears_trail(self):
        view = RecordingView()
        controller = PlaybackController(Sequencer(linear_graph(), build_steps("A")), view)
        await controller.step_once()
        await controller.step_once()
        self.assertEqual(controller.state.phase, Phase.FINISHED)

        self.assertTrue(controller.start())
        self.assertEqual(controller.state.phase, Phase.PLAYING_STEP)
        self.assertEqual(controller.state.visited_nodes, frozenset())
        self.assertIn(("clear_visited",), view.calls)
        controller.cancel()

    async def test_gateway_with_single_live_branch(self):
        graph = build_graph(
            {"A": "Task", "G": "bpmn:ExclusiveGateway", "End": "bpmn:EndEvent", "D": "Task"},
            [("f1", "A", "G"), ("to_end", "G", "End"), ("to_d", "G", "D")],
        )
        view = RecordingView()
        controller = PlaybackController(Sequencer(graph, build_steps("A", "G", "D")), view)
        await controller.step_once()
        await controller.step_once()
        await controller.step_once()

        self.assertEqual(controller.state.phase, Phase.AWAITING_CHOICE)
        self.assertEqual([option.label for option in view.choices], ["D"])
        self.assertTrue(view.choices[0].select())
        self.assertEqual(controller.snapshot().phase, Phase.PLAYING_STEP)
        self.assertEqual(controller.snapshot().current_position, 2)
        self.assertIn("to_d", controller.state.visited_flows)
        self.assertNotIn("to_end", controller.state.visited_flows)
        controller.cancel()

    async def test_auto_choose_single_skips_the_prompt(self):
        graph = build_graph(
            {"A": "Task", "G": "bpmn:ExclusiveGateway", "End": "bpmn:EndEvent", "D": "Task"},
            [("f1", "A", "G"), ("to_end", "G", "End"), ("to_d", "G", "D")],
        )
        view = RecordingView()
        controller = PlaybackController(
            Sequencer(graph, build_steps("A", "G", "D")), view, auto_choose_single=True
        )
        for _ in range(3):
            await controller.step_once()

        self.assertEqual(controller.snapshot().phase, Phase.PLAYING_STEP)
        self.assertEqual(controller.snapshot().current_position, 2)
        self.assertFalse([call for call in view.calls if call[0] == "choices"])
        controller.cancel()

    async def test_gateway_without_live_branches_finishes(self):
        graph = build_graph(
            {"G": "bpmn:ExclusiveGateway", "X": "Task", "B": "Task"},
            [("f1", "G", "X")],
        )
        controller = PlaybackController(Sequencer(graph, build_steps("G", "B")))
        await controller.step_once()
        snapshot = await controller.step_once()
        self.assertEqual(snapshot.phase, Phase.FINISHED)
        self.assertEqual(snapshot.current_position, 0)

    async def test_choose_outside_choice_phase(self):
        controller = PlaybackController(Sequencer(linear_graph(), build_steps("A", "B")))
        self.assertFalse(controller.choose(0))
        self.assertFalse(controller.dismiss_choices())


class TestContinuousPlayback(unittest.IsolatedAsyncioTestCase):
    async def test_run_plays_linear_chain(self):
        view = RecordingView()
        controller = PlaybackController(
            Sequencer(linear_graph(), build_steps("A", "B", "C")), view
        )
        snapshot = await asyncio.wait_for(controller.run(), 1)

        self.assertEqual(snapshot.phase, Phase.FINISHED)
        self.assertEqual(snapshot.current_position, 2)
        self.assertEqual(
            [call[1] for call in view.calls if call[0] == "highlight"], ["A", "B", "C"]
        )
        self.assertFalse(controller.running)

    async def test_run_right_after_cancel_plays_again(self):
        view = RecordingView()
        controller = PlaybackController(
            Sequencer(linear_graph(), build_steps("A", "B", "C", duration_ms=20)), view
        )
        first = asyncio.create_task(controller.run())
        await wait_until(lambda: controller.running)

        controller.cancel()
        self.assertFalse(controller.running)
        snapshot = await asyncio.wait_for(controller.run(), 1)
        await asyncio.wait_for(first, 1)

        self.assertEqual(snapshot.phase, Phase.FINISHED)
        self.assertEqual(snapshot.current_position, 2)
        self.assertFalse(controller.running)
        highlights = [call[1] for call in view.calls if call[0] == "highlight"]
        self.assertEqual(highlights[-3:], ["A", "B", "C"])

    async def test_choice_selection_continues_run(self):
        view = RecordingView()
        controller = PlaybackController(
            Sequencer(branching_graph(), build_steps("A", "G", "B", "C")), view
        )
        task = asyncio.create_task(controller.run())
        await wait_until(lambda: controller.state.phase is Phase.AWAITING_CHOICE)

        self.assertEqual([option.label for option in view.choices], ["B", "C"])
        self.assertEqual([option.target_position for option in view.choices], [2, 3])
        view.choices[1].select()
        snapshot = await asyncio.wait_for(task, 1)

        self.assertEqual(snapshot.phase, Phase.FINISHED)
        self.assertEqual(snapshot.current_position, 3)
        self.assertIn("fC", controller.state.visited_flows)
        self.assertNotIn("fB", controller.state.visited_flows)
        self.assertIn("End", controller.state.visited_nodes)
        self.assertIn(("pulse", "End"), view.calls)
        self.assertEqual(len(view.visited()), len(set(view.visited())))

    async def test_cancel_during_choice_returns_to_idle(self):
        view = RecordingView()
        controller = PlaybackController(
            Sequencer(branching_graph(), build_steps("A", "G", "B", "C")), view
        )
        task = asyncio.create_task(controller.run())
        await wait_until(lambda: controller.state.phase is Phase.AWAITING_CHOICE)

        controller.cancel()
        snapshot = await asyncio.wait_for(task, 1)

        self.assertEqual(snapshot.phase, Phase.IDLE)
        self.assertEqual(snapshot.current_position, -1)
        self.assertEqual(controller.state.visited_nodes, frozenset())
        self.assertEqual(controller.state.visited_flows, frozenset())
        self.assertIn(("clear", "G"), view.calls)
        self.assertIn(("clear_visited",), view.calls)
        self.assertFalse(controller.choose(0))

    async def test_dismissing_choices_finishes_run(self):
        view = RecordingView()
        controller = PlaybackController(
            Sequencer(branching_graph(), build_steps("A", "G", "B", "C")), view
        )
        task = asyncio.create_task(controller.run())
        await wait_until(lambda: controller.state.phase is Phase.AWAITING_CHOICE)

        self.assertTrue(controller.dismiss_choices())
        snapshot = await asyncio.wait_for(task, 1)
        self.assertEqual(snapshot.phase, Phase.FINISHED)
        self.assertEqual(snapshot.current_position, 1)

    async def test_choice_index_out_of_range(self):
        controller = PlaybackController(
            Sequencer(branching_graph(), build_steps("A", "G", "B", "C"))
        )
        task = asyncio.create_task(controller.run())
        await wait_until(lambda: controller.state.phase is Phase.AWAITING_CHOICE)
        with self.assertRaises(ValueError):
            controller.choose(5)
        controller.cancel()
        await asyncio.wait_for(task, 1)

    async def test_step_once_during_run_skips_one_step(self):
        controller = PlaybackController(
            Sequencer(linear_graph(), build_steps("A", "B", "C", duration_ms=10_000))
        )
        task = asyncio.create_task(controller.run())
        await wait_until(lambda: controller.running)
        await asyncio.sleep(0.01)

        await controller.step_once()
        await wait_until(lambda: controller.state.current_position == 1)
        await asyncio.sleep(0.02)
        self.assertEqual(controller.state.current_position, 1)

        controller.cancel()
        self.assertEqual((await asyncio.wait_for(task, 1)).phase, Phase.IDLE)

    async def test_narration_failure_does_not_stall(self):
        controller = PlaybackController(
            Sequencer(linear_graph(), build_steps("A", "B", audio_file=Path("clip.webm"))),
            narrator=Narrator(FailingPlayer()),
        )
        with self.assertLogs("procwalk.playback.suspension", level="WARNING"):
            snapshot = await asyncio.wait_for(controller.run(), 1)
        self.assertEqual(snapshot.phase, Phase.FINISHED)

    async def test_cancel_silences_audio_immediately(self):
        player = HangingPlayer()
        controller = PlaybackController(
            Sequencer(linear_graph(), build_steps("A", "B", audio_file=Path("clip.webm"))),
            narrator=Narrator(player),
        )
        task = asyncio.create_task(controller.run())
        await asyncio.wait_for(player.started.wait(), 1)

        controller.cancel()
        self.assertTrue(player.stopped)
        snapshot = await asyncio.wait_for(task, 1)
        self.assertEqual(snapshot.phase, Phase.IDLE)


if __name__ == "__main__":
    unittest.main()
