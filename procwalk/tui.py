from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .diagram import GraphIndex
from .playback.steps import StepIndex
from .playback.view import ChoiceOption, PlaybackView


class TerminalView(PlaybackView):
    """Prints playback progress to a rich console."""

    def __init__(
        self,
        graph: GraphIndex,
        steps: StepIndex,
        console: Optional[Console] = None,
        title: str = "Process",
    ) -> None:
        self.graph = graph
        self.steps = steps
        self.console = console or Console()
        self.title = title
        self.current: Optional[str] = None
        self.visited: Set[str] = set()
        self.trail: List[str] = []
        self.choices: List[ChoiceOption] = []
        self._labels: Dict[str, str] = {step.node_id: step.label for step in steps}

    # ===== PlaybackView =====

    def highlight_current(self, node_id: str) -> None:
        if self.current == node_id:
            return
        self.current = node_id
        self.console.print(self._render_steps())
        self.console.print(self._render_breadcrumb())

    def clear_current(self, node_id: str) -> None:
        if self.current == node_id:
            self.current = None

    def mark_visited(self, element_id: str) -> None:
        if element_id in self.visited:
            return
        self.visited.add(element_id)
        if element_id in self.graph:
            self.trail.append(element_id)

    def clear_all_visited(self) -> None:
        self.visited.clear()
        self.trail = []

    def publish_choices(self, options: Sequence[ChoiceOption]) -> None:
        self.choices = list(options)
        table = Table(show_header=False, box=None, padding=(0, 1))
        for index, option in enumerate(self.choices, start=1):
            target = self.steps.step_at(option.target_position)
            target_label = target.label if target else "?"
            table.add_row(
                Text(f"[{index}]", style="bold"),
                Text(option.label, style="cyan"),
                Text(f"-> {target_label}", style="dim"),
            )
        self.console.print(Panel(table, title="Choose a path", border_style="magenta"))

    def clear_choices(self) -> None:
        self.choices = []

    def show_narration_text(self, text: Optional[str]) -> None:
        if not text:
            return
        self.console.print(Panel(Text(text), title="Narration", border_style="blue"))

    def pulse_end(self, node_id: str) -> None:
        self.console.print(
            Text.assemble(("End reached: ", "bold red"), (self._name(node_id), "red"))
        )

    # ===== Rendering =====

    def _render_steps(self) -> Panel:
        table = Table(show_header=True, box=None, padding=(0, 1))
        table.add_column("#", justify="right", style="dim")
        table.add_column("Step")
        table.add_column("Element", style="dim")
        for step in self.steps:
            if step.node_id == self.current:
                style = "bold reverse cyan"
                marker = ">"
            elif step.node_id in self.visited:
                style = "green"
                marker = "*"
            else:
                style = "dim"
                marker = " "
            table.add_row(
                f"{marker}{step.position + 1}",
                Text(step.label, style=style),
                Text(step.node_id),
            )
        return Panel(table, title=self.title, border_style="cyan")

    def _render_breadcrumb(self) -> Panel:
        parts = [f"[dim]{escape(self._name(node_id)[:15])}[/]" for node_id in self.trail]
        if self.current:
            parts.append(f"[bold reverse cyan] {escape(self._name(self.current)[:15])} [/]")
        path_text = " -> ".join(parts) or "[dim](start)[/]"
        text = Text.from_markup(f"Trail: {path_text}")
        max_width = max(10, self.console.size.width - 4)
        text.truncate(max_width, overflow="ellipsis")
        return Panel(text, border_style="yellow")

    def _name(self, node_id: str) -> str:
        if node_id in self._labels:
            return self._labels[node_id]
        node = self.graph.node(node_id)
        if node is not None and node.name:
            return node.name
        return node_id
