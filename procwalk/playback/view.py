"""Rendering operations requested by the playback controller."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence


@dataclass(frozen=True)
class ChoiceOption:
    label: str
    target_position: int
    select: Callable[[], bool]


class PlaybackView:
    """Fire-and-forget rendering hooks. Every method must be idempotent."""

    def highlight_current(self, node_id: str) -> None:
        pass

    def clear_current(self, node_id: str) -> None:
        pass

    def mark_visited(self, element_id: str) -> None:
        pass

    def clear_all_visited(self) -> None:
        pass

    def publish_choices(self, options: Sequence[ChoiceOption]) -> None:
        pass

    def clear_choices(self) -> None:
        pass

    def show_narration_text(self, text: Optional[str]) -> None:
        pass

    def pulse_end(self, node_id: str) -> None:
        pass


class NullView(PlaybackView):
    """Renders nothing."""
