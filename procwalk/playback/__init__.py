"""Step sequencing and the playback run-loop."""

from .controller import (
    Phase,
    PlaybackController,
    PlaybackSnapshot,
    PlaybackState,
    transition,
)
from .sequencer import Choice, LinearNext, Sequencer, Trail
from .steps import Project, ProjectManifest, Step, StepIndex, load_manifest, load_project
from .suspension import (
    NO_SELECTION,
    AudioPlayer,
    ChoiceWait,
    Narrator,
    SubprocessAudioPlayer,
    Suspension,
    TimerNarration,
)
from .view import ChoiceOption, NullView, PlaybackView

__all__ = [
    "AudioPlayer",
    "Choice",
    "ChoiceOption",
    "ChoiceWait",
    "LinearNext",
    "NO_SELECTION",
    "Narrator",
    "NullView",
    "Phase",
    "PlaybackController",
    "PlaybackSnapshot",
    "PlaybackState",
    "PlaybackView",
    "Project",
    "ProjectManifest",
    "Sequencer",
    "Step",
    "StepIndex",
    "SubprocessAudioPlayer",
    "Suspension",
    "TimerNarration",
    "Trail",
    "load_manifest",
    "load_project",
    "transition",
]
