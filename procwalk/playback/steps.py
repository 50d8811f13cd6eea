"""Narrated steps, their ordering, and the project manifest."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

import json
import logging

from ..config import DEFAULT_DURATION_MS, PlayerConfig
from ..diagram import GraphIndex, load_bpmn
from ..errors import DiagramError, ProjectError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
SCHEMA_VERSION = 1


@dataclass(frozen=True)
class Step:
    id: str
    position: int
    node_id: str
    duration_ms: int = DEFAULT_DURATION_MS
    label: str = ""
    description: Optional[str] = None
    audio_file: Optional[Path] = None

    @property
    def has_audio(self) -> bool:
        return self.audio_file is not None


class StepIndex:
    """Authored step order plus a node-to-position reverse map."""

    def __init__(self, steps: Sequence[Step]):
        self._steps = list(steps)
        self._positions: Dict[str, List[int]] = {}
        for position, step in enumerate(self._steps):
            if step.position != position:
                raise ValueError(
                    f"Step {step.id} has position {step.position}, expected {position}"
                )
            self._positions.setdefault(step.node_id, []).append(position)

    @classmethod
    def from_manifest(
        cls,
        manifest: "ProjectManifest",
        default_duration_ms: int = DEFAULT_DURATION_MS,
        base_dir: Optional[Path] = None,
    ) -> "StepIndex":
        steps = []
        for position, meta in enumerate(manifest.steps):
            duration = meta.duration_ms
            if duration is None or duration <= 0:
                duration = default_duration_ms
            steps.append(
                Step(
                    id=meta.id,
                    position=position,
                    node_id=meta.bpmn_element_id,
                    duration_ms=duration,
                    label=meta.label or meta.bpmn_element_id,
                    description=meta.description,
                    audio_file=_resolve_audio(meta, base_dir),
                )
            )
        return cls(steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps)

    def step_at(self, position: int) -> Optional[Step]:
        if 0 <= position < len(self._steps):
            return self._steps[position]
        return None

    def node_id_of(self, position: int) -> Optional[str]:
        step = self.step_at(position)
        return step.node_id if step else None

    def positions_for_node(self, node_id: str) -> List[int]:
        return list(self._positions.get(node_id, []))

    def duplicate_nodes(self) -> Dict[str, List[int]]:
        return {
            node_id: list(positions)
            for node_id, positions in self._positions.items()
            if len(positions) > 1
        }


@dataclass
class StepMeta:
    id: str
    label: str
    bpmn_element_id: str
    duration_ms: Optional[int] = None
    description: Optional[str] = None
    audio_file: Optional[str] = None


@dataclass
class ProjectManifest:
    name: str
    created_at: str = ""
    updated_at: str = ""
    bpmn_path: str = "diagram.bpmn"
    schema_version: int = SCHEMA_VERSION
    steps: List[StepMeta] = field(default_factory=list)


@dataclass
class Project:
    manifest: ProjectManifest
    graph: GraphIndex
    steps: StepIndex
    base_dir: Path


def parse_manifest(data: dict) -> ProjectManifest:
    if not isinstance(data, dict):
        raise ProjectError("Manifest must be a JSON object")
    version = data.get("schemaVersion", SCHEMA_VERSION)
    if version != SCHEMA_VERSION:
        raise ProjectError(f"Unsupported manifest schema version: {version}")

    steps: List[StepMeta] = []
    for index, raw in enumerate(data.get("steps") or []):
        if not isinstance(raw, dict):
            raise ProjectError(f"Step {index + 1} is not an object")
        element_id = raw.get("bpmnElementId")
        step_id = str(raw.get("id") or f"step-{index + 1}")
        if not element_id:
            logger.warning("Step %s has no diagram element; it cannot be reached", step_id)
        steps.append(
            StepMeta(
                id=step_id,
                label=str(raw.get("label") or element_id or step_id),
                bpmn_element_id=str(element_id or ""),
                duration_ms=_as_int(raw.get("durationMs")),
                description=raw.get("description") or None,
                audio_file=raw.get("audioFile") or None,
            )
        )

    return ProjectManifest(
        name=str(data.get("name") or "Untitled process"),
        created_at=str(data.get("createdAt") or ""),
        updated_at=str(data.get("updatedAt") or ""),
        bpmn_path=str(data.get("bpmnPath") or "diagram.bpmn"),
        schema_version=version,
        steps=steps,
    )


def load_manifest(path: Path) -> ProjectManifest:
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ProjectError(f"Manifest not found: {path}") from exc
    except OSError as exc:
        raise ProjectError(f"Cannot read manifest {path}: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProjectError(f"Manifest is not valid JSON: {exc}") from exc
    return parse_manifest(data)


def load_project(directory: Path, config: Optional[PlayerConfig] = None) -> Project:
    """Load ``manifest.json`` and its diagram from a project directory."""
    config = config or PlayerConfig()
    base_dir = Path(directory).expanduser().resolve()
    if not base_dir.is_dir():
        raise ProjectError(f"Project directory does not exist: {base_dir}")

    manifest = load_manifest(base_dir / MANIFEST_NAME)
    diagram_path = base_dir / manifest.bpmn_path
    if not diagram_path.exists():
        raise ProjectError(f"Diagram not found: {diagram_path}")
    try:
        graph = load_bpmn(diagram_path)
    except DiagramError as exc:
        raise ProjectError(str(exc)) from exc

    steps = StepIndex.from_manifest(
        manifest,
        default_duration_ms=config.default_duration_ms,
        base_dir=base_dir,
    )
    for step in steps:
        if step.node_id and step.node_id not in graph:
            logger.warning("Step %s refers to unknown element %s", step.id, step.node_id)
    for node_id, positions in steps.duplicate_nodes().items():
        logger.warning("Element %s hosts several steps: %s", node_id, positions)

    return Project(manifest=manifest, graph=graph, steps=steps, base_dir=base_dir)


def _resolve_audio(meta: StepMeta, base_dir: Optional[Path]) -> Optional[Path]:
    if not meta.audio_file:
        return None
    candidate = Path(meta.audio_file)
    if base_dir is not None and not candidate.is_absolute():
        candidate = base_dir / candidate
    if base_dir is not None and not candidate.is_file():
        logger.debug("Audio %s for step %s is missing; using timer", candidate, meta.id)
        return None
    return candidate


def _as_int(value: object) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
