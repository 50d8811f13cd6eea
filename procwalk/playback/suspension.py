"""Awaitable suspension points for the playback run-loop.

Narration (audio or timer) and branch choices both suspend playback. Each
wait wraps one future that is resolved exactly once, whether it completes,
fails, or is cancelled, so a reset never leaves a continuation pending.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

import asyncio
import logging

from .steps import Step

logger = logging.getLogger(__name__)


class _NoSelection:
    def __repr__(self) -> str:
        return "NO_SELECTION"


NO_SELECTION: Any = _NoSelection()
COMPLETED = "completed"


class Suspension:
    def __init__(self, on_cancel: Optional[Callable[[], None]] = None) -> None:
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._on_cancel = on_cancel

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, value: Any = COMPLETED) -> bool:
        if self.done:
            return False
        self._future.set_result(value)
        return True

    def cancel(self) -> bool:
        """Stop whatever backs the wait, then resolve with ``NO_SELECTION``."""
        if self.done:
            return False
        if self._on_cancel is not None:
            try:
                self._on_cancel()
            except Exception:
                logger.exception("Error while stopping suspended wait")
        return self.resolve(NO_SELECTION)

    async def wait(self) -> Any:
        return await asyncio.shield(self._future)


class TimerNarration(Suspension):
    def __init__(self, duration_ms: int) -> None:
        super().__init__(on_cancel=self._stop)
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(max(0, duration_ms) / 1000.0, self.resolve)

    def _stop(self) -> None:
        self._handle.cancel()


class AudioPlayer:
    """Interface for a narration audio device."""

    async def play(self, path: Path) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


class SubprocessAudioPlayer(AudioPlayer):
    """Plays a file by running an external command such as ``ffplay``."""

    def __init__(self, argv: Sequence[str]) -> None:
        if not argv:
            raise ValueError("Audio command is empty")
        self.argv = list(argv)
        self._process: Optional[asyncio.subprocess.Process] = None

    async def play(self, path: Path) -> None:
        self._process = await asyncio.create_subprocess_exec(
            *self.argv,
            str(path),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            code = await self._process.wait()
        finally:
            self._process = None
        if code is not None and code > 0:
            raise RuntimeError(f"{self.argv[0]} exited with status {code}")

    def stop(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            pass


class AudioNarration(Suspension):
    """Resolves when the clip ends, fails to play, or is stopped."""

    def __init__(self, player: AudioPlayer, path: Path) -> None:
        super().__init__(on_cancel=self._stop)
        self._player = player
        self._path = path
        self._task = asyncio.get_running_loop().create_task(self._play())

    async def _play(self) -> None:
        try:
            await self._player.play(self._path)
        except Exception as exc:
            logger.warning("Narration %s failed: %s", self._path, exc)
        finally:
            self.resolve()

    def _stop(self) -> None:
        self._player.stop()
        self._task.cancel()


class Narrator:
    """Starts the narration wait for a step."""

    def __init__(self, player: Optional[AudioPlayer] = None) -> None:
        self.player = player

    def begin(self, step: Step) -> Suspension:
        if self.player is not None and step.audio_file is not None:
            logger.debug("Playing %s for step %s", step.audio_file, step.id)
            return AudioNarration(self.player, step.audio_file)
        return TimerNarration(step.duration_ms)


class ChoiceWait(Suspension):
    """Waits for one of the published choices to be selected."""

    def __init__(self, choices: Sequence[Any]) -> None:
        super().__init__()
        self.choices: List[Any] = list(choices)

    def select(self, index: int) -> bool:
        if index < 0 or index >= len(self.choices):
            raise ValueError("Choice index out of range")
        return self.resolve(self.choices[index])
