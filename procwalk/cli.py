from __future__ import annotations

import argparse
import asyncio
import logging
import shutil

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import IntPrompt

from .config import PlayerConfig
from .errors import ProcwalkError
from .playback.controller import Phase, PlaybackController
from .playback.sequencer import Sequencer
from .playback.steps import Project, load_project
from .playback.suspension import Narrator, SubprocessAudioPlayer
from .tui import TerminalView

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Play back a narrated process diagram"
    )
    parser.add_argument("project_dir", help="Directory holding manifest.json")
    parser.add_argument(
        "--step",
        action="store_true",
        help="Advance one step at a time with Enter",
    )
    parser.add_argument(
        "--auto-choose",
        action="store_true",
        help="Take the first path at every choice point",
    )
    parser.add_argument(
        "--no-audio",
        action="store_true",
        help="Narrate on step timers only",
    )
    parser.add_argument(
        "--audio-command",
        default=None,
        help="Command used to play narration clips",
    )
    parser.add_argument(
        "--wrap-around",
        action="store_true",
        help="Let playback loop back to earlier steps through graph cycles",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug logging",
    )

    args = parser.parse_args(argv)

    config = PlayerConfig.from_env()
    if args.no_audio:
        config.audio_enabled = False
    if args.audio_command:
        config.audio_command = args.audio_command
    if args.wrap_around:
        config.wrap_around = True
    if args.auto_choose:
        config.auto_choose = True
    if args.verbose:
        config.log_level = "DEBUG"

    console = Console()
    _configure_logging(config.log_level, console)

    try:
        project = load_project(args.project_dir, config)
        asyncio.run(play(project, config, console, manual=args.step))
        return 0
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 1
    except ProcwalkError as exc:
        print(f"\nError: {exc}")
        return 1


async def play(
    project: Project,
    config: PlayerConfig,
    console: Console,
    manual: bool = False,
) -> None:
    view = TerminalView(project.graph, project.steps, console, title=project.manifest.name)
    controller = PlaybackController(
        Sequencer(project.graph, project.steps, wrap_around=config.wrap_around),
        view=view,
        narrator=Narrator(_build_player(config)),
    )
    if not len(project.steps):
        console.print("[yellow]This project has no steps.[/]")
        return

    try:
        if manual:
            await _step_loop(controller, view, console, config.auto_choose)
        else:
            await _run_loop(controller, view, console, config.auto_choose)
    finally:
        if controller.state.phase is not Phase.FINISHED:
            controller.cancel()

    if controller.state.phase is Phase.FINISHED:
        console.print("[bold green]Playback finished.[/]")


async def _run_loop(
    controller: PlaybackController,
    view: TerminalView,
    console: Console,
    auto_choose: bool,
) -> None:
    task = asyncio.create_task(controller.run())
    try:
        while not task.done():
            if controller.state.phase is Phase.AWAITING_CHOICE and view.choices:
                await _prompt_choice(controller, view, console, auto_choose)
            else:
                await asyncio.wait({task}, timeout=0.1)
    finally:
        if not task.done():
            controller.cancel()
        await task


async def _step_loop(
    controller: PlaybackController,
    view: TerminalView,
    console: Console,
    auto_choose: bool,
) -> None:
    await controller.step_once()
    while True:
        phase = controller.state.phase
        if phase is Phase.AWAITING_CHOICE:
            await _prompt_choice(controller, view, console, auto_choose)
            continue
        if phase is not Phase.PLAYING_STEP:
            break
        answer = await asyncio.to_thread(
            console.input, "[dim]Enter for next step, q to quit[/] "
        )
        if answer.strip().lower() in ("q", "quit"):
            controller.cancel()
            break
        await controller.step_once()


async def _prompt_choice(
    controller: PlaybackController,
    view: TerminalView,
    console: Console,
    auto_choose: bool,
) -> None:
    options = list(view.choices)
    if not options:
        return
    if auto_choose:
        console.print(f"Taking path: [cyan]{escape(options[0].label)}[/]")
        options[0].select()
        return

    answer = await asyncio.to_thread(
        IntPrompt.ask,
        "Choose a path (0 to stop)",
        console=console,
        choices=[str(index) for index in range(len(options) + 1)],
        default=1,
    )
    if answer == 0:
        controller.dismiss_choices()
    else:
        options[answer - 1].select()


def _build_player(config: PlayerConfig) -> SubprocessAudioPlayer | None:
    if not config.audio_enabled:
        return None
    argv = config.audio_argv()
    if not argv or shutil.which(argv[0]) is None:
        logger.warning("Audio command %r not found; narrating on timers", config.audio_command)
        return None
    return SubprocessAudioPlayer(argv)


def _configure_logging(level: str, console: Console) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


if __name__ == "__main__":
    raise SystemExit(main())
