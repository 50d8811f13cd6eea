"""Player configuration loaded from the environment."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import os
import shlex

DEFAULT_DURATION_MS = 1000
DEFAULT_AUDIO_COMMAND = "ffplay -nodisp -autoexit -loglevel quiet"

ENV_PREFIX = "PROCWALK_"


@dataclass
class PlayerConfig:
    default_duration_ms: int = DEFAULT_DURATION_MS
    audio_command: str = DEFAULT_AUDIO_COMMAND
    audio_enabled: bool = True
    wrap_around: bool = False
    auto_choose: bool = False
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "PlayerConfig":
        """Build a config from PROCWALK_* variables, after loading ~/.env."""
        _load_env_file(env_file or Path.home() / ".env")
        config = cls()
        config.default_duration_ms = _env_int(
            "DEFAULT_DURATION_MS", config.default_duration_ms
        )
        if config.default_duration_ms <= 0:
            config.default_duration_ms = DEFAULT_DURATION_MS
        config.audio_command = _env_str("AUDIO_COMMAND", config.audio_command)
        config.audio_enabled = _env_bool("AUDIO", config.audio_enabled)
        config.wrap_around = _env_bool("WRAP_AROUND", config.wrap_around)
        config.auto_choose = _env_bool("AUTO_CHOOSE", config.auto_choose)
        config.log_level = _env_str("LOG_LEVEL", config.log_level).upper()
        return config

    def audio_argv(self) -> List[str]:
        return shlex.split(self.audio_command)


def _env_str(name: str, default: str) -> str:
    value = os.environ.get(ENV_PREFIX + name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(ENV_PREFIX + name)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(ENV_PREFIX + name)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    return default


def _load_env_file(path: Path) -> None:
    try:
        raw = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("export "):
            stripped = stripped[7:].lstrip()
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if (
            len(value) >= 2
            and value[0] == value[-1]
            and value[0] in ("'", '"')
        ):
            value = value[1:-1]
        if key not in os.environ:
            os.environ[key] = value
