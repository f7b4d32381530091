"""Runtime configuration and package-config overrides."""

from __future__ import annotations

import logging
import os
import re
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

ConfigOverrides = dict[str, dict[str, str]]

_CONFIG_PATTERN = re.compile(r"^npm_package_config_(.+)$")
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def overwrite_config(config: ConfigOverrides, package_name: str, variable: str, value: str) -> None:
    """Set one package-scoped variable, replacing any previous value."""

    config.setdefault(package_name, {})[variable] = value


def build_package_config(environ: Mapping[str, str] | None = None) -> ConfigOverrides:
    """Collect ``npm_package_config_*`` variables under the current package name."""

    env = os.environ if environ is None else environ
    config: ConfigOverrides = {}
    package_name = env.get("npm_package_name")
    if not package_name:
        return config

    for key, value in env.items():
        matched = _CONFIG_PATTERN.match(key)
        if matched is not None:
            overwrite_config(config, package_name, matched.group(1), value)
    return config


@dataclass(slots=True)
class Settings:
    """Process-wide settings for one run-all invocation."""

    npm_command: tuple[str, ...] = ("npm",)
    manifest_path: Path = Path("package.json")
    log_level: str = "WARNING"
    abort_grace_seconds: float = 2.0
    silent: bool = False
    package_config: ConfigOverrides = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Load settings from environment variables."""

        env = os.environ if environ is None else environ
        return cls(
            npm_command=_parse_command(env.get("RUN_ALL_NPM_COMMAND", "npm")),
            manifest_path=Path(env.get("RUN_ALL_MANIFEST", "package.json")),
            log_level=_parse_log_level(env.get("RUN_ALL_LOG_LEVEL", "WARNING")),
            abort_grace_seconds=_parse_grace(env.get("RUN_ALL_ABORT_GRACE_SECONDS", "2.0")),
            silent=env.get("npm_config_loglevel", "").strip().lower() == "silent",
            package_config=build_package_config(env),
        )

    @property
    def effective_log_level(self) -> int:
        if self.silent:
            return logging.ERROR
        return logging.getLevelName(self.log_level)


def _parse_command(raw: str) -> tuple[str, ...]:
    argv = tuple(shlex.split(raw))
    if not argv:
        raise ValueError("RUN_ALL_NPM_COMMAND must not be empty.")
    return argv


def _parse_log_level(raw: str) -> str:
    normalized = raw.strip().upper()
    if normalized not in _LOG_LEVELS:
        raise ValueError(
            f"Invalid RUN_ALL_LOG_LEVEL value: {raw!r}. "
            f"Expected one of {', '.join(sorted(_LOG_LEVELS))}.",
        )
    return normalized


def _parse_grace(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError as error:
        raise ValueError(f"Invalid RUN_ALL_ABORT_GRACE_SECONDS value: {raw!r}") from error
    if value < 0:
        raise ValueError("RUN_ALL_ABORT_GRACE_SECONDS must be >= 0.")
    return value
