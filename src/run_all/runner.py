"""Drive a parsed run plan group by group."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence

from run_all.config import ConfigOverrides, Settings
from run_all.executor import (
    run_tasks_in_parallel,
    run_tasks_in_pipeline,
    run_tasks_in_waterfall,
)
from run_all.manifest import match_tasks, read_task_names
from run_all.plan import GroupKind, RunGroup, parse
from run_all.tasks import Endpoint, Spawner, make_spawner

logger = logging.getLogger(__name__)

GroupRunner = Callable[..., Awaitable[None]]

GROUP_RUNNERS: dict[GroupKind, GroupRunner] = {
    GroupKind.SEQUENTIAL: run_tasks_in_pipeline,
    GroupKind.PARALLEL: run_tasks_in_parallel,
    GroupKind.WATERFALL: run_tasks_in_waterfall,
}


def build_prefix_flags(config: ConfigOverrides, *, silent: bool) -> list[str]:
    """Flags passed to every ``npm run-script`` call of a group."""

    flags = ["--silent"] if silent else []
    for package_name, variables in config.items():
        for variable, value in variables.items():
            flags.append(f"--{package_name}:{variable}={value}")
    return flags


def is_silent(args: Sequence[str], settings: Settings) -> bool:
    return "--silent" in args or settings.silent


async def run_plan(  # noqa: PLR0913
    groups: Sequence[RunGroup],
    *,
    task_names: Sequence[str],
    stdin: Endpoint,
    stdout: Endpoint,
    stderr: Endpoint,
    silent: bool,
    spawn: Spawner,
) -> None:
    """Run non-empty groups in order; a failing group stops the run."""

    runnable = [group for group in groups if group.patterns]
    for position, group in enumerate(runnable, start=1):
        tasks = match_tasks(task_names, group.patterns)
        logger.info(
            "Group %d/%d (%s): %s",
            position,
            len(runnable),
            group.kind.value,
            ", ".join(tasks),
        )
        await GROUP_RUNNERS[group.kind](
            tasks,
            stdin,
            stdout,
            stderr,
            build_prefix_flags(group.config, silent=silent),
            spawn=spawn,
        )


async def run_all(  # noqa: PLR0913
    args: Sequence[str],
    *,
    settings: Settings,
    stdin: Endpoint = None,
    stdout: Endpoint = None,
    stderr: Endpoint = None,
    spawn: Spawner | None = None,
) -> None:
    """Parse ``args`` and run every group of the resulting plan."""

    config = {scope: dict(variables) for scope, variables in settings.package_config.items()}
    groups = parse(args, config)
    if not any(group.patterns for group in groups):
        logger.debug("Nothing to run")
        return

    task_names = read_task_names(settings.manifest_path)
    if spawn is None:
        spawn = make_spawner(settings.npm_command, grace_seconds=settings.abort_grace_seconds)
    await run_plan(
        groups,
        task_names=task_names,
        stdin=stdin,
        stdout=stdout,
        stderr=stderr,
        silent=is_silent(args, settings),
        spawn=spawn,
    )
