"""Execution strategies for one run-plan group.

All strategies share one failure policy: the first task that exits non-zero
aborts its siblings and becomes the group's failure. Aborted siblings exit
non-zero too, but only the first failure is reported.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from run_all.channel import Channel
from run_all.tasks import Endpoint, Spawner, TaskHandle, TaskResult

logger = logging.getLogger(__name__)


class TaskFailure(RuntimeError):
    """A task exited with a non-zero code."""

    def __init__(self, result: TaskResult) -> None:
        super().__init__(f"{result.task}: None-Zero Exit({result.code});")
        self.task = result.task
        self.code = result.code


async def run_tasks_in_pipeline(  # noqa: PLR0913
    tasks: Sequence[str],
    stdin: Endpoint,
    stdout: Endpoint,
    stderr: Endpoint,
    flags: Sequence[str],
    *,
    spawn: Spawner,
) -> None:
    """Run ``tasks`` concurrently as ``tasks[0] | tasks[1] | ... | tasks[-1]``.

    The first task reads ``stdin`` (nothing at all when it is None), the last
    task writes ``stdout`` and every task shares ``stderr``. All tasks are
    launched before any is awaited.
    """

    channels: list[Channel] = []
    stages: list[tuple[str, Endpoint, Endpoint]] = []
    output: Endpoint = stdout
    for index in range(len(tasks) - 1, -1, -1):
        if index == 0 and stdin is not None:
            stages.append((tasks[index], stdin, output))
            continue
        channel = Channel() if index > 0 else Channel.drained()
        channels.append(channel)
        stages.append((tasks[index], channel.reader, output))
        if index > 0:
            output = channel.writer
    stages.reverse()

    try:
        handles = await _launch_all(stages, stderr, flags, spawn=spawn)
    finally:
        for channel in channels:
            channel.release()
    await _settle(handles)


async def run_tasks_in_parallel(  # noqa: PLR0913
    tasks: Sequence[str],
    stdin: Endpoint,
    stdout: Endpoint,
    stderr: Endpoint,
    flags: Sequence[str],
    *,
    spawn: Spawner,
) -> None:
    """Run ``tasks`` concurrently without piping.

    Tasks share ``stdout`` and ``stderr``. ``stdin`` is not forwarded since
    several readers cannot share one input stream.
    """

    stages = [(task, None, stdout) for task in tasks]
    handles = await _launch_all(stages, stderr, flags, spawn=spawn)
    await _settle(handles)


async def run_tasks_in_waterfall(  # noqa: PLR0913
    tasks: Sequence[str],
    stdin: Endpoint,
    stdout: Endpoint,
    stderr: Endpoint,
    flags: Sequence[str],
    *,
    spawn: Spawner,
) -> None:
    """Run ``tasks`` one at a time; stop before the next task on failure."""

    for task in tasks:
        handle = await spawn(task, stdin, stdout, stderr, flags)
        try:
            result = await handle.settled
        except BaseException:
            handle.abort()
            await asyncio.gather(handle.settled, return_exceptions=True)
            raise
        if result.code:
            logger.warning("Task %s exited with code %d; skipping the rest", task, result.code)
            raise TaskFailure(result)


async def _launch_all(
    stages: Sequence[tuple[str, Endpoint, Endpoint]],
    stderr: Endpoint,
    flags: Sequence[str],
    *,
    spawn: Spawner,
) -> list[TaskHandle]:
    handles: list[TaskHandle] = []
    try:
        for task, task_stdin, task_stdout in stages:
            handles.append(await spawn(task, task_stdin, task_stdout, stderr, flags))
    except BaseException:
        _abort_all(handles)
        if handles:
            await asyncio.gather(*(handle.settled for handle in handles), return_exceptions=True)
        raise
    return handles


async def _settle(handles: Sequence[TaskHandle]) -> None:
    """Wait for every handle, aborting the unfinished ones on the first failure."""

    futures = {asyncio.ensure_future(handle.settled): handle for handle in handles}
    pending = set(futures)
    first_failure: TaskResult | None = None
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for future in [future for future in futures if future in done]:
                result = future.result()
                if result.code and first_failure is None:
                    first_failure = result
                    logger.warning(
                        "Task %s exited with code %d; aborting %d sibling task(s)",
                        result.task,
                        result.code,
                        len(pending),
                    )
                    _abort_all([futures[other] for other in pending])
    except BaseException:
        _abort_all(handles)
        await asyncio.gather(*futures, return_exceptions=True)
        raise

    if first_failure is not None:
        raise TaskFailure(first_failure)


def _abort_all(handles: Sequence[TaskHandle]) -> None:
    for handle in handles:
        handle.abort()
