"""Spawn and monitor a single package script as a child process."""

from __future__ import annotations

import asyncio
import codecs
import io
import logging
import shlex
import subprocess
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import IO, Any, Protocol

logger = logging.getLogger(__name__)

Endpoint = int | IO[Any] | None

_CHUNK_SIZE = 64 * 1024


class TaskSpawnError(RuntimeError):
    """A task process could not be started."""


@dataclass(frozen=True, slots=True)
class TaskResult:
    """Exit status of one finished task."""

    task: str
    code: int


class TaskHandle(Protocol):
    """A launched task the executors can wait for and abort."""

    name: str

    @property
    def settled(self) -> Awaitable[TaskResult]:
        """Resolve with the task result once the process exited."""

    def abort(self) -> None:
        """Terminate the task; no-op when it already exited."""


Spawner = Callable[[str, Endpoint, Endpoint, Endpoint, Sequence[str]], Awaitable[TaskHandle]]


class ProcessTaskHandle:
    """TaskHandle backed by an asyncio subprocess."""

    def __init__(
        self,
        name: str,
        process: asyncio.subprocess.Process,
        pumps: list[Awaitable[None]],
        *,
        grace_seconds: float,
    ) -> None:
        self.name = name
        self._process = process
        self._grace_seconds = grace_seconds
        self._kill_timer: asyncio.TimerHandle | None = None
        self._settled = asyncio.ensure_future(self._wait(pumps))

    @property
    def settled(self) -> asyncio.Future[TaskResult]:
        return self._settled

    def abort(self) -> None:
        if self._process.returncode is not None or self._kill_timer is not None:
            return
        logger.debug("Terminating task %s (pid %d)", self.name, self._process.pid)
        try:
            self._process.terminate()
        except ProcessLookupError:
            return
        loop = asyncio.get_running_loop()
        self._kill_timer = loop.call_later(self._grace_seconds, self._kill)

    def _kill(self) -> None:
        if self._process.returncode is not None:
            return
        logger.warning("Task %s ignored SIGTERM, killing it", self.name)
        try:
            self._process.kill()
        except ProcessLookupError:
            return

    async def _wait(self, pumps: list[Awaitable[None]]) -> TaskResult:
        try:
            code = await self._process.wait()
            if pumps:
                await asyncio.gather(*pumps)
        finally:
            if self._kill_timer is not None:
                self._kill_timer.cancel()
        logger.debug("Task %s exited with code %d", self.name, code)
        return TaskResult(task=self.name, code=code)


def build_task_args(
    npm_command: Sequence[str],
    task: str,
    flags: Sequence[str],
) -> list[str]:
    """Render ``npm run-script`` argv; text after the task name becomes script args."""

    parts = shlex.split(task)
    if not parts:
        raise TaskSpawnError(f"Empty task name: {task!r}")
    argv = [*npm_command, "run-script", *flags, parts[0]]
    if len(parts) > 1:
        argv.extend(["--", *parts[1:]])
    return argv


def make_spawner(npm_command: Sequence[str], *, grace_seconds: float = 2.0) -> Spawner:
    """Return a spawner running tasks through ``npm_command``."""

    async def spawn(
        task: str,
        stdin: Endpoint,
        stdout: Endpoint,
        stderr: Endpoint,
        flags: Sequence[str],
    ) -> ProcessTaskHandle:
        return await spawn_task(
            task,
            stdin,
            stdout,
            stderr,
            flags,
            npm_command=npm_command,
            grace_seconds=grace_seconds,
        )

    return spawn


async def spawn_task(  # noqa: PLR0913
    task: str,
    stdin: Endpoint,
    stdout: Endpoint,
    stderr: Endpoint,
    flags: Sequence[str],
    *,
    npm_command: Sequence[str],
    grace_seconds: float = 2.0,
) -> ProcessTaskHandle:
    """Launch one task and return its handle without waiting for it."""

    argv = build_task_args(npm_command, task, flags)
    stdin_arg, stdin_source = _resolve_endpoint(stdin)
    stdout_arg, stdout_target = _resolve_endpoint(stdout)
    stderr_arg, stderr_target = _resolve_endpoint(stderr)

    logger.info("Starting task %s", task)
    logger.debug("Task argv: %s", shlex.join(argv))
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=stdin_arg,
            stdout=stdout_arg,
            stderr=stderr_arg,
        )
    except FileNotFoundError as error:
        raise TaskSpawnError(f"Task runner command not found: {argv[0]}") from error
    except OSError as error:
        raise TaskSpawnError(f"Task {task} failed to start: {error}") from error

    pumps: list[Awaitable[None]] = []
    if stdin_source is not None and process.stdin is not None:
        pumps.append(asyncio.ensure_future(_feed(stdin_source, process.stdin)))
    if stdout_target is not None and process.stdout is not None:
        pumps.append(asyncio.ensure_future(_drain(process.stdout, stdout_target)))
    if stderr_target is not None and process.stderr is not None:
        pumps.append(asyncio.ensure_future(_drain(process.stderr, stderr_target)))
    return ProcessTaskHandle(task, process, pumps, grace_seconds=grace_seconds)


def _resolve_endpoint(endpoint: Endpoint) -> tuple[int, IO[Any] | None]:
    """Map an endpoint to a subprocess argument plus a stream that needs pumping."""

    if endpoint is None:
        return subprocess.DEVNULL, None
    if isinstance(endpoint, int):
        return endpoint, None
    try:
        return endpoint.fileno(), None
    except (AttributeError, OSError, io.UnsupportedOperation):
        return subprocess.PIPE, endpoint


async def _feed(source: IO[Any], writer: asyncio.StreamWriter) -> None:
    data = source.read()
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        if data:
            writer.write(data)
            await writer.drain()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("Task closed stdin before consuming all input")
    finally:
        writer.close()


async def _drain(reader: asyncio.StreamReader, target: IO[Any]) -> None:
    decoder = None
    if isinstance(target, io.TextIOBase):
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while chunk := await reader.read(_CHUNK_SIZE):
        target.write(decoder.decode(chunk) if decoder is not None else chunk)
    if decoder is not None:
        target.write(decoder.decode(b"", final=True))
    target.flush()
