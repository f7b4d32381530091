"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import json
import os
import shlex
import stat
import sys
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from run_all.tasks import TaskResult

ABORTED_EXIT_CODE = 143

_FAKE_NPM = """
import sys
import time

args = sys.argv[1:]
if not args or args[0] != "run-script":
    sys.stderr.write("unsupported npm command\\n")
    raise SystemExit(1)
rest = args[1:]
script_args = []
if "--" in rest:
    split = rest.index("--")
    script_args = rest[split + 1:]
    rest = rest[:split]
flags = [arg for arg in rest if arg.startswith("-")]
name = [arg for arg in rest if not arg.startswith("-")][-1]

if name.startswith("echo:"):
    sys.stdout.write(name.split(":", 1)[1] + "\\n")
elif name == "upper":
    sys.stdout.write(sys.stdin.read().upper())
elif name == "prefix":
    for line in sys.stdin:
        sys.stdout.write("> " + line)
elif name.startswith("fail:"):
    raise SystemExit(int(name.split(":", 1)[1]))
elif name == "sleep":
    time.sleep(30)
elif name == "flags":
    sys.stdout.write(" ".join(flags + script_args) + "\\n")
elif name == "stderr":
    sys.stderr.write("STDERR\\n")
"""

FAKE_SCRIPTS = (
    "echo:hello",
    "echo:world",
    "upper",
    "prefix",
    "fail:3",
    "sleep",
    "flags",
    "stderr",
)


class FakeHandle:
    """In-memory task handle; settles when finished or aborted."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.settled: asyncio.Future[TaskResult] = asyncio.get_running_loop().create_future()
        self.abort_calls = 0

    def finish(self, code: int) -> None:
        if not self.settled.done():
            self.settled.set_result(TaskResult(task=self.name, code=code))

    def abort(self) -> None:
        self.abort_calls += 1
        self.finish(ABORTED_EXIT_CODE)


@dataclass(slots=True)
class SpawnCall:
    task: str
    stdin: object
    stdout: object
    stderr: object
    flags: tuple[str, ...]


@dataclass(slots=True)
class FakeSpawner:
    """Spawner returning FakeHandles.

    ``codes`` maps task name to its exit code; ``None`` keeps the task running
    until it is aborted. Unlisted tasks exit 0.
    """

    codes: dict[str, int | None] = field(default_factory=dict)
    calls: list[SpawnCall] = field(default_factory=list)
    handles: dict[str, FakeHandle] = field(default_factory=dict)

    async def __call__(self, task, stdin, stdout, stderr, flags) -> FakeHandle:
        handle = FakeHandle(task)
        self.calls.append(SpawnCall(task, stdin, stdout, stderr, tuple(flags)))
        self.handles[task] = handle
        code = self.codes.get(task, 0)
        if code is not None:
            asyncio.get_running_loop().call_soon(handle.finish, code)
        return handle

    @property
    def spawned(self) -> list[str]:
        return [call.task for call in self.calls]


@pytest.fixture()
def fake_npm(tmp_path: Path) -> tuple[str, ...]:
    """Command line of a stand-in ``npm`` understanding ``run-script``."""

    implementation = tmp_path / "fake_npm.py"
    implementation.write_text(_FAKE_NPM.strip() + "\n", "utf-8")
    return (sys.executable, str(implementation))


@pytest.fixture()
def fake_npm_on_path(tmp_path: Path, fake_npm: tuple[str, ...], monkeypatch) -> Path:
    """Install the fake ``npm`` as an executable on PATH."""

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    launcher = bin_dir / "npm"
    launcher.write_text(f"#!/usr/bin/env sh\nexec {shlex.join(fake_npm)} \"$@\"\n", "utf-8")
    launcher.chmod(launcher.stat().st_mode | stat.S_IXUSR)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return launcher


@pytest.fixture()
def package_json(tmp_path: Path) -> Path:
    path = tmp_path / "package.json"
    path.write_text(
        json.dumps(
            {
                "name": "fixture",
                "version": "1.0.0",
                "scripts": {name: f"echo {name}" for name in FAKE_SCRIPTS},
            },
        ),
        "utf-8",
    )
    return path


@pytest.fixture()
def fake_spawner() -> type[FakeSpawner]:
    return FakeSpawner
