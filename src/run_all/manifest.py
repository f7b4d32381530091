"""Package manifest loading and task-name pattern matching."""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from functools import lru_cache
from pathlib import Path

BUILTIN_TASKS = ("env", "restart")


class ManifestError(RuntimeError):
    """The package manifest is missing or malformed."""


class TaskNotFoundError(LookupError):
    """A task-name pattern matched no script."""

    def __init__(self, pattern: str) -> None:
        super().__init__(f"Task not found: {pattern!r}")
        self.pattern = pattern


def read_task_names(path: Path) -> list[str]:
    """Return script names declared in ``package.json`` plus npm built-ins."""

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as error:
        raise ManifestError(f"Cannot read package manifest {path}: {error}") from error
    try:
        data = json.loads(text)
    except json.JSONDecodeError as error:
        raise ManifestError(f"Invalid JSON in package manifest {path}: {error}") from error
    if not isinstance(data, dict):
        raise ManifestError(f"Package manifest root must be an object: {path}")

    scripts = data.get("scripts") or {}
    if not isinstance(scripts, dict):
        raise ManifestError(f"Package manifest 'scripts' must be an object: {path}")

    names = [name for name in scripts if isinstance(name, str)]
    names.extend(name for name in BUILTIN_TASKS if name not in scripts)
    return names


def match_tasks(task_names: Sequence[str], patterns: Sequence[str]) -> list[str]:
    """Expand glob ``patterns`` into concrete task names.

    A pattern is a task-name glob, optionally followed by script arguments
    which are carried over to every matched task. Results keep pattern order,
    then manifest order, without duplicates.
    """

    matched: list[str] = []
    seen: set[str] = set()
    for pattern in patterns:
        name_pattern, _, task_args = pattern.strip().partition(" ")
        task_args = task_args.strip()
        regex = _compile_glob(name_pattern)
        found = False
        for name in task_names:
            if not regex.fullmatch(name):
                continue
            found = True
            task = f"{name} {task_args}" if task_args else name
            if task not in seen:
                seen.add(task)
                matched.append(task)
        if not found:
            raise TaskNotFoundError(pattern)
    return matched


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a ``:``-separated task-name glob."""

    return re.compile(_translate_glob(pattern))


def _translate_glob(pattern: str) -> str:
    """``*``, ``?`` and ``[...]`` stay in one segment, ``**`` crosses, ``{a,b}`` alternates."""

    parts: list[str] = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if pattern.startswith("**", index):
            parts.append(".*")
            index += 2
            continue
        if char == "*":
            parts.append("[^:]*")
        elif char == "?":
            parts.append("[^:]")
        elif char == "[" and (end := _class_end(pattern, index)) != -1:
            parts.append(_translate_class(pattern[index + 1 : end]))
            index = end + 1
            continue
        elif char == "{" and (braces := _split_braces(pattern, index)) is not None:
            alternatives, end = braces
            parts.append("(?:" + "|".join(_translate_glob(alt) for alt in alternatives) + ")")
            index = end + 1
            continue
        else:
            parts.append(re.escape(char))
        index += 1
    return "".join(parts)


def _class_end(pattern: str, start: int) -> int:
    index = start + 1
    if pattern[index : index + 1] in ("!", "^"):
        index += 1
    # A leading "]" is a member, not the end of the class.
    if pattern[index : index + 1] == "]":
        index += 1
    return pattern.find("]", index)


def _translate_class(body: str) -> str:
    negated = body[:1] in ("!", "^")
    if negated:
        body = body[1:]
    body = body.replace("\\", "\\\\").replace("[", "\\[").replace("]", "\\]")
    if negated:
        return f"[^:{body}]"
    return f"(?!:)[{body}]"


def _split_braces(pattern: str, start: int) -> tuple[list[str], int] | None:
    """Top-level alternatives of the brace group at ``start`` and its closing index."""

    alternatives: list[str] = []
    depth = 0
    current = start + 1
    for index in range(start, len(pattern)):
        char = pattern[index]
        if char == "{":
            depth += 1
        elif char == "," and depth == 1:
            alternatives.append(pattern[current:index])
            current = index + 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                if not alternatives:
                    return None
                alternatives.append(pattern[current:index])
                return alternatives, index
    return None
