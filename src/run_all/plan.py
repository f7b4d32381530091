"""Run-plan parsing: turn CLI arguments into ordered task groups.

Each argument is classified once into a token variant, then folded into the
plan. Mode flags open new groups, bare tokens become task-name patterns of the
current group, and ``--<pkg>:<var>[=<value>]`` writes into the config table
shared by all groups.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from run_all.config import ConfigOverrides, overwrite_config

_OVERWRITE_OPTION = re.compile(r"^--([^:]+?):([^=]+?)(?:=(.+))?$")


class ParseError(ValueError):
    """Invalid run-plan arguments."""


class GroupKind(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    WATERFALL = "waterfall"


_MODE_FLAGS = {
    "-s": GroupKind.SEQUENTIAL,
    "--sequential": GroupKind.SEQUENTIAL,
    "--serial": GroupKind.SEQUENTIAL,
    "-p": GroupKind.PARALLEL,
    "--parallel": GroupKind.PARALLEL,
    "-w": GroupKind.WATERFALL,
    "--waterfall": GroupKind.WATERFALL,
}

_KIND_FLAGS = {
    GroupKind.SEQUENTIAL: "-s",
    GroupKind.PARALLEL: "-p",
    GroupKind.WATERFALL: "-w",
}


@dataclass(frozen=True, slots=True)
class ModeFlag:
    kind: GroupKind


@dataclass(frozen=True, slots=True)
class SilentFlag:
    pass


@dataclass(frozen=True, slots=True)
class Override:
    scope: str
    variable: str
    value: str | None


@dataclass(frozen=True, slots=True)
class InvalidFlag:
    token: str


@dataclass(frozen=True, slots=True)
class Pattern:
    text: str


Token = ModeFlag | SilentFlag | Override | InvalidFlag | Pattern


@dataclass(slots=True)
class RunGroup:
    """One segment of the run plan."""

    kind: GroupKind
    patterns: list[str] = field(default_factory=list)
    config: ConfigOverrides = field(default_factory=dict)


def classify_token(arg: str) -> Token:
    """Classify a single CLI argument."""

    kind = _MODE_FLAGS.get(arg)
    if kind is not None:
        return ModeFlag(kind)
    if arg == "--silent":
        return SilentFlag()
    matched = _OVERWRITE_OPTION.match(arg)
    if matched is not None:
        return Override(scope=matched.group(1), variable=matched.group(2), value=matched.group(3))
    if arg.startswith("-"):
        return InvalidFlag(arg)
    return Pattern(arg)


def parse(args: Sequence[str], config: ConfigOverrides) -> list[RunGroup]:
    """Build the run plan for ``args``.

    ``config`` is mutated in place by override flags and the same object is
    attached to every group, so an override applies to groups parsed before it.
    Raises ParseError without returning a partial plan.
    """

    groups = [RunGroup(kind=GroupKind.SEQUENTIAL, config=config)]
    index = 0
    while index < len(args):
        token = classify_token(args[index])
        if isinstance(token, ModeFlag):
            # A sequential flag never splits an already sequential group.
            if token.kind is not GroupKind.SEQUENTIAL or groups[-1].kind is not GroupKind.SEQUENTIAL:
                groups.append(RunGroup(kind=token.kind, config=config))
        elif isinstance(token, Override):
            value = token.value
            if value is None:
                index += 1
                if index >= len(args):
                    raise ParseError(f"Missing value for option: {args[index - 1]}")
                value = args[index]
            overwrite_config(config, token.scope, token.variable, value)
        elif isinstance(token, InvalidFlag):
            raise ParseError(f"Invalid Option: {token.token}")
        elif isinstance(token, Pattern):
            groups[-1].patterns.append(token.text)
        index += 1
    return groups


def plan_to_args(groups: Sequence[RunGroup]) -> list[str]:
    """Serialize group kinds and patterns back into CLI arguments.

    The leading group is implicit when it is sequential. Parsing the result
    yields the same kinds and patterns in the same order.
    """

    args: list[str] = []
    for position, group in enumerate(groups):
        if position > 0 or group.kind is not GroupKind.SEQUENTIAL:
            args.append(_KIND_FLAGS[group.kind])
        args.extend(group.patterns)
    return args
