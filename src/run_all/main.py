"""CLI entrypoint for run-all."""

from __future__ import annotations

import asyncio
import logging
import sys

import rich_click as click
from rich.console import Console
from rich.logging import RichHandler

from run_all import __version__
from run_all.config import Settings
from run_all.executor import TaskFailure
from run_all.manifest import ManifestError, TaskNotFoundError
from run_all.plan import ParseError
from run_all.runner import is_silent, run_all
from run_all.tasks import TaskSpawnError

click.rich_click.USE_MARKDOWN = True

_RUN_ERRORS = (ParseError, ManifestError, TaskNotFoundError, TaskSpawnError, TaskFailure)
_LEADING_OPTIONS = ("-h", "--help", "-v", "--version")


class RunAllCommand(click.RichCommand):
    """Pass arguments through untouched unless help or version comes first."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        if args and args[0] not in _LEADING_OPTIONS:
            args = ["--", *args]
        return super().parse_args(ctx, args)


@click.command(
    cls=RunAllCommand,
    context_settings={
        "ignore_unknown_options": True,
        "help_option_names": ["-h", "--help"],
    },
    no_args_is_help=True,
)
@click.version_option(__version__, "-v", "--version", prog_name="run-all")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def run_all_cli(args: tuple[str, ...]) -> None:
    """Run package scripts in groups.

    Usage: `run-all [OPTIONS] [-s|-p|-w] <tasks>... [[-s|-p|-w] <tasks>...]...`

    - `-s`, `--sequential`, `--serial`: pipe the following tasks into each other.
    - `-p`, `--parallel`: run the following tasks in parallel.
    - `-w`, `--waterfall`: run the following tasks one by one, stop on failure.
    - `--silent`: only print errors.
    - `--<package>:<variable>=<value>`: override a package config variable.

    Task names accept glob patterns, for example `build:*`, `watch:**`,
    `build:{js,css}` or `test:[!e]*`.
    Each group starts after the previous one finished; any failure stops the run.
    """

    try:
        settings = Settings.from_env()
    except ValueError as error:
        raise click.ClickException(str(error)) from error

    settings.silent = is_silent(args, settings)
    configure_logging(settings.effective_log_level)
    try:
        asyncio.run(
            run_all(
                args,
                settings=settings,
                stdin=sys.stdin,
                stdout=sys.stdout,
                stderr=sys.stderr,
            ),
        )
    except _RUN_ERRORS as error:
        raise click.ClickException(str(error)) from error


def configure_logging(level: int) -> logging.Logger:
    """Attach a rich stderr handler to the package logger."""

    logger = logging.getLogger("run_all")
    logger.setLevel(level)
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        handler = RichHandler(console=Console(stderr=True), show_path=False, show_time=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False
    return logger


if __name__ == "__main__":  # pragma: no cover
    run_all_cli()
