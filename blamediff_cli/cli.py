"""Typer-based CLI: a git diff filter that blames every line."""

from __future__ import annotations

import io
import logging
import shlex
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from . import __version__, config
from .config_manager import load_settings, save_settings
from .errors import ConfigurationFault, GitCommandError
from .gitcmd import ENCODING, ERRORS, GitRunner
from .orchestrator import DiffAnnotator, split_lines

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="🔎 blamediff — annotate diff lines with the commit that owns them.",
    add_completion=False,
    rich_markup_mode="rich",
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"blamediff v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    handler = RichHandler(console=Console(stderr=True), show_time=False, show_path=False)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[handler],
        force=True,
    )


def _repository_runner() -> GitRunner:
    runner = GitRunner()
    try:
        return GitRunner(cwd=runner.toplevel())
    except GitCommandError as exc:
        logger.warning("Not inside a git repository, lines cannot be blamed: %s", exc.stderr or exc)
        return runner


def _text_stream(stream) -> io.TextIOWrapper:
    """Byte-transparent text view of a standard stream."""
    return io.TextIOWrapper(stream.buffer, encoding=ENCODING, errors=ERRORS, newline="\n", write_through=True)


@app.command()
def main(
    inner: Optional[List[str]] = typer.Argument(
        None,
        metavar="[-- COMMAND [ARGS]...]",
        help="Inner diff filter to run, with its arguments, after '--'.",
    ),
    back_to: Optional[List[str]] = typer.Option(
        None,
        "--back-to",
        "-b",
        metavar="REF",
        help="Blame only commits since the merge-base with REF (repeatable; first resolvable wins).",
    ),
    format_: Optional[str] = typer.Option(
        None,
        "--format",
        "-f",
        metavar="FORMAT",
        help=f"git pretty format for the candidate commit list (default: '{config.DEFAULT_FORMAT}').",
    ),
    inline: bool = typer.Option(False, "--inline", help="Show each commit's subject next to its id."),
    abbrev: Optional[int] = typer.Option(None, "--abbrev", min=4, max=40, help="Minimum short id length."),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", min=1, help="Concurrent git blame processes."),
    diff_args: Optional[str] = typer.Option(
        None,
        "--diff-args",
        metavar="ARGS",
        help="Run 'git diff ARGS' instead of reading a diff from standard input.",
    ),
    save_config: bool = typer.Option(
        False, "--save-config", help=f"Store the given options as defaults in {config.CONFIG_FILE} and exit."
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log git invocations and alignment details."),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """Annotate a diff on standard input with the commit owning each line.

    Example:
      git config interactive.diffFilter "blamediff -b main"
      git config interactive.diffFilter "blamediff -b main -- delta --color-only"
    """
    _configure_logging(verbose)

    try:
        settings = load_settings().merged(
            back_to=back_to or None,
            format=format_,
            abbrev=abbrev,
            jobs=jobs,
            inline=inline or None,
            inner=inner or None,
            diff_args=shlex.split(diff_args) if diff_args is not None else None,
        )

        if save_config:
            save_settings(settings)
            typer.echo(f"Saved defaults to {config.CONFIG_FILE}")
            raise typer.Exit()

        annotator = DiffAnnotator(_repository_runner(), settings)

        if settings.diff_args is not None:
            try:
                raw_lines = split_lines(GitRunner().diff(settings.diff_args).encode(ENCODING, ERRORS))
            except GitCommandError as exc:
                raise ConfigurationFault(f"git diff failed: {exc.stderr or exc}") from exc
        else:
            raw_lines = split_lines(sys.stdin.buffer.read())
    except ConfigurationFault as exc:
        typer.echo(f"❌ {exc}", err=True)
        raise typer.Exit(2)

    out = _text_stream(sys.stdout)
    err = _text_stream(sys.stderr)
    try:
        status = annotator.annotate(raw_lines, out, err)
    finally:
        out.detach()
        err.detach()
    raise typer.Exit(status)
