"""Coordinates parsing, blame resolution, the inner filter and output."""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
from typing import Iterator, List, Mapping, Optional, Sequence, TextIO

from .annotator import PrefixAnnotator
from .attribution import AttributionIndex
from .blame import BlameResolver, post_image_revision, resolve_ancestor_bound
from .config_manager import Settings, validate_format
from .diff_parser import parse_diff
from .errors import GitCommandError, ProcessFault
from .gitcmd import GitRunner, decode, encode
from .synchronizer import StreamSynchronizer

logger = logging.getLogger(__name__)

INLINE_FORMAT = "%s"

_END = object()


def split_lines(data: bytes) -> List[str]:
    """Decode a byte stream into lines; ``\\n`` is the only boundary."""
    if not data:
        return []
    lines = decode(data).split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


class InnerFilter:
    """An external pretty-printer fed the raw diff on its standard input.

    Writing to the child and reading its output run on separate threads so
    a filter that streams (rather than buffering all its input) cannot
    deadlock against us. Output lines are handed over through a queue as
    soon as they are read.
    """

    def __init__(self, command: Sequence[str]):
        self.command = list(command)
        self.output: List[str] = []
        self._process: Optional[subprocess.Popen] = None
        self._threads: List[threading.Thread] = []
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._exhausted = False
        self._write_error: Optional[OSError] = None

    def start(self, raw_lines: Sequence[str]) -> None:
        try:
            self._process = subprocess.Popen(self.command, stdin=subprocess.PIPE, stdout=subprocess.PIPE)
        except OSError as exc:
            raise ProcessFault(f"Cannot run inner filter {self.command[0]!r}: {exc}") from exc

        self._threads = [
            threading.Thread(target=self._feed, args=(raw_lines,), name="filter-writer", daemon=True),
            threading.Thread(target=self._drain, name="filter-reader", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def lines(self) -> Iterator[str]:
        """Yield output lines as the filter produces them."""
        if self._process is None:
            raise ProcessFault("Inner filter was never started")
        while not self._exhausted:
            item = self._queue.get()
            if item is _END:
                self._exhausted = True
                return
            self.output.append(item)
            yield item

    def wait(self) -> List[str]:
        """Wait for the filter and return all of its output lines.

        Raises:
            ProcessFault: if the filter stopped reading early or exited non-zero.
        """
        for _ in self.lines():
            pass
        for thread in self._threads:
            thread.join()
        returncode = self._process.wait()
        if returncode != 0:
            raise ProcessFault(f"Inner filter {self.command[0]!r} exited with status {returncode}")
        if self._write_error is not None:
            raise ProcessFault(f"Inner filter {self.command[0]!r} stopped reading its input: {self._write_error}")
        return self.output

    def _feed(self, raw_lines: Sequence[str]) -> None:
        stdin = self._process.stdin
        try:
            for line in raw_lines:
                stdin.write(encode(line + "\n"))
        except OSError as exc:
            # The rest of the raw diff is discarded
            self._write_error = exc
        finally:
            try:
                stdin.close()
            except OSError:
                pass

    def _drain(self) -> None:
        stdout = self._process.stdout
        try:
            for chunk in iter(stdout.readline, b""):
                line = decode(chunk)
                self._queue.put(line[:-1] if line.endswith("\n") else line)
        finally:
            stdout.close()
            self._queue.put(_END)


class DiffAnnotator:
    """Runs one annotation pass over a raw diff.

    Resolving the ancestor bound and validating the format happen in the
    constructor, so configuration faults surface before any output.
    """

    def __init__(self, runner: GitRunner, settings: Settings):
        self.runner = runner
        self.settings = settings
        validate_format(settings.format)
        self.bound = resolve_ancestor_bound(runner, settings.back_to)
        self.revision = post_image_revision(runner, settings.diff_args) if settings.diff_args else None

    def annotate(self, raw_lines: Sequence[str], out: TextIO, err: TextIO) -> int:
        """Annotate ``raw_lines`` onto ``out``; candidate summaries go to ``err``.

        Returns the process exit status, which is 0 for every recoverable
        fault.
        """
        settings = self.settings
        parsed = parse_diff(raw_lines)

        inner: Optional[InnerFilter] = None
        if settings.inner:
            inner = InnerFilter(settings.inner)
            try:
                inner.start(raw_lines)
            except ProcessFault as exc:
                logger.warning("%s; showing the unfiltered diff", exc)
                inner = None

        if parsed.faulted:
            index = AttributionIndex({})
        else:
            resolver = BlameResolver(self.runner, bound=self.bound, abbrev=settings.abbrev, revision=self.revision)
            index = AttributionIndex.build(
                parsed.sections,
                resolver,
                max_workers=settings.jobs,
                describe=self._describe if settings.inline else None,
            )

        synchronizer = StreamSynchronizer(parsed, index, lookahead=settings.lookahead)
        pairs = synchronizer.identity()
        if inner is not None:
            # Alignment consumes the output as it arrives; nothing is written
            # until the filter has exited
            aligned = list(synchronizer.align(inner.lines()))
            try:
                inner.wait()
                pairs = iter(aligned)
            except ProcessFault as exc:
                logger.warning("%s; showing the unfiltered diff", exc)

        annotator = PrefixAnnotator(
            out,
            width=index.prefix_width(settings.abbrev),
            inline_width=settings.inline_width if settings.inline else 0,
        )
        annotator.write(pairs)
        annotator.emit_candidates(self.runner, settings.format, err, color=_isatty(err))
        return 0

    def _describe(self, shas: Sequence[str]) -> Mapping[str, str]:
        try:
            return self.runner.show_summaries(shas, INLINE_FORMAT)
        except GitCommandError as exc:
            logger.warning("Cannot summarize commits: %s", exc.stderr or exc)
            return {}


def _isatty(stream: TextIO) -> bool:
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())
