"""Write annotated lines and report the commits they point at."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, TextIO, Tuple

from . import config
from .errors import GitCommandError
from .gitcmd import GitRunner
from .models import Annotation, Attributed, CommitRef, Neutral, OutOfRange, Unknown

logger = logging.getLogger(__name__)


class PrefixAnnotator:
    """Prefixes each line with a fixed-width attribution column.

    Args:
        out: Stream receiving the annotated diff.
        width: Width of the commit id column.
        inline_width: Width of the summary column, used only when the
            attributed refs carry a summary.
    """

    def __init__(self, out: TextIO, width: int = config.DEFAULT_ABBREV, inline_width: int = 0):
        self.out = out
        self.width = width
        self.inline_width = inline_width
        self._candidates: Dict[str, CommitRef] = {}

    @property
    def candidates(self) -> List[CommitRef]:
        """Attributed commits in order of first appearance."""
        return list(self._candidates.values())

    @property
    def column_width(self) -> int:
        if self.inline_width:
            return self.width + 1 + self.inline_width
        return self.width

    def prefix(self, annotation: Annotation) -> str:
        if isinstance(annotation, Attributed):
            ref = annotation.ref
            self._candidates.setdefault(ref.sha, ref)
            column = ref.short_id.ljust(self.width)
            if self.inline_width:
                summary = (ref.summary or "")[: self.inline_width]
                column = f"{column} {summary.ljust(self.inline_width)}"
            return f"{column} "
        if isinstance(annotation, OutOfRange):
            return config.OUT_OF_RANGE_GLYPH * self.column_width + " "
        if isinstance(annotation, Unknown):
            glyph = config.UNCOMMITTED_GLYPH if annotation.uncommitted else config.UNKNOWN_GLYPH
            return glyph * self.column_width + " "
        if isinstance(annotation, Neutral):
            return " " * (self.column_width + 1)
        return ""

    def write(self, pairs: Iterable[Tuple[str, Annotation]]) -> int:
        """Write every line with its prefix; returns the number of lines."""
        count = 0
        for line, annotation in pairs:
            self.out.write(f"{self.prefix(annotation)}{line}\n")
            count += 1
        self.out.flush()
        return count

    def emit_candidates(self, runner: GitRunner, fmt: str, err: TextIO, color: bool = False) -> None:
        """Print one summary line per candidate commit on ``err``.

        Commits git cannot format fall back to their short id.
        """
        candidates = self.candidates
        if not candidates:
            return
        try:
            summaries = runner.show_summaries([ref.sha for ref in candidates], fmt, color=color)
        except GitCommandError as exc:
            logger.warning("Cannot format candidate commits: %s", exc.stderr or exc)
            summaries = {}
        for ref in candidates:
            err.write(f"{summaries.get(ref.sha, ref.short_id)}\n")
        err.flush()
