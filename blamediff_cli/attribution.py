"""Attribution index: (file, post-image line) -> Attribution."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import config
from .blame import BlameResolver
from .models import Attributed, Attribution, CommitRef, FileSection, Unknown

logger = logging.getLogger(__name__)

Describe = Callable[[Sequence[str]], Mapping[str, str]]

_NOT_LOOKED_UP = Unknown(reason="line was not looked up")


def unique_short_ids(shas: Iterable[str], abbrev: int) -> Dict[str, str]:
    """Shortest prefixes of at least ``abbrev`` characters that stay unique."""
    shas = sorted(set(shas))
    width = abbrev
    while width < 64 and len({sha[:width] for sha in shas}) < len(shas):
        width += 1
    return {sha: sha[:width] for sha in shas}


class AttributionIndex:
    """Read-only mapping built once per diff."""

    def __init__(self, entries: Dict[Tuple[str, int], Attribution]):
        self._entries = entries

    @classmethod
    def build(
        cls,
        sections: Sequence[FileSection],
        resolver: BlameResolver,
        max_workers: int = config.DEFAULT_JOBS,
        describe: Optional[Describe] = None,
    ) -> "AttributionIndex":
        """Resolve every added/context line of every non-faulted section.

        Files are blamed concurrently, at most ``max_workers`` at a time.
        Removed lines have no post-image position and are never looked up.
        Each line is checked against the text the diff shows for it.
        """
        wanted: Dict[str, Dict[int, str]] = {}
        for section in sections:
            if section.faulted or section.new_path is None:
                continue
            lines = {
                line.new_line_number: line.text
                for hunk in section.hunks
                for line in hunk.lines
                if line.new_line_number is not None
            }
            if lines:
                wanted.setdefault(section.new_path, {}).update(lines)

        entries: Dict[Tuple[str, int], Attribution] = {}
        if not wanted:
            return cls(entries)

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            futures = {path: pool.submit(resolver.resolve, path, lines) for path, lines in wanted.items()}
            for path, future in futures.items():
                for line, attribution in future.result().items():
                    entries[(path, line)] = attribution

        return cls(_finalize_refs(entries, resolver.abbrev, describe))

    def lookup(self, path: Optional[str], line: Optional[int]) -> Attribution:
        if path is None or line is None:
            return _NOT_LOOKED_UP
        return self._entries.get((path, line), _NOT_LOOKED_UP)

    def refs(self) -> List[CommitRef]:
        """Distinct commit refs in the index, in line order."""
        seen: Dict[str, CommitRef] = {}
        for key in sorted(self._entries):
            attribution = self._entries[key]
            if isinstance(attribution, Attributed):
                seen.setdefault(attribution.ref.sha, attribution.ref)
        return list(seen.values())

    def prefix_width(self, abbrev: int = config.DEFAULT_ABBREV) -> int:
        """Width of the id column: the longest short id, at least ``abbrev``."""
        return max([abbrev] + [len(ref.short_id) for ref in self.refs()])

    def __len__(self) -> int:
        return len(self._entries)


def _finalize_refs(
    entries: Dict[Tuple[str, int], Attribution],
    abbrev: int,
    describe: Optional[Describe],
) -> Dict[Tuple[str, int], Attribution]:
    """Make short ids unique and attach inline summaries; one ref per sha."""
    shas = sorted({a.ref.sha for a in entries.values() if isinstance(a, Attributed)})
    if not shas:
        return entries

    short_ids = unique_short_ids(shas, abbrev)
    summaries: Mapping[str, str] = {}
    if describe is not None:
        summaries = describe(shas)

    finalized: Dict[str, Attributed] = {}
    for key, attribution in entries.items():
        if not isinstance(attribution, Attributed):
            continue
        sha = attribution.ref.sha
        if sha not in finalized:
            ref = replace(attribution.ref, short_id=short_ids[sha], summary=summaries.get(sha))
            finalized[sha] = Attributed(ref)
        entries[key] = finalized[sha]
    return entries
