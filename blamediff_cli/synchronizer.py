"""Re-align per-line attribution with a (possibly reformatted) diff stream.

Without an inner filter the output is the raw diff itself and every line
keeps its own attribution. With a filter, the filter's output is walked
with a cursor over the raw lines: each output line is matched against the
raw lines ahead of the cursor, in order, using only what survives
cosmetic reformatting (the line's text with colour, case and whitespace
ignored, file paths on file headers and the line ranges of hunk headers).

Raw lines skipped by a match were dropped by the filter and are never
emitted. An output line that swallows several raw content lines takes the
attribution of the first one. When alignment is lost, the rest of the file
section is passed through without any attribution until a later file
header lines up again.
"""

from __future__ import annotations

import logging
import re
from bisect import bisect_left
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple

from . import config
from .attribution import AttributionIndex
from .diff_parser import strip_ansi
from .errors import SyncFault
from .models import (
    NEUTRAL,
    PASSTHROUGH,
    Annotation,
    LineKind,
    LineRole,
    ParsedDiff,
    RawLine,
    SyncCursor,
)

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_HUNK_SHAPE = re.compile(r"@@.*@@")
_HUNK_RANGES = re.compile(r"^@@ (-\S+ \+\S+) @@")

# Texts shorter than this only match at the end of an output line
MIN_CONTAINED = 4

# Match strength, strongest last
_CONTAINED, _SAME_TEXT, _EXACT = range(3)


def normalize(line: str) -> str:
    return _WHITESPACE.sub("", strip_ansi(line)).casefold()


def _has_letters(text: str) -> bool:
    return any(ch.isalpha() for ch in text)


@dataclass
class _Key:
    full: str
    text: str = ""
    anchor: str = ""


class StreamSynchronizer:
    """Pairs output lines with the annotation of the raw line they render."""

    def __init__(self, parsed: ParsedDiff, index: AttributionIndex, lookahead: int = config.DEFAULT_LOOKAHEAD):
        self.parsed = parsed
        self.index = index
        self.lookahead = max(1, lookahead)
        self.raw: List[RawLine] = parsed.raw_lines
        self.cursor = SyncCursor()
        self.faults: List[SyncFault] = []
        self._keys = [self._key(raw) for raw in self.raw]
        self._file_headers = [i for i, raw in enumerate(self.raw) if raw.role == LineRole.FILE_HEADER]
        # index of the first content line at or after each position
        self._next_content = [len(self.raw)] * (len(self.raw) + 1)
        for i in range(len(self.raw) - 1, -1, -1):
            self._next_content[i] = i if self.raw[i].role == LineRole.CONTENT else self._next_content[i + 1]

    def annotation_for(self, raw: RawLine) -> Annotation:
        """Annotation of a raw line when it is emitted unchanged."""
        if self.parsed.faulted or raw.role != LineRole.CONTENT or raw.diff_line is None:
            return PASSTHROUGH
        if raw.diff_line.kind == LineKind.REMOVED:
            return NEUTRAL
        section = self.parsed.sections[raw.section_index]
        return self.index.lookup(section.new_path, raw.diff_line.new_line_number)

    def identity(self) -> Iterator[Tuple[str, Annotation]]:
        for raw in self.raw:
            yield raw.text, self.annotation_for(raw)

    def align(self, output_lines: Iterable[str]) -> Iterator[Tuple[str, Annotation]]:
        for line in output_lines:
            yield line, self.step(line)

    def step(self, line: str) -> Annotation:
        """Classify one output line and advance the cursor."""
        if self.parsed.faulted:
            return PASSTHROUGH

        cursor = self.cursor
        norm = normalize(line)

        if cursor.desynchronized:
            found = self._find_later_file_header(norm)
            if found is not None:
                self._resync(found)
            return PASSTHROUGH

        if cursor.raw_index >= len(self.raw):
            if norm:
                self._desync("filter output continues after the end of the diff")
            return PASSTHROUGH

        found = self._match(norm)
        if found is None:
            if _HUNK_SHAPE.search(strip_ansi(line)):
                self._desync(f"hunk header {line.strip()!r} has no counterpart")
                return PASSTHROUGH
            cursor.unmatched_run += 1
            if cursor.unmatched_run > self.lookahead and self._content_pending():
                self._desync(f"{cursor.unmatched_run} consecutive output lines matched nothing")
                return PASSTHROUGH
            return NEUTRAL

        index, end = found
        cursor.unmatched_run = 0
        cursor.raw_index = end + 1
        cursor.section_index = self.raw[index].section_index
        return self.annotation_for(self.raw[index])

    def _key(self, raw: RawLine) -> _Key:
        key = _Key(full=normalize(raw.text))
        if raw.role == LineRole.CONTENT and raw.diff_line is not None:
            key.text = normalize(raw.diff_line.text)
        elif raw.role == LineRole.HUNK_HEADER:
            match = _HUNK_RANGES.match(strip_ansi(raw.text))
            if match:
                key.anchor = normalize(match.group(1))
        elif raw.role == LineRole.FILE_HEADER and raw.section_index is not None:
            section = self.parsed.sections[raw.section_index]
            path = section.new_path or section.old_path
            if path:
                key.anchor = normalize(path)
        return key

    def _match(self, norm: str) -> Optional[Tuple[int, int]]:
        """Raw line ahead of the cursor that ``norm`` renders best.

        Returns ``(matched index, last absorbed index)``. The whole window is
        scored: an exact rendering beats containment, a longer contained
        text beats a shorter one it overlaps, and ties go to the earliest line. The
        search never enters the hunks of a following file section.
        """
        start = self.cursor.raw_index
        limit = min(len(self.raw), start + self.lookahead)
        start_section = self.raw[start].section_index
        content_skipped = False
        best: Optional[Tuple[Tuple[int, int], int, int]] = None

        for index in range(start, limit):
            raw = self.raw[index]
            if raw.section_index != start_section and raw.role not in (LineRole.FILE_HEADER, LineRole.META):
                break
            found = self._corresponds(norm, index, weak_allowed=not content_skipped)
            if found is not None:
                pos, score = found
                if best is None or (score > best[0] and not self._merged_after(best, index, pos, score)):
                    best = (score, index, pos)
                    if score[0] == _EXACT:
                        break
            elif raw.role == LineRole.CONTENT:
                content_skipped = True

        if best is None:
            return None
        _, index, pos = best
        return index, self._absorb(norm, index, pos)

    def _merged_after(
        self, best: Tuple[Tuple[int, int], int, int], index: int, pos: int, score: Tuple[int, int]
    ) -> bool:
        """Whether a contained text lies wholly after the current best one.

        Both then belong to one merged output line, and the earlier raw line
        keeps the match.
        """
        best_score, best_index, best_pos = best
        if score[0] != _CONTAINED or best_score[0] != _CONTAINED:
            return False
        if self.raw[index].role != LineRole.CONTENT or self.raw[best_index].role != LineRole.CONTENT:
            return False
        return pos - score[1] >= best_pos

    def _corresponds(self, norm: str, index: int, weak_allowed: bool) -> Optional[Tuple[int, Tuple[int, int]]]:
        """``(position in norm after the match, score)``, or None when unrelated."""
        raw = self.raw[index]
        key = self._keys[index]

        if norm == key.full:
            return len(norm), (_EXACT, 0)

        if raw.role == LineRole.CONTENT:
            if key.text and norm == key.text:
                return len(norm), (_SAME_TEXT, 0)
            if len(key.text) >= MIN_CONTAINED:
                pos = norm.find(key.text)
                return None if pos < 0 else (pos + len(key.text), (_CONTAINED, len(key.text)))
            if not weak_allowed:
                return None
            if key.text:
                return (len(norm), (_CONTAINED, 0)) if norm.endswith(key.text) else None
            if not _has_letters(norm) and not _HUNK_SHAPE.search(norm):
                return len(norm), (_CONTAINED, 0)
            return None

        if raw.role in (LineRole.FILE_HEADER, LineRole.HUNK_HEADER) and key.anchor:
            if norm.find(key.anchor) < 0:
                return None
            return len(norm), (_CONTAINED, len(key.anchor))

        return None

    def _absorb(self, norm: str, index: int, pos: int) -> int:
        """Consume following raw content lines merged into the same output line."""
        if self.raw[index].role != LineRole.CONTENT:
            return index
        end = index
        for nxt in range(index + 1, len(self.raw)):
            if self.raw[nxt].role != LineRole.CONTENT:
                break
            text = self._keys[nxt].text
            if not text:
                break
            found = norm.find(text, pos)
            if found < 0:
                break
            pos = found + len(text)
            end = nxt
        return end

    def _content_pending(self) -> bool:
        start = self.cursor.raw_index
        nxt = self._next_content[start]
        return nxt < len(self.raw) and self.raw[nxt].section_index == self.raw[start].section_index

    def _find_later_file_header(self, norm: str) -> Optional[int]:
        current = self.cursor.section_index
        for index in self._file_headers[bisect_left(self._file_headers, self.cursor.raw_index):]:
            if self.raw[index].section_index == current:
                continue
            if self._corresponds(norm, index, weak_allowed=False) is not None:
                return index
        return None

    def _resync(self, index: int) -> None:
        cursor = self.cursor
        cursor.raw_index = index + 1
        cursor.section_index = self.raw[index].section_index
        cursor.desynchronized = False
        cursor.unmatched_run = 0
        logger.debug("Realigned with filter output at raw line %d", index + 1)

    def _desync(self, reason: str) -> None:
        cursor = self.cursor
        if cursor.raw_index < len(self.raw):
            cursor.section_index = self.raw[cursor.raw_index].section_index
        cursor.desynchronized = True
        cursor.unmatched_run = 0
        fault = SyncFault(reason)
        self.faults.append(fault)
        path = None
        if cursor.section_index is not None:
            path = self.parsed.sections[cursor.section_index].path
        logger.warning("Lost alignment with filter output in %s: %s", path or "diff", reason)
