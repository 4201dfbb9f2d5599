"""Streaming parser for unified diffs.

The parser consumes one raw line at a time and reports the structural role
of each line as it goes. Hunk bodies are consumed by the counts announced in
their ``@@`` header, so a context line that happens to read ``--- foo`` or
``@@ bar`` is still content. Counts that disagree with the lines that
follow are a parse fault: the affected file section is passed through
verbatim instead of risking shifted line numbers.
"""

from __future__ import annotations

import codecs
import logging
import re
from typing import Iterable, List, Optional

from rich.text import Text

from .errors import ParseFault
from .models import DiffLine, FileSection, Hunk, LineKind, LineRole, ParsedDiff, RawLine

logger = logging.getLogger(__name__)

HUNK_HEADER_RE = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@(?P<section>.*)$"
)
DIFF_GIT_RE = re.compile(r"^diff --git (?P<old>\S+) (?P<new>\S+)$")

DEV_NULL = "/dev/null"


def strip_ansi(line: str) -> str:
    """Drop terminal escape sequences, keeping a trailing carriage return."""
    if "\x1b" not in line:
        return line
    body = line.rstrip("\r")
    return Text.from_ansi(body).plain + line[len(body):]


def parse_path(raw: str, prefix: str) -> Optional[str]:
    """Turn the operand of a ``---``/``+++`` line into a repository path."""
    raw = raw.split("\t", 1)[0].rstrip()
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        unquoted, _ = codecs.escape_decode(raw[1:-1].encode("utf-8", "surrogateescape"))
        raw = unquoted.decode("utf-8", "surrogateescape")
    if raw == DEV_NULL:
        return None
    if raw.startswith(prefix):
        raw = raw[len(prefix):]
    return raw


class DiffParser:
    """Line-at-a-time unified diff parser.

    ``feed`` returns a ``RawLine`` for every input line and raises
    ``ParseFault`` as soon as the stream contradicts a hunk header.
    """

    def __init__(self):
        self.sections: List[FileSection] = []
        self._section: Optional[FileSection] = None
        self._hunk: Optional[Hunk] = None
        self._old_left = 0
        self._new_left = 0
        self._old_no = 0
        self._new_no = 0
        self._skipping = False
        self._saw_old_path = False
        self._pending_old: Optional[RawLine] = None

    @property
    def section_index(self) -> Optional[int]:
        return len(self.sections) - 1 if self._section is not None else None

    @property
    def current_section(self) -> Optional[FileSection]:
        return self._section

    def feed(self, line: str) -> RawLine:
        plain = strip_ansi(line)

        if self._skipping:
            if plain.startswith("diff "):
                self._skipping = False
                self._pending_old = None
                return self._header_line(line, plain)
            if plain.startswith("+++ ") and self._pending_old is not None:
                return self._resume_at(self._pending_old, line, plain)
            raw = RawLine(line, LineRole.META, self.section_index)
            self._pending_old = raw if plain.startswith("--- ") else None
            return raw

        if self._hunk is not None:
            if self._old_left > 0 or self._new_left > 0:
                return self._hunk_line(line, plain)
            self._hunk = None
            if plain.startswith("\\"):
                return self._meta(line)

        return self._header_line(line, plain)

    def finish(self) -> None:
        """Check that the input did not end inside a hunk."""
        if self._hunk is not None and (self._old_left > 0 or self._new_left > 0):
            hunk = self._hunk
            self._hunk = None
            raise ParseFault(
                f"Diff ended inside hunk '{hunk.header}' with "
                f"{self._old_left} old / {self._new_left} new line(s) missing"
            )

    def fault(self) -> Optional[FileSection]:
        """Abandon the current section after a ``ParseFault``.

        Lines are reported as meta until the next ``diff`` header or
        ``---``/``+++`` pair. Returns
        the faulted section, or None when no section had started.
        """
        self._hunk = None
        self._pending_old = None
        section = self._section
        if section is not None:
            section.faulted = True
            self._skipping = True
        return section

    def _resume_at(self, old_header: RawLine, line: str, plain: str) -> RawLine:
        """Open a new section on a ``---``/``+++`` pair met while skipping."""
        self._skipping = False
        self._pending_old = None
        section = self._start_section()
        self._saw_old_path = True
        section.old_path = parse_path(strip_ansi(old_header.text)[4:], "a/")
        section.headers.append(old_header.text)
        old_header.role = LineRole.FILE_HEADER
        old_header.section_index = self.section_index
        return self._header_line(line, plain)

    def _meta(self, line: str) -> RawLine:
        if self._section is not None and self._hunk is None:
            self._section.headers.append(line)
        return RawLine(line, LineRole.META, self.section_index)

    def _hunk_line(self, line: str, plain: str) -> RawLine:
        hunk = self._hunk
        marker, text = plain[:1], plain[1:]

        if marker == "\\":
            return RawLine(line, LineRole.META, self.section_index)

        if marker in ("", " "):
            if self._old_left == 0 or self._new_left == 0:
                raise ParseFault(f"Context line overruns hunk '{hunk.header}'")
            diff_line = DiffLine(LineKind.CONTEXT, self._old_no, self._new_no, text)
            self._old_no += 1
            self._new_no += 1
            self._old_left -= 1
            self._new_left -= 1
        elif marker == "+":
            if self._new_left == 0:
                raise ParseFault(f"Added line overruns hunk '{hunk.header}'")
            diff_line = DiffLine(LineKind.ADDED, None, self._new_no, text)
            self._new_no += 1
            self._new_left -= 1
        elif marker == "-":
            if self._old_left == 0:
                raise ParseFault(f"Removed line overruns hunk '{hunk.header}'")
            diff_line = DiffLine(LineKind.REMOVED, self._old_no, None, text)
            self._old_no += 1
            self._old_left -= 1
        else:
            raise ParseFault(
                f"Hunk '{hunk.header}' cut short: {self._old_left} old / "
                f"{self._new_left} new line(s) missing"
            )

        hunk.lines.append(diff_line)
        return RawLine(line, LineRole.CONTENT, self.section_index, diff_line)

    def _start_section(self) -> FileSection:
        self._section = FileSection()
        self._saw_old_path = False
        self.sections.append(self._section)
        return self._section

    def _header_line(self, line: str, plain: str) -> RawLine:
        if plain.startswith("diff "):
            section = self._start_section()
            match = DIFF_GIT_RE.match(plain)
            if match:
                section.old_path = parse_path(match.group("old"), "a/")
                section.new_path = parse_path(match.group("new"), "b/")
            section.headers.append(line)
            return RawLine(line, LineRole.FILE_HEADER, self.section_index)

        if plain.startswith("--- "):
            section = self._section
            if section is None or section.hunks or self._saw_old_path:
                section = self._start_section()
            self._saw_old_path = True
            section.old_path = parse_path(plain[4:], "a/")
            section.headers.append(line)
            return RawLine(line, LineRole.FILE_HEADER, self.section_index)

        if plain.startswith("+++ "):
            section = self._section if self._section is not None and not self._section.hunks else self._start_section()
            section.new_path = parse_path(plain[4:], "b/")
            section.headers.append(line)
            return RawLine(line, LineRole.FILE_HEADER, self.section_index)

        if plain.startswith("@@"):
            if self._section is None:
                raise ParseFault(f"Hunk header before any file header: {plain!r}")
            match = HUNK_HEADER_RE.match(plain)
            if not match:
                raise ParseFault(f"Malformed hunk header: {plain!r}")
            old_count = match.group("old_count")
            new_count = match.group("new_count")
            hunk = Hunk(
                old_start=int(match.group("old_start")),
                old_count=1 if old_count is None else int(old_count),
                new_start=int(match.group("new_start")),
                new_count=1 if new_count is None else int(new_count),
                header=plain,
                section=match.group("section").strip(),
            )
            self._section.hunks.append(hunk)
            self._hunk = hunk
            self._old_left, self._new_left = hunk.old_count, hunk.new_count
            self._old_no, self._new_no = hunk.old_start, hunk.new_start
            return RawLine(line, LineRole.HUNK_HEADER, self.section_index)

        if plain[:1] in ("+", "-", " ") and self._section is not None and self._section.hunks:
            raise ParseFault(f"Diff line outside any hunk: {plain!r}")

        return self._meta(line)


def parse_diff(lines: Iterable[str]) -> ParsedDiff:
    """Parse raw diff lines (without trailing newlines).

    Parse faults never propagate: a faulted section has all of its lines
    demoted to meta lines so they are passed through unannotated. A fault
    before the first file header disables annotation for the whole diff.
    """
    parser = DiffParser()
    raw_lines: List[RawLine] = []
    whole_faulted = False

    for line in lines:
        if whole_faulted:
            raw_lines.append(RawLine(line, LineRole.META))
            continue
        try:
            raw_lines.append(parser.feed(line))
        except ParseFault as exc:
            section = parser.fault()
            logger.warning("Not annotating %s: %s", _describe(section), exc)
            if section is None:
                whole_faulted = True
                raw_lines.append(RawLine(line, LineRole.META))
            else:
                # the offending line may open the next section
                raw_lines.append(parser.feed(line))

    if not whole_faulted:
        try:
            parser.finish()
        except ParseFault as exc:
            section = parser.fault()
            logger.warning("Not annotating %s: %s", _describe(section), exc)

    faulted = {index for index, section in enumerate(parser.sections) if section.faulted}
    if faulted:
        for raw in raw_lines:
            if raw.section_index in faulted:
                raw.role = LineRole.META
                raw.diff_line = None

    return ParsedDiff(sections=parser.sections, raw_lines=raw_lines, faulted=whole_faulted)


def _describe(section: Optional[FileSection]) -> str:
    if section is None:
        return "diff"
    return section.path or "<unknown file>"
