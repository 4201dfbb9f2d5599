"""Core data models shared by the parser, resolver, synchronizer and annotator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union


class LineKind(str, Enum):
    CONTEXT = "context"
    ADDED = "added"
    REMOVED = "removed"


class LineRole(str, Enum):
    """Structural role of a raw diff line."""

    FILE_HEADER = "file_header"
    HUNK_HEADER = "hunk_header"
    CONTENT = "content"
    META = "meta"


@dataclass
class DiffLine:
    kind: LineKind
    old_line_number: Optional[int]
    new_line_number: Optional[int]
    text: str

    def __post_init__(self):
        """Validate line-number constraints for each kind."""
        if self.kind == LineKind.ADDED and (self.new_line_number is None or self.old_line_number is not None):
            raise ValueError("Added lines carry only a new line number")
        if self.kind == LineKind.REMOVED and (self.old_line_number is None or self.new_line_number is not None):
            raise ValueError("Removed lines carry only an old line number")
        if self.kind == LineKind.CONTEXT and (self.old_line_number is None or self.new_line_number is None):
            raise ValueError("Context lines carry both line numbers")


@dataclass
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    header: str = ""
    section: str = ""
    lines: List[DiffLine] = field(default_factory=list)

    def new_line_numbers(self) -> List[int]:
        """Post-image positions of the added and context lines."""
        return [line.new_line_number for line in self.lines if line.new_line_number is not None]

    def is_consistent(self) -> bool:
        """Whether the line tally replays to the header counts."""
        old = sum(1 for line in self.lines if line.kind != LineKind.ADDED)
        new = sum(1 for line in self.lines if line.kind != LineKind.REMOVED)
        return old == self.old_count and new == self.new_count


@dataclass
class FileSection:
    """One file of a diff. ``None`` paths stand for ``/dev/null``."""

    old_path: Optional[str] = None
    new_path: Optional[str] = None
    hunks: List[Hunk] = field(default_factory=list)
    headers: List[str] = field(default_factory=list)
    faulted: bool = False

    @property
    def path(self) -> Optional[str]:
        """Blame key: the post-image path, else the pre-image one."""
        return self.new_path or self.old_path

    @property
    def is_new_file(self) -> bool:
        return self.old_path is None and self.new_path is not None

    @property
    def is_deleted_file(self) -> bool:
        return self.new_path is None and self.old_path is not None


@dataclass(frozen=True)
class CommitRef:
    sha: str
    short_id: str
    summary: Optional[str] = None


@dataclass(frozen=True)
class Attributed:
    ref: CommitRef


@dataclass(frozen=True)
class OutOfRange:
    """Owning commit is already part of the integration branch."""


@dataclass(frozen=True)
class Unknown:
    reason: str = ""
    uncommitted: bool = False


@dataclass(frozen=True)
class Neutral:
    """Line gets a blank spacer of the prefix width."""


@dataclass(frozen=True)
class Passthrough:
    """Line is emitted without any prefix."""


Attribution = Union[Attributed, OutOfRange, Unknown]
Annotation = Union[Attributed, OutOfRange, Unknown, Neutral, Passthrough]

NEUTRAL = Neutral()
PASSTHROUGH = Passthrough()
OUT_OF_RANGE = OutOfRange()


@dataclass
class RawLine:
    """A raw diff line together with what the parser made of it."""

    text: str
    role: LineRole
    section_index: Optional[int] = None
    diff_line: Optional[DiffLine] = None

    @property
    def is_content(self) -> bool:
        return self.role == LineRole.CONTENT


@dataclass
class ParsedDiff:
    sections: List[FileSection]
    raw_lines: List[RawLine]
    faulted: bool = False


@dataclass
class SyncCursor:
    raw_index: int = 0
    section_index: Optional[int] = None
    desynchronized: bool = False
    unmatched_run: int = 0
