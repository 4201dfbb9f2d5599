"""Per-file blame resolution with an optional ancestor bound.

Blame reads the post-image from the working tree, or from a commit when the
diff compares two commits. Every blamed line is checked against the text
the diff shows for it; a line that differs resolves to Unknown rather than
to whatever commit happens to own that line number elsewhere.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from . import config
from .errors import ConfigurationFault, GitCommandError
from .gitcmd import GitRunner
from .models import OUT_OF_RANGE, Attributed, Attribution, CommitRef, Unknown

logger = logging.getLogger(__name__)

# <sha> <orig line> <final line> [<lines in group>]
_PORCELAIN_HEADER = re.compile(r"^(?P<sha>[0-9a-f]{40}(?:[0-9a-f]{24})?) \d+ (?P<final>\d+)(?: \d+)?$")


def is_null_sha(sha: str) -> bool:
    return set(sha) == {"0"}


def coalesce(lines: Iterable[int]) -> List[Tuple[int, int]]:
    """Merge line numbers into sorted inclusive ``(start, end)`` ranges."""
    ranges: List[Tuple[int, int]] = []
    for line in sorted(set(lines)):
        if ranges and line == ranges[-1][1] + 1:
            ranges[-1] = (ranges[-1][0], line)
        else:
            ranges.append((line, line))
    return ranges


def parse_porcelain(output: str) -> Tuple[Dict[int, str], Set[str], Dict[int, str]]:
    """Parse ``git blame --porcelain``.

    Returns:
        ``({final line: sha}, {shas flagged boundary}, {final line: content})``
    """
    owners: Dict[int, str] = {}
    contents: Dict[int, str] = {}
    boundary: Set[str] = set()
    sha: Optional[str] = None
    final = 0

    for line in output.split("\n"):
        if line.startswith("\t"):
            if sha is not None:
                owners[final] = sha
                contents[final] = line[1:]
            sha = None
            continue
        match = _PORCELAIN_HEADER.match(line)
        if match:
            sha = match.group("sha")
            final = int(match.group("final"))
        elif line == "boundary" and sha is not None:
            boundary.add(sha)

    return owners, boundary, contents


def resolve_ancestor_bound(runner: GitRunner, refs: Sequence[str]) -> Optional[str]:
    """Resolve the "back-to" cutoff: merge-base of HEAD and the first valid ref.

    Raises:
        ConfigurationFault: if no ref resolves or there is no common ancestor.
    """
    if not refs:
        return None
    for ref in refs:
        try:
            runner.rev_parse(ref)
        except GitCommandError:
            logger.debug("Skipping unresolvable back-to ref '%s'", ref)
            continue
        try:
            bound = runner.merge_base("HEAD", ref)
        except GitCommandError as exc:
            raise ConfigurationFault(f"No common ancestor between HEAD and '{ref}'") from exc
        logger.debug("Blaming back to %s (merge-base of HEAD and %s)", bound, ref)
        return bound
    raise ConfigurationFault(f"Cannot resolve back-to ref(s): {', '.join(refs)}")


def post_image_revision(runner: GitRunner, diff_args: Sequence[str]) -> Optional[str]:
    """Commit holding the new side of ``git diff <diff_args>``, if any.

    ``A..B``, ``A...B`` and ``A B`` compare two commits and the new side is
    ``B``. With fewer revisions the new side is the index or the working
    tree, and None is returned.
    """
    revisions: List[str] = []
    for arg in diff_args:
        if arg == "--":
            break
        if arg.startswith("-"):
            continue
        if ".." in arg:
            new = arg.split("...", 1)[1] if "..." in arg else arg.split("..", 1)[1]
            try:
                return runner.rev_parse(new or "HEAD")
            except GitCommandError:
                return None
        try:
            revisions.append(runner.rev_parse(arg))
        except GitCommandError:
            continue
    return revisions[-1] if len(revisions) >= 2 else None


BlameEntry = Tuple[Attribution, Optional[str]]

_CONTENT_MISMATCH = Unknown(reason="blamed content differs from the diff")


class BlameResolver:
    """Resolves post-image lines of a file to their owning commits.

    All lines requested for a file are blamed with a single git invocation.
    The result is cached per file; the first resolution of a file wins, so
    concurrent callers always observe the same map.
    """

    def __init__(
        self,
        runner: GitRunner,
        bound: Optional[str] = None,
        abbrev: int = config.DEFAULT_ABBREV,
        revision: Optional[str] = None,
    ):
        self.runner = runner
        self.bound = bound
        self.abbrev = abbrev
        self.revision = revision
        self._cache: Dict[str, Dict[int, BlameEntry]] = {}
        self._refs: Dict[str, CommitRef] = {}
        self._lock = threading.Lock()

    def resolve(self, path: str, lines: Union[Iterable[int], Mapping[int, str]]) -> Dict[int, Attribution]:
        """Map each requested post-image line of ``path`` to an Attribution.

        When ``lines`` maps line numbers to the text the diff shows there,
        lines whose blamed content differs resolve to Unknown.
        """
        expected: Mapping[int, str] = lines if isinstance(lines, Mapping) else {}
        wanted = sorted(set(lines))
        if not wanted:
            return {}

        blamed = self._entries(path, wanted)
        result: Dict[int, Attribution] = {}
        mismatched = 0
        for line in wanted:
            attribution, content = blamed[line]
            if line in expected and content is not None and content != expected[line]:
                attribution = _CONTENT_MISMATCH
                mismatched += 1
            result[line] = attribution

        if mismatched:
            logger.warning(
                "%d line(s) of %s differ from %s; leaving them unattributed",
                mismatched,
                path,
                self.revision or "the working tree",
            )
        return result

    def _entries(self, path: str, wanted: List[int]) -> Dict[int, BlameEntry]:
        cached = self._cache.get(path)
        if cached is not None:
            missing = [line for line in wanted if line not in cached]
            if not missing:
                return cached
            merged = self._blame(path, missing)
            merged.update(cached)
            return merged

        blamed = self._blame(path, wanted)
        with self._lock:
            cached = self._cache.setdefault(path, blamed)
        merged = dict(blamed)
        merged.update(cached)
        return merged

    def _ref(self, sha: str) -> CommitRef:
        with self._lock:
            ref = self._refs.get(sha)
            if ref is None:
                ref = self._refs[sha] = CommitRef(sha=sha, short_id=sha[: self.abbrev])
            return ref

    def _blame(self, path: str, wanted: List[int]) -> Dict[int, BlameEntry]:
        try:
            output = self.runner.blame_porcelain(path, coalesce(wanted), self.bound, self.revision)
        except GitCommandError as exc:
            logger.warning("Cannot blame %s: %s", path, exc.stderr or exc)
            unknown = Unknown(reason=exc.stderr or str(exc))
            return {line: (unknown, None) for line in wanted}

        owners, boundary, contents = parse_porcelain(output)
        result: Dict[int, BlameEntry] = {}
        for line in wanted:
            sha = owners.get(line)
            if sha is None:
                result[line] = (Unknown(reason="no blame for line"), None)
            elif is_null_sha(sha):
                result[line] = (Unknown(reason="not committed yet", uncommitted=True), contents.get(line))
            elif self.bound and sha in boundary:
                result[line] = (OUT_OF_RANGE, contents.get(line))
            else:
                result[line] = (Attributed(self._ref(sha)), contents.get(line))
        return result
