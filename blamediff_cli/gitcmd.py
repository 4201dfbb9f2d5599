"""Thin wrapper around the git executable.

Every collaborator the annotator needs from the revision-control side
(diff, blame, merge-base, commit formatting) goes through ``GitRunner`` so
tests can substitute a fake with the same methods.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import GitCommandError

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
ERRORS = "surrogateescape"

# Separates the full hash from the user's format in `git show` records
_FIELD_SEP = "\x1f"


def decode(data: bytes) -> str:
    return data.decode(ENCODING, ERRORS)


def encode(text: str) -> bytes:
    return text.encode(ENCODING, ERRORS)


class GitRunner:
    """Runs git commands in a fixed working directory."""

    def __init__(self, cwd: Optional[Path] = None, executable: str = "git"):
        self.cwd = cwd
        self.executable = executable

    def run(self, *args: str) -> str:
        """Run ``git <args>`` and return its standard output.

        Raises:
            GitCommandError: if git cannot be started or exits non-zero.
        """
        command = [self.executable, *args]
        logger.debug("Running %s", " ".join(command))
        try:
            result = subprocess.run(command, cwd=self.cwd, capture_output=True)
        except OSError as exc:
            raise GitCommandError(command, -1, str(exc)) from exc
        if result.returncode != 0:
            raise GitCommandError(command, result.returncode, decode(result.stderr))
        return decode(result.stdout)

    def toplevel(self) -> Path:
        return Path(self.run("rev-parse", "--show-toplevel").strip())

    def rev_parse(self, rev: str) -> str:
        return self.run("rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}").strip()

    def merge_base(self, first: str, second: str) -> str:
        return self.run("merge-base", first, second).strip()

    def diff(self, args: Sequence[str]) -> str:
        return self.run("diff", "--no-color", "--no-ext-diff", *args)

    def blame_porcelain(
        self,
        path: str,
        ranges: Iterable[Tuple[int, int]],
        bound: Optional[str] = None,
        revision: Optional[str] = None,
    ) -> str:
        """Blame ``path`` at ``revision`` (the working tree when None) over inclusive ranges.

        With ``bound`` the walk stops at that commit: lines it owns come
        back flagged ``boundary``. Without it root commits are reported as
        ordinary commits.
        """
        args: List[str] = ["blame", "--porcelain"]
        for start, end in ranges:
            args += ["-L", f"{start},{end}"]
        if bound:
            args.append(f"^{bound}")
        else:
            args.append("--root")
        if revision:
            args.append(revision)
        args += ["--", path]
        return self.run(*args)

    def show_summaries(self, shas: Sequence[str], fmt: str, color: bool = False) -> Dict[str, str]:
        """Format each commit with ``fmt``; returns ``{full sha: line}``."""
        if not shas:
            return {}
        output = self.run(
            "show",
            "-s",
            "-z",
            "--color=always" if color else "--no-color",
            f"--format=%H{_FIELD_SEP}{fmt}",
            *shas,
        )
        summaries: Dict[str, str] = {}
        for record in output.split("\0"):
            record = record.strip("\n")
            if _FIELD_SEP not in record:
                continue
            sha, summary = record.split(_FIELD_SEP, 1)
            summaries[sha.strip()] = summary
        return summaries
