"""Exceptions for diff annotation."""

from __future__ import annotations

from typing import Sequence


class BlameDiffError(Exception):
    """Base exception for all annotation failures."""


class ConfigurationFault(BlameDiffError):
    """Raised for a bad ancestor ref or format string. Fatal."""


class ParseFault(BlameDiffError):
    """Raised when the diff is structurally inconsistent."""


class ResolutionFault(BlameDiffError):
    """Raised when blame cannot be obtained for a file."""


class SyncFault(BlameDiffError):
    """Raised when raw and filtered streams can no longer be aligned."""


class ProcessFault(BlameDiffError):
    """Raised when the inner filter fails to run or exits non-zero."""


class GitCommandError(ResolutionFault):
    """Raised when a git invocation exits non-zero."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(f"{' '.join(self.command)} exited with {returncode}: {self.stderr}")
