"""Pytest configuration and fixtures for blamediff tests."""

import shutil
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

from blamediff_cli.errors import GitCommandError

SHA_ABC = "abc1234" + "a" * 33
SHA_DEF = "def5678" + "d" * 33
SHA_ROOT = "0123456" + "7" * 33
NULL_SHA = "0" * 40

SAMPLE_PATCH = """\
diff --git a/tests/bar.txt b/tests/bar.txt
index 6d0a9487a999..5aa46cc774fb 100644
--- a/tests/bar.txt
+++ b/tests/bar.txt
@@ -1,10 +1,10 @@
-bar
+barbara
 0.5
 1
 2
 3
 foobar
 bar ba baz
-a
-b
+A
+B
 C
diff --git a/tests/foo.txt b/tests/foo.txt
index 06259808ba40..482e77c74da8 100644
--- a/tests/foo.txt
+++ b/tests/foo.txt
@@ -1,5 +1,5 @@
 foo
-bar
+baz
 a
 b
 c
@@ -7,7 +7,7 @@ d
 +
 -
 +++
-extra
+wtextra
 bla
 ---
 @@ foo
@@ -25,4 +25,3 @@ bar
 10
 11
 12
-13
"""


def make_porcelain(
    owners: Dict[int, str], boundary: Iterable[str] = (), contents: Optional[Dict[int, str]] = None
) -> str:
    """Build ``git blame --porcelain`` output for ``{final line: sha}``.

    Line content defaults to ``line <n>``.
    """
    contents = contents or {}
    boundary = set(boundary)
    seen = set()
    out: List[str] = []
    for line, sha in sorted(owners.items()):
        out.append(f"{sha} {line} {line} 1")
        if sha not in seen:
            seen.add(sha)
            out += ["author Test", "author-mail <test@example.com>", f"summary commit {sha[:7]}"]
            if sha in boundary:
                out.append("boundary")
            out.append("filename f.txt")
        out.append("\t" + contents.get(line, f"line {line}"))
    return "\n".join(out) + "\n"


class FakeGitRunner:
    """In-memory stand-in for ``GitRunner``.

    Args:
        owners: ``{path: {line: sha}}`` as the working-tree blame would report.
        boundary: shas flagged ``boundary`` when a bound is active.
        refs: ``{ref: sha}`` that ``rev_parse`` accepts.
        merge_bases: ``{ref: sha}`` returned by ``merge_base("HEAD", ref)``.
        summaries: ``{sha: text}`` returned by ``show_summaries``.
        failing: paths whose blame raises ``GitCommandError``.
        contents: ``{path: {line: text}}`` reported as the blamed content.
    """

    def __init__(
        self,
        owners: Optional[Dict[str, Dict[int, str]]] = None,
        boundary: Iterable[str] = (),
        refs: Optional[Dict[str, str]] = None,
        merge_bases: Optional[Dict[str, str]] = None,
        summaries: Optional[Dict[str, str]] = None,
        failing: Iterable[str] = (),
        contents: Optional[Dict[str, Dict[int, str]]] = None,
    ):
        self.owners = owners or {}
        self.boundary = set(boundary)
        self.refs = refs or {}
        self.merge_bases = merge_bases or {}
        self.summaries = summaries or {}
        self.failing = set(failing)
        self.contents = contents or {}
        self.blame_calls: List[Tuple[str, List[Tuple[int, int]], Optional[str]]] = []
        self.show_calls: List[Tuple[List[str], str]] = []
        self.blame_revisions: List[Optional[str]] = []

    def blame_porcelain(self, path: str, ranges, bound: Optional[str] = None, revision: Optional[str] = None) -> str:
        ranges = list(ranges)
        self.blame_calls.append((path, ranges, bound))
        self.blame_revisions.append(revision)
        if path in self.failing:
            raise GitCommandError(["git", "blame", path], 128, f"fatal: no such path '{path}' in HEAD")
        file_owners = self.owners.get(path, {})
        wanted = {n for start, end in ranges for n in range(start, end + 1)}
        owners = {n: sha for n, sha in file_owners.items() if n in wanted}
        return make_porcelain(owners, self.boundary if bound else (), self.contents.get(path))

    def rev_parse(self, rev: str) -> str:
        if rev not in self.refs:
            raise GitCommandError(["git", "rev-parse", rev], 128, f"fatal: bad revision '{rev}'")
        return self.refs[rev]

    def merge_base(self, first: str, second: str) -> str:
        if second not in self.merge_bases:
            raise GitCommandError(["git", "merge-base", first, second], 1)
        return self.merge_bases[second]

    def show_summaries(self, shas: Sequence[str], fmt: str, color: bool = False) -> Dict[str, str]:
        self.show_calls.append((list(shas), fmt))
        return {sha: self.summaries.get(sha, f"{sha[:7]} subject") for sha in shas}


@pytest.fixture
def sample_patch_lines() -> List[str]:
    return SAMPLE_PATCH.splitlines()


@pytest.fixture
def fake_runner() -> FakeGitRunner:
    return FakeGitRunner()


@pytest.fixture
def temp_config(tmp_path: Path, monkeypatch) -> Path:
    """Point the config file at a temporary directory."""
    base_dir = tmp_path / "home"
    monkeypatch.setattr("blamediff_cli.config.BASE_DIR", base_dir)
    monkeypatch.setattr("blamediff_cli.config.CONFIG_FILE", base_dir / "config.toml")
    return base_dir / "config.toml"


def _git(repo: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=repo, capture_output=True, text=True, check=True)
    return result.stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path, monkeypatch, temp_config) -> Dict[str, object]:
    """Repository with a base commit on ``main`` and one on ``topic``.

    ``f.txt`` holds ``one..four``; ``topic`` rewrites ``two`` as ``TWO``.
    The checkout stays on ``topic`` with a clean working tree.
    """
    if shutil.which("git") is None:
        pytest.skip("git executable not available")

    repo = tmp_path / "repo"
    repo.mkdir()
    for key in ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("HOME", str(tmp_path))

    _git(repo, "init", "-q")
    _git(repo, "checkout", "-q", "-b", "main")
    _git(repo, "config", "user.name", "Test")
    _git(repo, "config", "user.email", "test@example.com")
    _git(repo, "config", "commit.gpgsign", "false")

    (repo / "f.txt").write_text("one\ntwo\nthree\nfour\n")
    _git(repo, "add", "f.txt")
    _git(repo, "commit", "-q", "-m", "Add numbers")
    base = _git(repo, "rev-parse", "HEAD")

    _git(repo, "checkout", "-q", "-b", "topic")
    (repo / "f.txt").write_text("one\nTWO\nthree\nfour\n")
    _git(repo, "commit", "-q", "-am", "Shout two")
    topic = _git(repo, "rev-parse", "HEAD")

    monkeypatch.chdir(repo)
    return {"path": repo, "base": base, "topic": topic, "git": lambda *args: _git(repo, *args)}
