"""Integration tests for the blamediff command line."""

import sys

import toml
from typer.testing import CliRunner

from blamediff_cli import __version__
from blamediff_cli.cli import app

runner = CliRunner()

UPPERCASE = "import sys; sys.stdout.write(sys.stdin.read().upper())"


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert f"blamediff v{__version__}" in result.output


def test_save_config(temp_config):
    result = runner.invoke(app, ["--save-config", "-b", "main", "-b", "master", "--jobs", "2"])

    assert result.exit_code == 0
    data = toml.load(temp_config)
    assert data["annotate"]["back_to"] == ["main", "master"]
    assert data["annotate"]["jobs"] == 2


class TestAnnotate:
    """Annotating diffs of a real repository."""

    def test_without_bound_every_line_is_attributed(self, git_repo):
        base, topic = git_repo["base"][:7], git_repo["topic"][:7]

        result = runner.invoke(app, ["--diff-args", "main"])

        assert result.exit_code == 0, result.output
        assert f"{base}  one" in result.output
        assert f"{topic} +TWO" in result.output
        assert " " * 8 + "-two" in result.output
        assert f"{base}  three" in result.output
        assert f"{topic} Shout two" in result.output

    def test_back_to_hides_older_commits(self, git_repo):
        topic = git_repo["topic"][:7]

        result = runner.invoke(app, ["--diff-args", "main", "-b", "main"])

        assert result.exit_code == 0, result.output
        assert "·······  one" in result.output
        assert f"{topic} +TWO" in result.output
        assert "Add numbers" not in result.output

    def test_everything_out_of_range(self, git_repo):
        result = runner.invoke(app, ["--diff-args", "HEAD~1 HEAD", "-b", "topic"])

        assert result.exit_code == 0, result.output
        assert "······· +TWO" in result.output
        assert "Shout two" not in result.output

    def test_reads_diff_from_stdin(self, git_repo):
        topic = git_repo["topic"][:7]
        diff = git_repo["git"]("diff", "main") + "\n"

        result = runner.invoke(app, ["-b", "main"], input=diff)

        assert result.exit_code == 0, result.output
        assert "diff --git a/f.txt b/f.txt" in result.output
        assert f"{topic} +TWO" in result.output

    def test_uncommitted_lines(self, git_repo):
        (git_repo["path"] / "f.txt").write_text("one\nTWO\nthree\nfour\nfive\n")

        result = runner.invoke(app, ["--diff-args", "HEAD"])

        assert result.exit_code == 0, result.output
        assert "+++++++ +five" in result.output

    def test_inner_filter(self, git_repo):
        base = git_repo["base"][:7]

        result = runner.invoke(app, ["--diff-args", "main", "--", sys.executable, "-c", UPPERCASE])

        assert result.exit_code == 0, result.output
        assert f"{base}  ONE" in result.output
        assert "DIFF --GIT" in result.output

    def test_unknown_back_to_ref_exits_2(self, git_repo):
        result = runner.invoke(app, ["--diff-args", "main", "-b", "no-such-branch"])

        assert result.exit_code == 2
        assert "no-such-branch" in result.output

    def test_bad_format_exits_2(self, git_repo):
        result = runner.invoke(app, ["--diff-args", "main", "--format", "%C(red"])

        assert result.exit_code == 2

    def test_commit_range_ignores_the_working_tree(self, git_repo):
        base, topic = git_repo["base"][:7], git_repo["topic"][:7]
        (git_repo["path"] / "f.txt").write_text("zero\none\nTWO\nthree\nfour\n")

        result = runner.invoke(app, ["--diff-args", "main topic"])

        assert result.exit_code == 0, result.output
        assert f"{base}  one" in result.output
        assert f"{topic} +TWO" in result.output
        assert f"{base}  three" in result.output
        assert "+++++++" not in result.output

    def test_index_lines_changed_in_the_working_tree_are_unknown(self, git_repo):
        base = git_repo["base"][:7]
        (git_repo["path"] / "f.txt").write_text("one\nTWO\nthree\nFOUR\n")
        git_repo["git"]("add", "f.txt")
        (git_repo["path"] / "f.txt").write_text("one\nTWO\nthree\nfour!\n")

        result = runner.invoke(app, ["--diff-args=--cached"])

        assert result.exit_code == 0, result.output
        assert f"{base}  three" in result.output
        assert "??????? +FOUR" in result.output
