"""Tests for release_pipeline.stages.visibility."""

from pathlib import Path

import pytest

from release_pipeline.stages.visibility import VisibilityManager, read_marker


@pytest.fixture
def tree(tmp_path):
    """A small project tree with dotfiles, ignored output and VCS metadata."""
    root = tmp_path.resolve() / "project"
    (root / ".git" / "objects").mkdir(parents=True)
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    (root / "target" / "debug").mkdir(parents=True)
    (root / "src").mkdir()
    (root / "src" / "main.rs").write_text("fn main() {}\n")
    (root / ".gitignore").write_text("build_output/\n*.log\n")
    (root / ".vscode").mkdir()
    (root / ".vscode" / "settings.json").write_text("{}")
    (root / "build_output").mkdir()
    (root / "debug.log").write_text("log")
    return root


def make_manager(runner, attributes, clock, tmp_path, threshold=600.0):
    return VisibilityManager(
        backend=attributes,
        runner=runner,
        marker=tmp_path.resolve() / "state" / "last_check",
        threshold_seconds=threshold,
        clock=clock,
    )


class TestVisibilityManager:
    """Tests for VisibilityManager.apply."""

    def test_hides_dotfiles_and_ignored_paths(self, runner, attributes, clock, tmp_path, tree):
        """Dotfiles and git-ignored paths should end up hidden."""
        runner.on("git", "ls-files", stdout="build_output/\ndebug.log\n")
        manager = make_manager(runner, attributes, clock, tmp_path)

        outcome = manager.apply(tree)

        assert outcome.applied
        assert attributes.hidden_paths() == {
            tree / ".gitignore",
            tree / ".vscode",
            tree / "build_output",
            tree / "debug.log",
        }

    def test_excluded_directories_untouched(self, runner, attributes, clock, tmp_path, tree):
        """.git and target should never be scanned or marked."""
        manager = make_manager(runner, attributes, clock, tmp_path)
        attributes.hidden[tree / "target" / "debug"] = True

        manager.apply(tree)

        assert tree / ".git" not in attributes.hidden
        assert not any(".git" in p.parts for p in attributes.hidden)
        # Infrastructure state is left exactly as it was
        assert attributes.hidden[tree / "target" / "debug"] is True

    def test_clears_drifted_hidden_paths(self, runner, attributes, clock, tmp_path, tree):
        """Paths hidden by an earlier run but no longer matching should be unhidden."""
        attributes.hidden[tree / "src" / "main.rs"] = True
        manager = make_manager(runner, attributes, clock, tmp_path)

        outcome = manager.apply(tree)

        assert attributes.hidden[tree / "src" / "main.rs"] is False
        assert outcome.cleared == 1

    def test_idempotent_without_debounce(self, runner, attributes, clock, tmp_path, tree):
        """Two back-to-back scans should yield the same attribute state."""
        runner.on("git", "ls-files", stdout="build_output/\ndebug.log\n")
        manager = make_manager(runner, attributes, clock, tmp_path, threshold=0)

        manager.apply(tree)
        first = attributes.hidden_paths()
        second_outcome = manager.apply(tree)
        second = attributes.hidden_paths()

        assert second_outcome.applied
        assert first == second

    def test_debounced_within_threshold(self, runner, attributes, clock, tmp_path, tree):
        """A second scan inside the window should touch nothing."""
        manager = make_manager(runner, attributes, clock, tmp_path)
        manager.apply(tree)
        attributes.hidden.clear()
        runner.calls.clear()
        clock.advance(120)

        outcome = manager.apply(tree)

        assert not outcome.applied
        assert outcome.reason == "debounced"
        assert attributes.hidden == {}
        assert runner.calls == []

    def test_runs_again_after_threshold(self, runner, attributes, clock, tmp_path, tree):
        manager = make_manager(runner, attributes, clock, tmp_path)
        manager.apply(tree)
        clock.advance(601)

        outcome = manager.apply(tree)

        assert outcome.applied

    def test_force_bypasses_debounce(self, runner, attributes, clock, tmp_path, tree):
        manager = make_manager(runner, attributes, clock, tmp_path)
        manager.apply(tree)

        outcome = manager.apply(tree, force=True)

        assert outcome.applied

    def test_marker_records_scan_time(self, runner, attributes, clock, tmp_path, tree):
        """The marker should hold the clock value of the last scan."""
        manager = make_manager(runner, attributes, clock, tmp_path)

        manager.apply(tree)

        assert read_marker(manager.marker) == pytest.approx(clock.now)

    def test_missing_or_corrupt_marker_means_never_checked(self, runner, attributes, clock, tmp_path, tree):
        manager = make_manager(runner, attributes, clock, tmp_path)
        manager.marker.parent.mkdir(parents=True)
        manager.marker.write_text("not a timestamp")

        assert read_marker(manager.marker) is None
        assert manager.apply(tree).applied

    def test_per_path_failures_logged_and_skipped(self, runner, attributes, clock, tmp_path, tree):
        """One inaccessible path should not stop the scan."""
        attributes.failing.add(tree / ".gitignore")
        manager = make_manager(runner, attributes, clock, tmp_path)

        outcome = manager.apply(tree)

        assert outcome.applied
        assert outcome.failures == [str(tree / ".gitignore")]
        assert attributes.is_hidden(tree / ".vscode")

    def test_ignored_query_failure_falls_back_to_dotfiles(self, runner, attributes, clock, tmp_path, tree):
        """Outside a git worktree only dotfiles should be hidden."""
        runner.on("git", "ls-files", exit_code=128, stderr="fatal: not a git repository")
        manager = make_manager(runner, attributes, clock, tmp_path)

        manager.apply(tree)

        assert attributes.hidden_paths() == {tree / ".gitignore", tree / ".vscode"}

    def test_never_modifies_file_contents(self, runner, attributes, clock, tmp_path, tree):
        before = {p: p.read_bytes() for p in tree.rglob("*") if p.is_file()}
        manager = make_manager(runner, attributes, clock, tmp_path)

        manager.apply(tree)

        after = {p: p.read_bytes() for p in tree.rglob("*") if p.is_file()}
        assert before == after

    def test_walk_is_sorted_and_skips_marker(self, runner, attributes, clock, tree):
        """A marker kept inside the tree is bookkeeping, not a scan target."""
        manager = VisibilityManager(
            backend=attributes,
            runner=runner,
            marker=tree / ".release_pipeline" / "last_check",
            clock=clock,
        )
        manager.apply(tree)

        paths = manager.walk(tree)

        assert paths == sorted(paths)
        assert tree / ".release_pipeline" not in paths
        assert Path(tree / ".release_pipeline" / "last_check") not in paths
