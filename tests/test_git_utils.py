"""Tests for git-backed workspace change tracking."""

import subprocess

import pytest

from phasegate.core.exceptions import GitOperationError
from phasegate.core.git_utils import GitChangeTracker, GitUtils


def git(repo, *args):
    subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True)


class TestGitUtils:
    def test_not_a_repository(self, tmp_path):
        plain = tmp_path / "plain"
        plain.mkdir()

        with pytest.raises(GitOperationError, match="Not a git repository"):
            GitUtils(plain)

    def test_branch_and_commit(self, git_repo):
        utils = GitUtils(git_repo)

        assert utils.get_current_branch() == "feature/work"
        assert len(utils.get_current_commit()) == 40

    def test_dirty_files(self, git_repo):
        (git_repo / "src" / "app.py").write_text("VALUE = 2\n")
        (git_repo / "notes.txt").write_text("todo\n")

        assert sorted(GitUtils(git_repo).get_dirty_files()) == ["notes.txt", "src/app.py"]

    def test_file_in_commit(self, git_repo):
        utils = GitUtils(git_repo)
        head = utils.get_current_commit()

        assert utils.file_in_commit(head, "src/app.py")
        assert not utils.file_in_commit(head, "src/missing.py")

    def test_failed_command_raises(self, git_repo):
        with pytest.raises(GitOperationError, match="Git command failed"):
            GitUtils(git_repo).get_diff("no-such-revision")


class TestGitChangeTracker:
    def test_clean_snapshot(self, git_repo):
        tracker = GitChangeTracker(git_repo)

        snapshot = tracker.snapshot()

        assert snapshot.commit == GitUtils(git_repo).get_current_commit()
        assert snapshot.files == {}
        assert tracker.changed_since(snapshot) == []

    def test_modified_created_and_deleted_files(self, git_repo):
        tracker = GitChangeTracker(git_repo)
        snapshot = tracker.snapshot()

        (git_repo / "src" / "app.py").write_text("VALUE = 2\n")
        (git_repo / "src" / "new.py").write_text("NEW = True\n")
        (git_repo / "README.md").unlink()

        assert tracker.changed_since(snapshot) == ["README.md", "src/app.py", "src/new.py"]

    def test_changes_committed_after_snapshot(self, git_repo):
        tracker = GitChangeTracker(git_repo)
        snapshot = tracker.snapshot()

        (git_repo / "src" / "app.py").write_text("VALUE = 2\n")
        git(git_repo, "commit", "-am", "Bump value")

        assert tracker.changed_since(snapshot) == ["src/app.py"]

    def test_files_dirty_at_snapshot_are_excluded(self, git_repo):
        (git_repo / "README.md").write_text("operator edit\n")
        tracker = GitChangeTracker(git_repo)
        snapshot = tracker.snapshot()

        (git_repo / "src" / "app.py").write_text("VALUE = 2\n")

        assert "README.md" in snapshot.files
        assert tracker.changed_since(snapshot) == ["src/app.py"]

    def test_dirty_file_changed_again_is_reported(self, git_repo):
        (git_repo / "README.md").write_text("operator edit\n")
        tracker = GitChangeTracker(git_repo)
        snapshot = tracker.snapshot()

        (git_repo / "README.md").write_text("agent edit\n")

        assert tracker.changed_since(snapshot) == ["README.md"]

    def test_diff_since(self, git_repo):
        tracker = GitChangeTracker(git_repo)
        snapshot = tracker.snapshot()

        (git_repo / "src" / "app.py").write_text("VALUE = 2\n")
        (git_repo / "src" / "new.py").write_text("NEW = True\n")

        diff = tracker.diff_since(snapshot)

        assert "-VALUE = 1" in diff
        assert "+VALUE = 2" in diff
        assert "Changed files:\n- src/app.py\n- src/new.py" in diff

    def test_discard_restores_owned_files(self, git_repo):
        tracker = GitChangeTracker(git_repo)
        snapshot = tracker.snapshot()

        (git_repo / "src" / "app.py").write_text("VALUE = 2\n")
        (git_repo / "src" / "new.py").write_text("NEW = True\n")
        (git_repo / "README.md").write_text("unrelated\n")

        restored = tracker.discard_changes(snapshot, ["src/app.py", "./src/new.py"])

        assert restored == ["src/app.py", "src/new.py"]
        assert (git_repo / "src" / "app.py").read_text() == "VALUE = 1\n"
        assert not (git_repo / "src" / "new.py").exists()
        assert (git_repo / "README.md").read_text() == "unrelated\n"

    def test_discard_skips_files_dirty_at_snapshot(self, git_repo):
        (git_repo / "src" / "app.py").write_text("VALUE = 5\n")
        tracker = GitChangeTracker(git_repo)
        snapshot = tracker.snapshot()

        (git_repo / "src" / "app.py").write_text("VALUE = 6\n")

        assert tracker.discard_changes(snapshot, ["src/app.py"]) == []
        assert (git_repo / "src" / "app.py").read_text() == "VALUE = 6\n"

    def test_discard_refused_on_protected_branch(self, git_repo):
        git(git_repo, "checkout", "-b", "main")
        tracker = GitChangeTracker(git_repo)
        snapshot = tracker.snapshot()

        (git_repo / "src" / "app.py").write_text("VALUE = 2\n")

        assert tracker.discard_changes(snapshot, ["src/app.py"]) is None
        assert (git_repo / "src" / "app.py").read_text() == "VALUE = 2\n"

    def test_custom_protected_branches(self, git_repo):
        tracker = GitChangeTracker(git_repo, protected_branches=["feature/work"])
        snapshot = tracker.snapshot()

        assert tracker.discard_changes(snapshot, ["src/app.py"]) is None

    def test_non_ascii_paths(self, git_repo):
        (git_repo / "src" / "café.py").write_text("NAME = 1\n", encoding="utf-8")
        git(git_repo, "add", ".")
        git(git_repo, "commit", "-m", "Add café module")
        tracker = GitChangeTracker(git_repo)
        snapshot = tracker.snapshot()

        (git_repo / "src" / "café.py").write_text("NAME = 2\n", encoding="utf-8")
        (git_repo / "src" / "naïve.py").write_text("NEW = True\n", encoding="utf-8")

        assert tracker.changed_since(snapshot) == ["src/café.py", "src/naïve.py"]
        assert tracker.discard_changes(snapshot, ["src/café.py", "src/naïve.py"]) == [
            "src/café.py",
            "src/naïve.py",
        ]
        assert (git_repo / "src" / "café.py").read_text(encoding="utf-8") == "NAME = 1\n"
        assert not (git_repo / "src" / "naïve.py").exists()


class TestFeatureBranches:
    def test_creates_missing_branch(self, git_repo):
        tracker = GitChangeTracker(git_repo)

        assert tracker.use_branch("feature/add-search") is True
        assert tracker.git.get_current_branch() == "feature/add-search"

    def test_checks_out_existing_branch(self, git_repo):
        git(git_repo, "branch", "feature/add-search")
        tracker = GitChangeTracker(git_repo)

        assert tracker.use_branch("feature/add-search") is False
        assert tracker.git.get_current_branch() == "feature/add-search"

    def test_already_on_branch(self, git_repo):
        tracker = GitChangeTracker(git_repo)

        assert tracker.use_branch("feature/work") is False
        assert tracker.git.get_current_branch() == "feature/work"

    def test_uncommitted_changes_follow_new_branch(self, git_repo):
        (git_repo / "src" / "app.py").write_text("VALUE = 2\n")
        tracker = GitChangeTracker(git_repo)

        tracker.use_branch("feature/add-search")

        assert (git_repo / "src" / "app.py").read_text() == "VALUE = 2\n"

    def test_branch_exists(self, git_repo):
        utils = GitUtils(git_repo)

        assert utils.branch_exists("feature/work")
        assert not utils.branch_exists("feature/missing")

    def test_refused_checkout_raises(self, git_repo):
        git(git_repo, "checkout", "-b", "feature/other")
        (git_repo / "src" / "app.py").write_text("VALUE = 3\n")
        git(git_repo, "commit", "-am", "Diverge")
        git(git_repo, "checkout", "feature/work")
        (git_repo / "src" / "app.py").write_text("VALUE = 4\n")

        with pytest.raises(GitOperationError, match="Git command failed"):
            GitChangeTracker(git_repo).use_branch("feature/other")
