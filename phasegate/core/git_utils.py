"""Git utilities for workspace change tracking.

The phase runner needs to know which files changed since a phase started, the
pipeline engine needs the aggregate diff for the integration check, and
resumption restores the files of an interrupted phase. All of that is
expressed through ``ChangeTracker``; ``GitChangeTracker`` is the git-backed
implementation.
"""

import hashlib
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .exceptions import GitOperationError
from .plan_schema import WorkspaceSnapshot, normalize_path

DELETED_DIGEST = "<deleted>"


class GitUtils:
    """Safe wrappers around the git commands the pipeline needs."""

    def __init__(self, repo_path: Optional[Path] = None):
        """
        Initialize Git utilities.

        Args:
            repo_path: Path to git repository (default: current directory)

        Raises:
            GitOperationError: If the path is not inside a git repository
        """
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()

        if not self.is_git_repo():
            raise GitOperationError(f"Not a git repository: {self.repo_path}")

    def _run_git(self, *args: str, check: bool = True) -> Tuple[int, str, str]:
        """
        Run a git command.

        Returns:
            Tuple of (returncode, stdout, stderr)

        Raises:
            GitOperationError: If command fails and check=True
        """
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise GitOperationError("Git command not found") from e
        except OSError as e:
            raise GitOperationError(f"Git operation failed: {e}") from e

        if check and result.returncode != 0:
            raise GitOperationError(
                f"Git command failed: git {' '.join(args)}\n"
                f"Error: {result.stderr}"
            )

        return result.returncode, result.stdout, result.stderr

    def is_git_repo(self) -> bool:
        """Check if the repository path is inside a git work tree."""
        returncode, _, _ = self._run_git("rev-parse", "--git-dir", check=False)
        return returncode == 0

    def get_current_branch(self) -> Optional[str]:
        """Current branch name, or None on a detached HEAD."""
        returncode, stdout, _ = self._run_git("symbolic-ref", "--short", "HEAD", check=False)
        if returncode != 0:
            return None
        return stdout.strip() or None

    def get_current_commit(self) -> Optional[str]:
        """Current commit hash, or None in a repository without commits."""
        returncode, stdout, _ = self._run_git("rev-parse", "--verify", "HEAD", check=False)
        if returncode != 0:
            return None
        return stdout.strip()

    def get_dirty_files(self) -> List[str]:
        """Tracked changes plus untracked files, relative to the repo root."""
        _, stdout, _ = self._run_git("status", "--porcelain", "-uall", "-z")
        files = []
        entries = stdout.split("\0")
        index = 0
        while index < len(entries):
            entry = entries[index]
            index += 1
            if len(entry) < 4:
                continue
            code, path = entry[:2], entry[3:]
            files.append(path)
            # Renames and copies carry the original path as the next entry
            if code[0] in ("R", "C") and index < len(entries):
                files.append(entries[index])
                index += 1
        return [normalize_path(f) for f in files if f]

    def get_changed_files(self, since_commit: str) -> List[str]:
        """Files differing from a commit, including untracked files."""
        _, stdout, _ = self._run_git("diff", "--name-only", "-z", since_commit)
        files = [f for f in stdout.split("\0") if f]
        files.extend(self.get_untracked_files())
        return sorted({normalize_path(f) for f in files})

    def get_untracked_files(self) -> List[str]:
        # -z keeps non-ASCII paths unquoted
        _, stdout, _ = self._run_git("ls-files", "--others", "--exclude-standard", "-z")
        return [f for f in stdout.split("\0") if f]

    def get_diff(self, since_commit: str) -> str:
        """Unified diff of the working tree against a commit."""
        _, stdout, _ = self._run_git("diff", since_commit)
        return stdout

    def file_in_commit(self, commit: str, path: str) -> bool:
        """Check whether a path exists in a commit."""
        returncode, _, _ = self._run_git("cat-file", "-e", f"{commit}:{path}", check=False)
        return returncode == 0

    def restore_file(self, commit: str, path: str) -> None:
        """Restore one path in the index and working tree from a commit."""
        self._run_git("checkout", commit, "--", path)

    def branch_exists(self, branch: str) -> bool:
        """Check whether a local branch exists."""
        returncode, _, _ = self._run_git(
            "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}", check=False
        )
        return returncode == 0

    def checkout_branch(self, branch: str, create: bool = False) -> None:
        """Switch to a branch, creating it from HEAD if requested.

        Raises:
            GitOperationError: If git refuses the checkout
        """
        if create:
            self._run_git("checkout", "-b", branch)
        else:
            self._run_git("checkout", branch)


class ChangeTracker(ABC):
    """Detect and discard workspace changes."""

    @abstractmethod
    def snapshot(self) -> WorkspaceSnapshot:
        """Capture the current workspace state."""

    @abstractmethod
    def changed_since(self, snapshot: WorkspaceSnapshot) -> List[str]:
        """Files modified, created or deleted since the snapshot."""

    @abstractmethod
    def diff_since(self, snapshot: WorkspaceSnapshot) -> str:
        """Human-readable aggregate diff since the snapshot."""

    @abstractmethod
    def discard_changes(
        self, snapshot: WorkspaceSnapshot, paths: Iterable[str]
    ) -> Optional[List[str]]:
        """Restore the given paths to their state at the snapshot.

        Returns:
            Paths that were restored, or None if discarding was refused
        """

    @abstractmethod
    def use_branch(self, branch: str) -> bool:
        """Check out a work branch, creating it if it does not exist.

        Returns:
            True if the branch was created
        """


class GitChangeTracker(ChangeTracker):
    """Change tracker backed by a git working tree."""

    def __init__(
        self,
        repo_path: Optional[Path] = None,
        protected_branches: Iterable[str] = ("main", "master"),
    ):
        self.git = GitUtils(repo_path)
        self.repo_path = self.git.repo_path
        self.protected_branches = set(protected_branches)

    def snapshot(self) -> WorkspaceSnapshot:
        dirty = self.git.get_dirty_files()
        return WorkspaceSnapshot(
            commit=self.git.get_current_commit(),
            files={path: self._digest(path) for path in dirty},
        )

    def changed_since(self, snapshot: WorkspaceSnapshot) -> List[str]:
        if snapshot.commit:
            candidates = set(self.git.get_changed_files(snapshot.commit))
        else:
            candidates = set(self.git.get_dirty_files())
        # Files that were dirty at snapshot time but have since been reverted
        candidates.update(snapshot.files)

        changed = []
        for path in sorted(candidates):
            before = snapshot.files.get(path)
            if before is not None and before == self._digest(path):
                continue
            changed.append(path)
        return changed

    def diff_since(self, snapshot: WorkspaceSnapshot) -> str:
        sections = []
        if snapshot.commit:
            diff = self.git.get_diff(snapshot.commit)
            if diff.strip():
                sections.append(diff)
        changed = self.changed_since(snapshot)
        if changed:
            sections.append("Changed files:\n" + "\n".join(f"- {f}" for f in changed))
        return "\n\n".join(sections)

    def discard_changes(
        self, snapshot: WorkspaceSnapshot, paths: Iterable[str]
    ) -> Optional[List[str]]:
        if self.git.get_current_branch() in self.protected_branches:
            return None

        wanted = {normalize_path(p) for p in paths}
        restored = []
        for path in self.changed_since(snapshot):
            # Files already dirty at snapshot time have no clean copy to go back to
            if path not in wanted or path in snapshot.files:
                continue
            if snapshot.commit and self.git.file_in_commit(snapshot.commit, path):
                self.git.restore_file(snapshot.commit, path)
            else:
                (self.repo_path / path).unlink(missing_ok=True)
            restored.append(path)
        return restored

    def use_branch(self, branch: str) -> bool:
        if self.git.get_current_branch() == branch:
            return False
        created = not self.git.branch_exists(branch)
        self.git.checkout_branch(branch, create=created)
        return created

    def _digest(self, path: str) -> str:
        file_path = self.repo_path / path
        if not file_path.is_file():
            return DELETED_DIGEST
        with open(file_path, "rb") as f:
            return hashlib.sha256(f.read()).hexdigest()
