"""Git adapter: repository operations via the git CLI."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from .exceptions import DitriveGitError
from .utils import VCS_DIR_NAME

logger = logging.getLogger(__name__)


class GitManager:
    """Wraps git CLI operations on a repository working tree."""

    def __init__(self, repo_path: Path) -> None:
        self.repo_path = repo_path

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Run a git command in the repository.

        Raises:
            DitriveGitError: If git is missing or (with ``check``) the command fails
        """
        try:
            return subprocess.run(
                ["git", *args],
                cwd=self.repo_path,
                check=check,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as e:
            raise DitriveGitError("git executable not found") from e
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.strip() if e.stderr else "no stderr"
            raise DitriveGitError(f"git {args[0]} failed (exit {e.returncode}): {stderr}") from e

    def is_repo(self) -> bool:
        """Check whether the path is the top of a git working tree."""
        if not (self.repo_path / VCS_DIR_NAME).exists():
            return False
        result = self._run("rev-parse", "--is-inside-work-tree", check=False)
        return result.returncode == 0 and result.stdout.strip() == "true"

    @classmethod
    def open(cls, repo_path: Path) -> GitManager:
        """Open an existing repository.

        Raises:
            DitriveGitError: If the path is not a git repository
        """
        manager = cls(repo_path)
        if not manager.is_repo():
            raise DitriveGitError(f"Not a git repository: {repo_path}")
        return manager

    @classmethod
    def init(cls, repo_path: Path) -> GitManager:
        """Initialize a new repository."""
        repo_path.mkdir(parents=True, exist_ok=True)
        manager = cls(repo_path)
        manager._run("init")
        logger.info(f"Initialized git repository in {repo_path}")
        return manager

    @classmethod
    def open_or_init(cls, repo_path: Path) -> GitManager:
        manager = cls(repo_path)
        if manager.is_repo():
            return manager
        return cls.init(repo_path)

    def get_tracked_files(self) -> set[str]:
        """Paths tracked in the index, relative to the repository root."""
        result = self._run("ls-files", "-z")
        return {p for p in result.stdout.split("\0") if p}

    def get_untracked_files(self) -> list[str]:
        """Untracked paths that are not excluded by ignore rules."""
        result = self._run("ls-files", "--others", "--exclude-standard", "-z")
        return [p for p in result.stdout.split("\0") if p]

    def stage_files(self, paths: list[str]) -> None:
        """Add paths to the index."""
        if not paths:
            return
        self._run("add", "--", *paths)
        logger.debug(f"Staged {len(paths)} path(s)")

    def has_staged_changes(self) -> bool:
        result = self._run("diff", "--cached", "--quiet", check=False)
        return result.returncode != 0

    def head_commit(self) -> str | None:
        """Return the current HEAD commit hash, or None if the repo has no commits."""
        result = self._run("rev-parse", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def commit(self, message: str) -> str:
        """Commit the index and return the new commit hash.

        Works on an unborn branch (first commit).
        """
        self._run("commit", "-m", message)
        commit_hash = self.head_commit()
        if commit_hash is None:
            raise DitriveGitError("Commit did not produce a HEAD")
        logger.info(f"Created commit {commit_hash[:8]}: {message}")
        return commit_hash

    def set_remote_url(self, name: str, url: str) -> None:
        """Create a remote or update its URL."""
        result = self._run("remote", "get-url", name, check=False)
        if result.returncode == 0:
            self._run("remote", "set-url", name, url)
            logger.debug(f"Updated remote '{name}' URL")
        else:
            self._run("remote", "add", name, url)
            logger.debug(f"Created remote '{name}'")

    def configure_user(self, name: str, email: str) -> None:
        """Set the commit identity for this repository."""
        self._run("config", "user.name", name)
        self._run("config", "user.email", email)

    def current_branch(self) -> str | None:
        result = self._run("symbolic-ref", "--short", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()
