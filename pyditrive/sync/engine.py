"""Core sync engine for reconciling large files with the object store."""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

import click
from rich.progress import Progress, SpinnerColumn, TextColumn

from ..api import DriveClient
from ..config import RepoSettings, SyncPolicy
from ..exceptions import DitriveCancelledError
from ..output import OutputFormatter
from ..utils import format_size
from .ignore import IgnoreFileManager, IgnoreRule, escape_pattern
from .operations import SyncOperations
from .scanner import LargeFileScanner, LocalFile
from .tracker import ManagedFile, ManagedFileTracker

logger = logging.getLogger(__name__)

# Answers to the "ask" prompt that mean "manage this file"
MANAGE_ANSWERS = frozenset({"1", "m", "manage"})


def parse_policy_answer(answer: str) -> SyncPolicy:
    """Interpret an operator answer to the ignored-file prompt.

    Only an explicit manage answer manages the file; anything else,
    including empty or unrecognized input, skips it.

    Examples:
        >>> parse_policy_answer("1")
        <SyncPolicy.MANAGE: 'manage'>
        >>> parse_policy_answer("yes please")
        <SyncPolicy.SKIP: 'skip'>
    """
    if answer.strip().lower() in MANAGE_ANSWERS:
        return SyncPolicy.MANAGE
    return SyncPolicy.SKIP


def prompt_operator(relative_path: str) -> str:
    """Ask on the terminal what to do with an ignored large file."""
    click.echo(f"\nLarge file is already ignored: {relative_path}")
    click.echo("  1. Manage (upload and track)")
    click.echo("  2. Skip")
    try:
        return click.prompt("Choice", default="2", show_default=True)
    except click.Abort:
        raise DitriveCancelledError() from None


class SyncEngine:
    """Reconciles the large files of a repository with the object store.

    Push walks the repository for large files and offloads each one that is
    not managed yet: upload, then record it in the directory's metadata
    store, then append it to the ignore file. Pull downloads every managed
    file whose local copy is missing.

    Examples:
        >>> engine = SyncEngine(Path("/repo"), settings, client)  # doctest: +SKIP
        >>> stats = engine.push(dry_run=True)  # doctest: +SKIP
        >>> print(f"Would upload {stats['uploads']} files")  # doctest: +SKIP
    """

    def __init__(
        self,
        repo_path: Path,
        settings: RepoSettings,
        client: DriveClient,
        output: Optional[OutputFormatter] = None,
        prompt: Optional[Callable[[str], str]] = None,
        progress_display: Optional[Any] = None,
    ):
        """Initialize sync engine.

        Args:
            repo_path: Repository root
            settings: Repository settings (threshold, policy, marker, ...)
            client: Drive API client
            output: Output formatter for displaying progress/status
            prompt: Called with a relative path when the policy is ``ask``;
                returns the operator's answer
            progress_display: Optional transfer display providing
                ``file_callback(description, total)`` and ``stop()``

        Raises:
            DitriveConfigError: If the settings are invalid
        """
        # Configuration errors surface before anything is traversed
        settings.validate()

        self.repo_path = repo_path
        self.settings = settings
        self.threshold_bytes = settings.threshold_bytes
        self.policy = settings.policy
        self.client = client
        self.output = output or OutputFormatter()
        self.prompt = prompt or prompt_operator
        self.progress_display = progress_display
        self.operations = SyncOperations(client)
        self.tracker = ManagedFileTracker(repo_path)
        self.scanner = LargeFileScanner(self.threshold_bytes)
        self._ignore: Optional[IgnoreFileManager] = None

    @property
    def ignore(self) -> IgnoreFileManager:
        """Ignore rules of the repository, loaded on first use."""
        if self._ignore is None:
            self._ignore = IgnoreFileManager(self.repo_path)
            self._ignore.load_cli_patterns(self.settings.additional_ignore_patterns)
        return self._ignore

    def _validate_repo_path(self) -> None:
        if not self.repo_path.exists():
            raise ValueError(f"Repository directory does not exist: {self.repo_path}")
        if not self.repo_path.is_dir():
            raise ValueError(f"Repository path is not a directory: {self.repo_path}")

    def _create_empty_stats(self) -> dict:
        return {
            "uploads": 0,
            "updates": 0,
            "downloads": 0,
            "already_managed": 0,
            "ignored_skips": 0,
            "skips": 0,
        }

    def _progress_callback(
        self, description: str, total: int
    ) -> Optional[Callable[[int, int], None]]:
        if self.progress_display is None:
            return None
        return self.progress_display.file_callback(description, total)

    def _stop_progress(self) -> None:
        if self.progress_display is not None:
            self.progress_display.stop()

    # =========================
    # Push
    # =========================

    def push(self, dry_run: bool = False, detect_changes: Optional[bool] = None) -> dict:
        """Offload every large file that is not managed yet.

        Args:
            dry_run: If True, only show what would be done
            detect_changes: Re-upload managed files whose content changed
                (defaults to the ``detect_changes`` setting)

        Returns:
            Dictionary with push statistics

        Raises:
            ValueError: If the repository directory does not exist
            DitriveAPIError: If an upload fails; files completed before the
                failure stay managed
        """
        self._validate_repo_path()
        if detect_changes is None:
            detect_changes = self.settings.detect_changes

        if dry_run:
            self.output.info("Dry run: No changes will be made")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=self.output.quiet or self.output.json_output,
        ) as progress:
            task = progress.add_task("Scanning for large files...", total=None)
            candidates = self.scanner.scan(self.repo_path)
            progress.update(
                task, description=f"Found {len(candidates)} large file(s)"
            )

        logger.debug(
            f"Found {len(candidates)} file(s) larger than "
            f"{format_size(self.threshold_bytes)}"
        )

        stats = self._create_empty_stats()
        for local_file in candidates:
            self._push_file(local_file, dry_run, detect_changes, stats)

        self._display_summary("Push", stats, dry_run)
        return stats

    def _push_file(
        self,
        local_file: LocalFile,
        dry_run: bool,
        detect_changes: bool,
        stats: dict,
    ) -> None:
        rel_path = local_file.relative_path
        is_update = False

        if self.tracker.is_managed(local_file.path):
            if not detect_changes or not self.tracker.needs_update(local_file.path):
                logger.debug(f"Already managed: {rel_path}")
                stats["already_managed"] += 1
                return
            is_update = True
        elif self.ignore.is_ignored(rel_path):
            if not self._should_manage_ignored(rel_path, dry_run):
                logger.debug(f"Skipping ignored file: {rel_path}")
                stats["ignored_skips"] += 1
                return

        pattern = escape_pattern(rel_path)
        if not self._rule_covers(pattern, rel_path):
            self.output.warning(f"No ignore rule can match {rel_path!r}, skipping")
            stats["skips"] += 1
            return

        size = format_size(local_file.size)
        if dry_run:
            verb = "update" if is_update else "upload"
            self.output.info(f"Would {verb}: {rel_path} ({size})")
            stats["updates" if is_update else "uploads"] += 1
            return

        self._offload(local_file, pattern)
        if is_update:
            self.output.success(f"Updated: {rel_path} ({size})")
            stats["updates"] += 1
        else:
            self.output.success(f"Uploaded: {rel_path} ({size})")
            stats["uploads"] += 1

    def _should_manage_ignored(self, rel_path: str, dry_run: bool) -> bool:
        if self.policy == SyncPolicy.MANAGE:
            return True
        if self.policy == SyncPolicy.SKIP:
            return False

        if dry_run:
            self.output.info(f"Would ask about ignored file: {rel_path}")
            return False
        return parse_policy_answer(self.prompt(rel_path)) == SyncPolicy.MANAGE

    @staticmethod
    def _rule_covers(pattern: str, rel_path: str) -> bool:
        try:
            rule = IgnoreRule.from_line(pattern)
        except ValueError:
            return False
        return rule is not None and rule.matches(rel_path)

    def _offload(self, local_file: LocalFile, pattern: str) -> None:
        """Upload a file, record it and add it to the ignore file.

        Each step runs only after the previous one succeeded, so a failed
        upload leaves neither a record nor an ignore rule behind.
        """
        rel_path = local_file.relative_path
        action_start = time.time()
        logger.debug(f"Uploading {rel_path}...")

        try:
            record = self.operations.upload_file(
                local_file,
                progress_callback=self._progress_callback(rel_path, local_file.size),
            )
        except Exception as e:
            if not self.output.quiet:
                self.output.error(f"Error uploading {rel_path}: {e}")
            raise
        finally:
            self._stop_progress()

        self.tracker.add(local_file.path.parent, local_file.path.name, record)
        self.ignore.add_rule(pattern, comment=self.settings.managed_files_marker)

        action_elapsed = time.time() - action_start
        logger.debug(f"Upload of {rel_path} took {action_elapsed:.2f}s")

    # =========================
    # Pull
    # =========================

    def pull(self, dry_run: bool = False) -> dict:
        """Download every managed file whose local copy is missing.

        Downloaded content is not verified against the recorded hash.

        Args:
            dry_run: If True, only show what would be done

        Returns:
            Dictionary with pull statistics

        Raises:
            ValueError: If the repository directory does not exist
            DitriveAPIError: If a download fails
        """
        self._validate_repo_path()
        if dry_run:
            self.output.info("Dry run: No changes will be made")

        stats = self._create_empty_stats()
        for managed in self.tracker.enumerate_all():
            if managed.exists:
                continue
            self._pull_file(managed, dry_run, stats)

        self._display_summary("Pull", stats, dry_run)
        return stats

    def _pull_file(self, managed: ManagedFile, dry_run: bool, stats: dict) -> None:
        rel_path = managed.path.relative_to(self.repo_path).as_posix()
        record = managed.record

        if not record.remote_id:
            self.output.warning(f"No remote ID recorded for {rel_path}, skipping")
            stats["skips"] += 1
            return

        if dry_run:
            self.output.info(f"Would download: {rel_path}")
            stats["downloads"] += 1
            return

        action_start = time.time()
        logger.debug(f"Downloading {rel_path}...")
        try:
            written = self.operations.download_file(
                record,
                managed.path,
                progress_callback=self._progress_callback(rel_path, record.size_bytes),
            )
        except Exception as e:
            if not self.output.quiet:
                self.output.error(f"Error downloading {rel_path}: {e}")
            raise
        finally:
            self._stop_progress()

        action_elapsed = time.time() - action_start
        logger.debug(f"Download of {rel_path} took {action_elapsed:.2f}s")
        self.output.success(f"Downloaded: {rel_path} ({format_size(written)})")
        stats["downloads"] += 1

    # =========================
    # Sync / listing
    # =========================

    def sync(self, dry_run: bool = False) -> dict:
        """Push all large files, then pull missing managed files.

        Returns:
            Combined statistics of both phases
        """
        push_stats = self.push(dry_run=dry_run)
        pull_stats = self.pull(dry_run=dry_run)
        return {key: push_stats[key] + pull_stats[key] for key in push_stats}

    def list_managed(self) -> list[ManagedFile]:
        """Snapshot of every managed file in the repository."""
        return self.tracker.enumerate_all()

    def _display_summary(self, phase: str, stats: dict, dry_run: bool) -> None:
        """Display a phase summary.

        Args:
            phase: Name of the phase ("Push" or "Pull")
            stats: Statistics dictionary
            dry_run: Whether this was a dry run
        """
        if self.output.quiet:
            return

        if dry_run:
            self.output.success(f"{phase} dry run complete!")
        else:
            self.output.success(f"{phase} complete!")

        total_actions = stats["uploads"] + stats["updates"] + stats["downloads"]
        if total_actions > 0:
            if stats["uploads"] > 0:
                self.output.info(f"  Uploaded: {stats['uploads']}")
            if stats["updates"] > 0:
                self.output.info(f"  Updated: {stats['updates']}")
            if stats["downloads"] > 0:
                self.output.info(f"  Downloaded: {stats['downloads']}")
        else:
            self.output.info("No changes needed - everything is in sync!")

        if stats["already_managed"] > 0:
            self.output.info(f"  Already managed: {stats['already_managed']}")
        if stats["ignored_skips"] > 0:
            self.output.info(f"  Skipped (ignored): {stats['ignored_skips']}")
        if stats["skips"] > 0:
            self.output.info(f"  Skipped: {stats['skips']}")
