"""Repository-level workflows that tie configuration, clients and the engine together."""

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .api import DriveClient
from .auth import OAuthCredentials, OAuthManager, ServiceAccountAuth
from .config import DriveAuthType, GlobalConfig, RepoConfig
from .exceptions import DitriveConfigError, DitriveGitError
from .git import GitManager
from .github import GitHubClient, GitHubRepo
from .output import OutputFormatter
from .sync.engine import SyncEngine
from .sync.ignore import IGNORE_FILE_NAME
from .sync.tracker import ManagedFile, ManagedFileTracker
from .utils import METADATA_FILE_NAME, REPO_CONFIG_FILE_NAME, relative_posix_path

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_HEADER = "# ditrive\n"


def create_oauth_manager(global_config: GlobalConfig) -> OAuthManager:
    """OAuth manager for the configured client, with tokens in the config directory.

    Raises:
        DitriveConfigError: If the OAuth client is not configured
    """
    drive = global_config.drive
    if not drive.client_id or not drive.client_secret:
        raise DitriveConfigError(
            "OAuth client is not configured. Run 'ditrive configure' first."
        )
    return OAuthManager(
        OAuthCredentials(
            client_id=drive.client_id,
            client_secret=drive.client_secret,
            redirect_uri=drive.redirect_uri,
        ),
        global_config.tokens_path,
    )


class Project:
    """A working tree whose large files are offloaded to Drive.

    Examples:
        >>> project = Project(Path("."))  # doctest: +SKIP
        >>> engine = project.create_engine()  # doctest: +SKIP
        >>> engine.push()  # doctest: +SKIP
    """

    def __init__(
        self,
        repo_path: Path,
        global_config: Optional[GlobalConfig] = None,
    ):
        """Load the configuration of a repository.

        Args:
            repo_path: Repository root
            global_config: Global configuration (loaded from disk if omitted)

        Raises:
            DitriveConfigError: If the repository directory does not exist
        """
        if not repo_path.is_dir():
            raise DitriveConfigError(f"Repository directory does not exist: {repo_path}")

        self.repo_path = repo_path.resolve()
        self.repo_name = self.repo_path.name or "unnamed"
        self.global_config = global_config or GlobalConfig.load()
        self.repo_config = RepoConfig.load(self.repo_path, self.global_config)
        self.tracker = ManagedFileTracker(self.repo_path)

    @property
    def git(self) -> Optional[GitManager]:
        """Git adapter, or None if the path is not a git repository."""
        manager = GitManager(self.repo_path)
        return manager if manager.is_repo() else None

    # =========================
    # Clients
    # =========================

    def create_oauth_manager(self) -> OAuthManager:
        return create_oauth_manager(self.global_config)

    def create_credentials(self) -> Union[OAuthManager, ServiceAccountAuth]:
        """Credential provider for the configured Drive auth type."""
        drive = self.global_config.drive
        if drive.auth_type == DriveAuthType.SERVICE_ACCOUNT:
            if not drive.service_account_file:
                raise DitriveConfigError(
                    "Service account file is not configured. "
                    "Run 'ditrive configure' first."
                )
            return ServiceAccountAuth(Path(drive.service_account_file).expanduser())
        return self.create_oauth_manager()

    def create_drive_client(self) -> DriveClient:
        """Drive client rooted at this repository's folder.

        Raises:
            DitriveConfigError: If Drive is not configured
        """
        if not self.global_config.is_drive_configured():
            raise DitriveConfigError(
                "Google Drive is not configured. Run 'ditrive configure' first."
            )
        return DriveClient(
            self.create_credentials(),
            root_folder_id=self.global_config.drive.root_folder_id,
            repo_name=self.repo_name,
            repo_folder_id=self.repo_config.drive.folder_id or None,
        )

    def create_github_client(self) -> GitHubClient:
        github = self.global_config.github
        if not github.username or not github.token:
            raise DitriveConfigError(
                "GitHub is not configured. Run 'ditrive configure' first."
            )
        return GitHubClient(github.username, github.token)

    def create_engine(
        self,
        output: Optional[OutputFormatter] = None,
        prompt: Optional[Callable[[str], str]] = None,
        progress_display: Optional[Any] = None,
        client: Optional[DriveClient] = None,
    ) -> SyncEngine:
        """Sync engine for this repository.

        Settings are validated before any client is created.
        """
        self.repo_config.settings.validate()
        return SyncEngine(
            self.repo_path,
            self.repo_config.settings,
            client or self.create_drive_client(),
            output=output,
            prompt=prompt,
            progress_display=progress_display,
        )

    # =========================
    # Workflows
    # =========================

    def quick_setup(
        self,
        name: Optional[str] = None,
        description: str = "",
        private: bool = True,
        github: Optional[GitHubClient] = None,
        drive: Optional[DriveClient] = None,
    ) -> GitHubRepo:
        """Create the GitHub repository and Drive folder and commit the setup.

        Args:
            name: Repository name (defaults to the directory name)
            description: GitHub repository description
            private: Create a private GitHub repository

        Returns:
            The created GitHub repository
        """
        if not self.global_config.is_configured():
            raise DitriveConfigError(
                "Global configuration is not complete. Run 'ditrive configure' first."
            )

        repo_name = name or self.repo_name
        logger.info(f"Setting up repository: {repo_name}")
        git = GitManager.open_or_init(self.repo_path)

        github = github or self.create_github_client()
        github_repo = github.create_repository(repo_name, description, private)

        username = self.global_config.github.username
        git.configure_user(username, f"{username}@users.noreply.github.com")
        git.set_remote_url("origin", github.get_auth_url(repo_name))

        self.repo_config.github.repository_url = github_repo.html_url
        self.repo_config.github.username = username
        self.repo_config.save(self.repo_path)

        drive = drive or self.create_drive_client()
        self.repo_config.drive.folder_id = drive.repo_folder_id
        self.repo_config.save(self.repo_path)
        logger.info(f"Google Drive folder: {self.repo_config.drive.folder_id}")

        self._create_initial_commit(git)
        return github_repo

    def _create_initial_commit(self, git: GitManager) -> None:
        ignore_file = self.repo_path / IGNORE_FILE_NAME
        if not ignore_file.exists():
            ignore_file.write_text(DEFAULT_IGNORE_HEADER, encoding="utf-8")

        git.stage_files([IGNORE_FILE_NAME, REPO_CONFIG_FILE_NAME])
        if git.has_staged_changes():
            git.commit("Initial commit")
        else:
            logger.info("Nothing to commit for initial setup")

    def config_files_to_stage(self) -> list[str]:
        """Repository files that carry ditrive state and belong in git."""
        paths = [
            name
            for name in (REPO_CONFIG_FILE_NAME, IGNORE_FILE_NAME)
            if (self.repo_path / name).exists()
        ]
        for directory in self.tracker.iter_store_directories():
            paths.append(
                relative_posix_path(directory / METADATA_FILE_NAME, self.repo_path)
            )
        return paths

    def initialize(self, engine: SyncEngine, dry_run: bool = False) -> dict:
        """Offload existing large files and stage the ditrive state files.

        Returns:
            Push statistics
        """
        logger.info(f"Initializing ditrive for repository: {self.repo_name}")
        git = self.git
        if git is None:
            raise DitriveGitError(f"Not a git repository: {self.repo_path}")

        stats = engine.push(dry_run=dry_run)
        if not dry_run:
            git.stage_files(self.config_files_to_stage())
        return stats

    # =========================
    # Reporting
    # =========================

    def managed_files(self) -> list[ManagedFile]:
        return self.tracker.enumerate_all()

    def status_rows(self) -> list[tuple[str, str]]:
        """Configuration, login and repository state as (label, value) rows."""
        github = self.global_config.github
        drive = self.global_config.drive
        rows = [
            ("GitHub username", github.username or "Not set"),
            ("GitHub token", "Set" if github.token else "Not set"),
            ("Drive auth type", drive.auth_type.value),
        ]

        if drive.auth_type == DriveAuthType.OAUTH:
            rows.append(("OAuth client ID", "Set" if drive.client_id else "Not set"))
            if drive.client_id and drive.client_secret:
                logged_in = self.create_oauth_manager().is_authenticated()
                rows.append(
                    (
                        "Login status",
                        "Logged in" if logged_in else "Not logged in (run 'ditrive login')",
                    )
                )
        else:
            rows.append(("Service account", drive.service_account_file or "Not set"))

        rows.append(("Root folder ID", drive.root_folder_id or "Not set"))
        rows.append(("Repository", str(self.repo_path)))
        rows.append(("Repository name", self.repo_name))
        rows.append(("Git initialized", "Yes" if self.git is not None else "No"))
        rows.append(
            ("GitHub repository", self.repo_config.github.repository_url or "Not connected")
        )
        rows.append(
            ("Drive folder ID", self.repo_config.drive.folder_id or "Not created")
        )
        rows.append(("Large files tracked", str(len(self.managed_files()))))
        return rows
