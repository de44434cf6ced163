"""Configuration management for pyditrive.

Two layers of configuration are kept:

* the global configuration shared by every repository, stored as JSON in
  ``~/.config/pyditrive/config.json`` (``PYDITRIVE_CONFIG_DIR`` overrides the
  directory);
* the repository configuration, stored in ``.ditrive-config.json`` at the
  repository root. It is created from the global defaults on first load and
  is meant to be committed, so it never holds tokens.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .exceptions import DitriveConfigError
from .utils import MIB, REPO_CONFIG_FILE_NAME

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_MB = 10
DEFAULT_MANAGED_FILES_MARKER = "Managed by ditrive"
DEFAULT_ADDITIONAL_IGNORE_PATTERNS = ["*.tmp", "*.log"]
DEFAULT_REDIRECT_URI = "http://localhost:8085"


class SyncPolicy(str, Enum):
    """What to do with a large file that is already covered by an ignore rule."""

    SKIP = "skip"
    """Leave the file alone"""

    MANAGE = "manage"
    """Upload and track it like any other large file"""

    ASK = "ask"
    """Ask the operator for every such file"""

    @classmethod
    def from_string(cls, value: str) -> "SyncPolicy":
        """Parse a policy name.

        Raises:
            DitriveConfigError: If the value is not a known policy
        """
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise DitriveConfigError(
                f"Invalid value for handle_ignored_large_files: {value!r} "
                f"(expected one of: {valid})"
            ) from None


class DriveAuthType(str, Enum):
    """Authentication method for Google Drive."""

    OAUTH = "oauth"
    SERVICE_ACCOUNT = "service_account"


def validate_threshold_mb(value: Any) -> int:
    """Validate a large file threshold expressed in MiB.

    Raises:
        DitriveConfigError: If the value is not a positive integer
    """
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise DitriveConfigError(
            f"Invalid large_file_threshold_mb: {value!r} (expected a positive integer)"
        )
    return value


def get_config_dir() -> Path:
    """Return the global configuration directory."""
    override = os.environ.get("PYDITRIVE_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "pyditrive"


def _read_json(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise DitriveConfigError(f"Failed to read configuration {path}: {e}") from e
    if not isinstance(data, dict):
        raise DitriveConfigError(f"Configuration {path} must contain a JSON object")
    return data


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")


# =============================================================================
# Global configuration
# =============================================================================


@dataclass
class GitHubGlobalConfig:
    username: str = ""
    token: str = ""
    default_visibility: str = "private"


@dataclass
class DriveGlobalConfig:
    auth_type: DriveAuthType = DriveAuthType.OAUTH
    client_id: str = ""
    client_secret: str = ""
    service_account_file: str = ""
    root_folder_id: str = ""
    redirect_uri: str = DEFAULT_REDIRECT_URI


@dataclass
class GlobalSettings:
    large_file_threshold_mb: int = DEFAULT_THRESHOLD_MB
    handle_ignored_large_files: str = SyncPolicy.ASK.value
    managed_files_marker: str = DEFAULT_MANAGED_FILES_MARKER


@dataclass
class GlobalConfig:
    """Configuration shared across all repositories."""

    github: GitHubGlobalConfig = field(default_factory=GitHubGlobalConfig)
    drive: DriveGlobalConfig = field(default_factory=DriveGlobalConfig)
    settings: GlobalSettings = field(default_factory=GlobalSettings)

    config_dir: Path = field(default_factory=get_config_dir, repr=False)
    """Directory the configuration was loaded from"""

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def tokens_path(self) -> Path:
        """Location of persisted OAuth tokens."""
        return self.config_dir / "tokens.json"

    def to_dict(self) -> dict:
        """Convert configuration to dictionary for JSON serialization."""
        drive = asdict(self.drive)
        drive["auth_type"] = self.drive.auth_type.value
        return {
            "github": asdict(self.github),
            "drive": drive,
            "settings": asdict(self.settings),
        }

    @classmethod
    def from_dict(cls, data: dict, config_dir: Optional[Path] = None) -> "GlobalConfig":
        """Create GlobalConfig from dictionary, filling in defaults."""
        github = data.get("github") or {}
        drive = data.get("drive") or {}
        settings = data.get("settings") or {}

        try:
            auth_type = DriveAuthType(drive.get("auth_type", DriveAuthType.OAUTH.value))
        except ValueError:
            raise DitriveConfigError(
                f"Invalid drive auth_type: {drive.get('auth_type')!r}"
            ) from None

        return cls(
            github=GitHubGlobalConfig(
                username=github.get("username", ""),
                token=github.get("token", ""),
                default_visibility=github.get("default_visibility", "private"),
            ),
            drive=DriveGlobalConfig(
                auth_type=auth_type,
                client_id=drive.get("client_id", ""),
                client_secret=drive.get("client_secret", ""),
                service_account_file=drive.get("service_account_file", ""),
                root_folder_id=drive.get("root_folder_id", ""),
                redirect_uri=drive.get("redirect_uri", DEFAULT_REDIRECT_URI),
            ),
            settings=GlobalSettings(
                large_file_threshold_mb=settings.get(
                    "large_file_threshold_mb", DEFAULT_THRESHOLD_MB
                ),
                handle_ignored_large_files=settings.get(
                    "handle_ignored_large_files", SyncPolicy.ASK.value
                ),
                managed_files_marker=settings.get(
                    "managed_files_marker", DEFAULT_MANAGED_FILES_MARKER
                ),
            ),
            config_dir=config_dir or get_config_dir(),
        )

    @classmethod
    def load(cls, config_dir: Optional[Path] = None) -> "GlobalConfig":
        """Load the global configuration, creating it with defaults if missing.

        Environment variables ``DITRIVE_GITHUB_TOKEN`` and
        ``DITRIVE_DRIVE_ROOT_FOLDER_ID`` take precedence over stored values
        and are never written back.
        """
        config_dir = config_dir or get_config_dir()
        path = config_dir / "config.json"

        if path.exists():
            config = cls.from_dict(_read_json(path), config_dir=config_dir)
            logger.debug(f"Loaded global configuration from {path}")
        else:
            config = cls(config_dir=config_dir)
            config.save()
            logger.debug(f"Created default global configuration at {path}")

        env_token = os.environ.get("DITRIVE_GITHUB_TOKEN")
        if env_token:
            config.github.token = env_token
        env_root = os.environ.get("DITRIVE_DRIVE_ROOT_FOLDER_ID")
        if env_root:
            config.drive.root_folder_id = env_root
        return config

    def save(self) -> None:
        """Write the configuration to disk."""
        _write_json(self.config_path, self.to_dict())
        try:
            # The file may hold a token and an OAuth client secret
            self.config_path.chmod(0o600)
        except OSError:
            logger.debug(f"Could not restrict permissions on {self.config_path}")

    def is_drive_configured(self) -> bool:
        """Check whether Drive credentials and the root folder are set."""
        if not self.drive.root_folder_id:
            return False
        if self.drive.auth_type == DriveAuthType.OAUTH:
            return bool(self.drive.client_id and self.drive.client_secret)
        return bool(self.drive.service_account_file)

    def is_configured(self) -> bool:
        """Check whether both GitHub and Drive are configured."""
        return bool(self.github.token) and self.is_drive_configured()


# =============================================================================
# Repository configuration
# =============================================================================


@dataclass
class GitHubRepoConfig:
    repository_url: str = ""
    branch: str = "main"
    username: str = ""


@dataclass
class DriveRepoConfig:
    folder_id: str = ""
    """Drive folder holding this repository's files (empty = resolve by name)"""


@dataclass
class RepoSettings:
    large_file_threshold_mb: int = DEFAULT_THRESHOLD_MB
    auto_sync: bool = True
    additional_ignore_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_ADDITIONAL_IGNORE_PATTERNS)
    )
    handle_ignored_large_files: str = SyncPolicy.ASK.value
    managed_files_marker: str = DEFAULT_MANAGED_FILES_MARKER
    detect_changes: bool = False
    """Re-upload managed files whose content hash changed"""

    @property
    def threshold_bytes(self) -> int:
        """Large file threshold in bytes.

        Raises:
            DitriveConfigError: If the threshold is not a positive integer
        """
        return validate_threshold_mb(self.large_file_threshold_mb) * MIB

    @property
    def policy(self) -> SyncPolicy:
        """Policy for large files that are already ignored.

        Raises:
            DitriveConfigError: If the policy name is unknown
        """
        return SyncPolicy.from_string(self.handle_ignored_large_files)

    def validate(self) -> None:
        """Validate settings consumed by the sync engine.

        Raises:
            DitriveConfigError: On the first invalid setting
        """
        _ = self.threshold_bytes
        _ = self.policy
        if not isinstance(self.additional_ignore_patterns, list):
            raise DitriveConfigError("additional_ignore_patterns must be a list")


@dataclass
class RepoConfig:
    """Repository-specific configuration stored in ``.ditrive-config.json``."""

    github: GitHubRepoConfig = field(default_factory=GitHubRepoConfig)
    drive: DriveRepoConfig = field(default_factory=DriveRepoConfig)
    settings: RepoSettings = field(default_factory=RepoSettings)

    @staticmethod
    def config_path(repo_path: Path) -> Path:
        """Get the config file path for a repository."""
        return repo_path / REPO_CONFIG_FILE_NAME

    @classmethod
    def new_with_global(cls, global_config: GlobalConfig) -> "RepoConfig":
        """Create a repository configuration inheriting global defaults."""
        return cls(
            github=GitHubRepoConfig(username=global_config.github.username),
            drive=DriveRepoConfig(),
            settings=RepoSettings(
                large_file_threshold_mb=(
                    global_config.settings.large_file_threshold_mb
                ),
                handle_ignored_large_files=(
                    global_config.settings.handle_ignored_large_files
                ),
                managed_files_marker=global_config.settings.managed_files_marker,
            ),
        )

    def to_dict(self) -> dict:
        """Convert configuration to dictionary for JSON serialization."""
        return {
            "github": asdict(self.github),
            "drive": asdict(self.drive),
            "settings": asdict(self.settings),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RepoConfig":
        """Create RepoConfig from dictionary, filling in defaults."""
        github = data.get("github") or {}
        drive = data.get("drive") or {}
        settings = data.get("settings") or {}
        defaults = RepoSettings()

        return cls(
            github=GitHubRepoConfig(
                repository_url=github.get("repository_url", ""),
                branch=github.get("branch", "main"),
                username=github.get("username", ""),
            ),
            drive=DriveRepoConfig(folder_id=drive.get("folder_id", "")),
            settings=RepoSettings(
                large_file_threshold_mb=settings.get(
                    "large_file_threshold_mb", defaults.large_file_threshold_mb
                ),
                auto_sync=settings.get("auto_sync", defaults.auto_sync),
                additional_ignore_patterns=settings.get(
                    "additional_ignore_patterns",
                    defaults.additional_ignore_patterns,
                ),
                handle_ignored_large_files=settings.get(
                    "handle_ignored_large_files",
                    defaults.handle_ignored_large_files,
                ),
                managed_files_marker=settings.get(
                    "managed_files_marker", defaults.managed_files_marker
                ),
                detect_changes=settings.get("detect_changes", defaults.detect_changes),
            ),
        )

    @classmethod
    def load(
        cls, repo_path: Path, global_config: Optional[GlobalConfig] = None
    ) -> "RepoConfig":
        """Load repository configuration, creating it from global defaults.

        Args:
            repo_path: Repository root
            global_config: Global configuration used for defaults (loaded
                on demand when the repository has no configuration yet)
        """
        path = cls.config_path(repo_path)
        if path.exists():
            config = cls.from_dict(_read_json(path))
            logger.debug(f"Loaded repository configuration from {path}")
            return config

        if global_config is None:
            global_config = GlobalConfig.load()
        config = cls.new_with_global(global_config)
        config.save(repo_path)
        logger.debug(f"Created repository configuration at {path}")
        return config

    def save(self, repo_path: Path) -> None:
        """Write the repository configuration to disk."""
        _write_json(self.config_path(repo_path), self.to_dict())
