"""Unit tests for the ditrive CLI commands."""

import json
import tempfile
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from pyditrive.api import DriveClient
from pyditrive.cli import main
from pyditrive.config import DriveAuthType, GlobalConfig
from pyditrive.exceptions import DitriveNetworkError
from pyditrive.project import Project
from pyditrive.sync.tracker import ManagedFileRecord, ManagedFileTracker

MIB = 1024 * 1024


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config_dir(temp_dir, monkeypatch):
    path = temp_dir / "config"
    monkeypatch.setenv("PYDITRIVE_CONFIG_DIR", str(path))
    monkeypatch.delenv("DITRIVE_GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("DITRIVE_DRIVE_ROOT_FOLDER_ID", raising=False)
    return path


@pytest.fixture
def repo_dir(temp_dir):
    path = temp_dir / "repo"
    path.mkdir()
    return path


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def mock_client():
    """Patch the Drive client used by every project."""
    client = Mock(spec=DriveClient)
    client.get_folder_for_path.return_value = "folder-1"
    client.upload_file.side_effect = lambda path, folder_id, progress_callback=None: {
        "id": f"id-{path.name}",
        "size": path.stat().st_size,
    }

    def download(file_id, destination, progress_callback=None):
        destination.write_bytes(b"restored")
        return 8

    client.download_file.side_effect = download
    with patch.object(Project, "create_drive_client", return_value=client):
        yield client


def make_file(path: Path, size: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.truncate(size)
    return path


def write_repo_settings(repo_dir: Path, **settings) -> None:
    (repo_dir / ".ditrive-config.json").write_text(json.dumps({"settings": settings}))


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        """Test main help shows all commands."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("configure", "login", "quick-setup", "init", "push", "pull", "sync", "list"):
            assert command in result.output

    def test_missing_repository(self, runner, config_dir, temp_dir):
        result = runner.invoke(main, ["--repo", str(temp_dir / "missing"), "status"])
        assert result.exit_code == 1
        assert "does not exist" in result.output


class TestConfigureCommand:
    """Tests for the configure command."""

    def test_configure_oauth(self, runner, config_dir):
        result = runner.invoke(
            main,
            ["configure"],
            input="octo\nghp_token\n1\nclient-id\nclient-secret\nroot-folder\n20\nskip\n",
        )

        assert result.exit_code == 0, result.output
        saved = json.loads((config_dir / "config.json").read_text())
        assert saved["github"] == {
            "username": "octo",
            "token": "ghp_token",
            "default_visibility": "private",
        }
        assert saved["drive"]["auth_type"] == "oauth"
        assert saved["drive"]["client_id"] == "client-id"
        assert saved["drive"]["root_folder_id"] == "root-folder"
        assert saved["settings"]["large_file_threshold_mb"] == 20
        assert saved["settings"]["handle_ignored_large_files"] == "skip"
        assert "ditrive login" in result.output


class TestAuthCommands:
    """Tests for login and logout."""

    def test_login_requires_oauth_client(self, runner, config_dir):
        result = runner.invoke(main, ["login"])
        assert result.exit_code == 1
        assert "configure" in result.output

    def test_login_not_needed_for_service_account(self, runner, config_dir):
        config = GlobalConfig.load(config_dir)
        config.drive.auth_type = DriveAuthType.SERVICE_ACCOUNT
        config.save()

        result = runner.invoke(main, ["login"])

        assert result.exit_code == 1
        assert "service account" in result.output

    def test_login_when_already_authenticated(self, runner, config_dir):
        config = GlobalConfig.load(config_dir)
        config.drive.client_id = "id"
        config.drive.client_secret = "secret"
        config.save()

        with patch("pyditrive.auth.OAuthManager.is_authenticated", return_value=True):
            with patch("pyditrive.auth.OAuthManager.authorize") as authorize:
                result = runner.invoke(main, ["login"])

        assert result.exit_code == 0
        assert "Already logged in" in result.output
        authorize.assert_not_called()

    def test_logout(self, runner, config_dir):
        config = GlobalConfig.load(config_dir)
        config.drive.client_id = "id"
        config.drive.client_secret = "secret"
        config.save()

        with patch("pyditrive.auth.OAuthManager.logout") as logout:
            result = runner.invoke(main, ["logout"])

        assert result.exit_code == 0
        logout.assert_called_once()
        assert "Logged out" in result.output


class TestPushCommand:
    """Tests for push."""

    def test_push_requires_drive_configuration(self, runner, config_dir, repo_dir):
        make_file(repo_dir / "big.bin", 11 * MIB)
        result = runner.invoke(main, ["--repo", str(repo_dir), "push"])
        assert result.exit_code == 1
        assert "not configured" in result.output

    def test_push_rejects_invalid_threshold(self, runner, config_dir, repo_dir, mock_client):
        write_repo_settings(repo_dir, large_file_threshold_mb=0)
        result = runner.invoke(main, ["--repo", str(repo_dir), "push"])
        assert result.exit_code == 1
        mock_client.upload_file.assert_not_called()

    def test_push_json(self, runner, config_dir, repo_dir, mock_client):
        make_file(repo_dir / "assets" / "video.mp4", 11 * MIB)
        make_file(repo_dir / "small.txt", 10)

        result = runner.invoke(main, ["--repo", str(repo_dir), "--json", "push"])

        assert result.exit_code == 0, result.output
        stats = json.loads(result.output)
        assert stats["uploads"] == 1
        assert ManagedFileTracker(repo_dir).is_managed(repo_dir / "assets" / "video.mp4")
        assert "assets/video.mp4" in (repo_dir / ".gitignore").read_text()

    def test_push_dry_run(self, runner, config_dir, repo_dir, mock_client):
        make_file(repo_dir / "big.bin", 11 * MIB)

        result = runner.invoke(main, ["--repo", str(repo_dir), "push", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Would upload: big.bin" in result.output
        mock_client.upload_file.assert_not_called()

    def test_push_asks_about_ignored_files(self, runner, config_dir, repo_dir, mock_client):
        (repo_dir / ".gitignore").write_text("*.mp4\n")
        make_file(repo_dir / "video.mp4", 11 * MIB)

        result = runner.invoke(main, ["--repo", str(repo_dir), "push"], input="1\n")

        assert result.exit_code == 0, result.output
        assert "already ignored: video.mp4" in result.output
        mock_client.upload_file.assert_called_once()

    def test_push_update_flag(self, runner, config_dir, repo_dir, mock_client):
        path = make_file(repo_dir / "big.bin", 11 * MIB)
        runner.invoke(main, ["--repo", str(repo_dir), "-q", "push"])
        with open(path, "r+b") as f:
            f.write(b"changed")

        result = runner.invoke(main, ["--repo", str(repo_dir), "--json", "push", "--update"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["updates"] == 1

    def test_push_upload_error(self, runner, config_dir, repo_dir, mock_client):
        make_file(repo_dir / "big.bin", 11 * MIB)
        mock_client.upload_file.side_effect = DitriveNetworkError("connection reset")

        result = runner.invoke(main, ["--repo", str(repo_dir), "push"])

        assert result.exit_code == 1
        assert "connection reset" in result.output
        assert not (repo_dir / ".ditrive").exists()


class TestPullAndSync:
    """Tests for pull and sync."""

    def test_pull_restores_missing_files(self, runner, config_dir, repo_dir, mock_client):
        ManagedFileTracker(repo_dir).add(repo_dir, "big.bin", ManagedFileRecord(remote_id="R1"))

        result = runner.invoke(main, ["--repo", str(repo_dir), "pull"])

        assert result.exit_code == 0, result.output
        assert (repo_dir / "big.bin").read_bytes() == b"restored"
        assert "Downloaded: big.bin" in result.output

    def test_sync_json(self, runner, config_dir, repo_dir, mock_client):
        make_file(repo_dir / "new.bin", 11 * MIB)
        ManagedFileTracker(repo_dir).add(repo_dir, "old.bin", ManagedFileRecord(remote_id="R1"))

        result = runner.invoke(main, ["--repo", str(repo_dir), "--json", "sync"])

        assert result.exit_code == 0, result.output
        stats = json.loads(result.output)
        assert stats["uploads"] == 1
        assert stats["downloads"] == 1

    def test_init_requires_git(self, runner, config_dir, repo_dir, mock_client):
        result = runner.invoke(main, ["--repo", str(repo_dir), "init"])
        assert result.exit_code == 1
        assert "Not a git repository" in result.output


class TestReporting:
    """Tests for status and list."""

    def test_list_empty(self, runner, config_dir, repo_dir):
        result = runner.invoke(main, ["--repo", str(repo_dir), "list"])
        assert result.exit_code == 0
        assert "No files are currently managed" in result.output

    def test_list_json(self, runner, config_dir, repo_dir):
        (repo_dir / "assets").mkdir()
        ManagedFileTracker(repo_dir).add(
            repo_dir / "assets", "video.mp4", ManagedFileRecord("R1", "h", 2048, 1)
        )

        result = runner.invoke(main, ["--repo", str(repo_dir), "--json", "list"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == [
            {
                "Path": "assets/video.mp4",
                "Size": "2.0 KB",
                "Local": "missing",
                "Remote ID": "R1",
            }
        ]

    def test_status(self, runner, config_dir, repo_dir):
        result = runner.invoke(main, ["--repo", str(repo_dir), "--json", "status"])

        assert result.exit_code == 0, result.output
        rows = json.loads(result.output)
        assert rows["GitHub token"] == "Not set"
        assert rows["Large files tracked"] == "0"
