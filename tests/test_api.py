"""Tests for the Drive API client."""

import json
import re
import tempfile
from pathlib import Path
from unittest.mock import Mock

import httpx
import pytest

from pyditrive.api import FOLDER_MIME_TYPE, DriveClient
from pyditrive.exceptions import (
    DitriveAPIError,
    DitriveAuthenticationError,
    DitriveInvalidResponseError,
    DitriveNetworkError,
    DitriveNotFoundError,
    DitrivePermissionError,
    DitriveUploadError,
)

QUERY_RE = re.compile(r"name='(.*)' and '(.*)' in parents")


class FakeDrive:
    """In-memory stand-in for the Drive folder and file endpoints."""

    def __init__(self):
        self.folders = {}
        self.files = {}
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/drive/v3/files" and request.method == "GET":
            match = QUERY_RE.search(request.url.params["q"])
            name = match.group(1).replace("\\'", "'")
            key = (match.group(2), name)
            files = [{"id": self.folders[key], "name": name}] if key in self.folders else []
            return httpx.Response(200, json={"files": files})

        if path == "/drive/v3/files" and request.method == "POST":
            body = json.loads(request.content)
            folder_id = f"folder-{len(self.folders) + 1}"
            self.folders[(body["parents"][0], body["name"])] = folder_id
            return httpx.Response(200, json={"id": folder_id, "name": body["name"]})

        if path == "/upload/drive/v3/files":
            body = json.loads(request.content)
            self.pending = body
            return httpx.Response(
                200, headers={"Location": "https://upload.example/session-1"}
            )

        if request.url.host == "upload.example":
            content = request.read()
            file_id = f"file-{len(self.files) + 1}"
            self.files[file_id] = content
            return httpx.Response(
                200, json={"id": file_id, "name": self.pending["name"], "size": str(len(content))}
            )

        if path.startswith("/drive/v3/files/"):
            file_id = path.rsplit("/", 1)[1]
            if file_id not in self.files:
                return httpx.Response(404, json={"error": {"message": "File not found"}})
            if request.url.params.get("alt") == "media":
                return httpx.Response(200, content=self.files[file_id])
            return httpx.Response(
                200, json={"id": file_id, "size": str(len(self.files[file_id]))}
            )

        return httpx.Response(500)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def credentials():
    creds = Mock()
    creds.get_valid_credential.return_value = "access-token"
    return creds


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def client(drive, credentials):
    client = DriveClient(
        credentials,
        root_folder_id="root",
        repo_name="my-repo",
        retry_delay=0,
        transport=httpx.MockTransport(drive.handler),
    )
    yield client
    client.close()


def make_client(credentials, handler, **kwargs):
    return DriveClient(
        credentials,
        root_folder_id="root",
        repo_name="my-repo",
        retry_delay=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestFolders:
    """Tests for folder resolution."""

    def test_repo_folder_is_created_below_root(self, client, drive):
        assert client.repo_folder_id == "folder-1"
        assert drive.folders == {("root", "my-repo"): "folder-1"}
        create = drive.requests[-1]
        assert json.loads(create.content)["mimeType"] == FOLDER_MIME_TYPE

    def test_existing_repo_folder_is_reused(self, client, drive):
        drive.folders[("root", "my-repo")] = "existing"
        assert client.repo_folder_id == "existing"
        assert [r.method for r in drive.requests] == ["GET"]

    def test_configured_repo_folder_skips_lookup(self, drive, credentials):
        client = make_client(credentials, drive.handler, repo_folder_id="known")
        assert client.get_folder_for_path(".") == "known"
        assert drive.requests == []

    def test_nested_path_creates_intermediate_folders(self, client, drive):
        folder_id = client.get_folder_for_path("assets/raw")

        assert drive.folders[("folder-1", "assets")] == "folder-2"
        assert drive.folders[("folder-2", "raw")] == "folder-3"
        assert folder_id == "folder-3"

    def test_lookups_are_cached(self, client, drive):
        client.get_folder_for_path("assets")
        count = len(drive.requests)

        assert client.get_folder_for_path("assets") == "folder-2"
        assert len(drive.requests) == count

    @pytest.mark.parametrize("root", ["", ".", "/"])
    def test_root_spellings(self, client, root):
        assert client.get_folder_for_path(root) == client.repo_folder_id

    def test_backslash_paths(self, client, drive):
        client.get_folder_for_path("assets\\raw")
        assert ("folder-2", "raw") in drive.folders

    def test_query_escapes_quotes(self, client, drive):
        drive.folders[("root", "it's")] = "quoted"
        assert client.find_folder("it's", "root") == "quoted"
        assert "it\\'s" in drive.requests[-1].url.params["q"]

    def test_bearer_token_is_sent(self, client, drive):
        client.find_folder("x", "root")
        assert drive.requests[-1].headers["Authorization"] == "Bearer access-token"


class TestUpload:
    """Tests for resumable uploads."""

    def test_upload_streams_file(self, client, drive, temp_dir):
        path = temp_dir / "video.mp4"
        path.write_bytes(b"0123456789")
        progress = Mock()

        result = client.upload_file(path, "folder-9", progress_callback=progress, chunk_size=4)

        assert result == {"id": "file-1", "size": 10}
        assert drive.files["file-1"] == b"0123456789"
        assert drive.pending == {"name": "video.mp4", "parents": ["folder-9"]}
        session = drive.requests[0]
        assert session.url.params["uploadType"] == "resumable"
        assert session.headers["X-Upload-Content-Length"] == "10"
        assert progress.call_args_list[-1].args == (10, 10)

    def test_missing_file(self, client, temp_dir):
        with pytest.raises(DitriveUploadError):
            client.upload_file(temp_dir / "missing.bin", "folder-9")

    def test_missing_session_url(self, credentials, temp_dir):
        path = temp_dir / "big.bin"
        path.write_bytes(b"data")
        client = make_client(credentials, lambda request: httpx.Response(200))

        with pytest.raises(DitriveUploadError, match="session"):
            client.upload_file(path, "folder-9")

    def test_rejected_content(self, credentials, temp_dir):
        path = temp_dir / "big.bin"
        path.write_bytes(b"data")

        def handler(request):
            if request.url.host == "upload.example":
                return httpx.Response(400, json={"error": {"message": "Bad upload"}})
            return httpx.Response(200, headers={"Location": "https://upload.example/s"})

        client = make_client(credentials, handler)
        with pytest.raises(DitriveUploadError, match="Bad upload"):
            client.upload_file(path, "folder-9")


class TestDownload:
    """Tests for downloads."""

    def test_download_writes_destination(self, client, drive, temp_dir):
        drive.files["file-7"] = b"remote content"
        destination = temp_dir / "assets" / "video.mp4"
        progress = Mock()

        written = client.download_file("file-7", destination, progress_callback=progress)

        assert written == len(b"remote content")
        assert destination.read_bytes() == b"remote content"
        assert not (temp_dir / "assets" / "video.mp4.part").exists()
        assert drive.requests[-1].url.params["alt"] == "media"
        progress.assert_called()

    def test_download_missing_file(self, client, temp_dir):
        destination = temp_dir / "video.mp4"

        with pytest.raises(DitriveNotFoundError):
            client.download_file("nope", destination)

        assert list(temp_dir.iterdir()) == []

    def test_download_failure_keeps_existing_file(self, credentials, temp_dir):
        destination = temp_dir / "video.mp4"
        destination.write_bytes(b"old")
        client = make_client(credentials, lambda request: httpx.Response(500))

        with pytest.raises(DitriveAPIError):
            client.download_file("file-1", destination)

        assert destination.read_bytes() == b"old"

    def test_interrupted_download_removes_part_file(self, credentials, temp_dir):
        """Test that Ctrl-C in the middle of a stream leaves nothing behind."""

        def body():
            yield b"x" * 65536
            raise KeyboardInterrupt

        client = make_client(
            credentials, lambda request: httpx.Response(200, content=body())
        )
        destination = temp_dir / "video.mp4"

        with pytest.raises(KeyboardInterrupt):
            client.download_file("file-1", destination)

        assert list(temp_dir.iterdir()) == []

    def test_file_exists(self, client, drive):
        drive.files["file-1"] = b"x"
        assert client.file_exists("file-1") is True
        assert client.file_exists("file-2") is False


class TestErrorHandling:
    """Tests for error mapping and retries."""

    def test_server_error_is_retried(self, credentials):
        responses = [httpx.Response(503), httpx.Response(200, json={"files": []})]
        calls = []

        def handler(request):
            calls.append(request)
            return responses[len(calls) - 1]

        client = make_client(credentials, handler)
        assert client.find_folder("x", "root") is None
        assert len(calls) == 2

    def test_retries_are_bounded(self, credentials):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"error": {"message": "backend"}})

        client = make_client(credentials, handler, max_retries=2)
        with pytest.raises(DitriveAPIError, match="backend"):
            client.find_folder("x", "root")
        assert len(calls) == 3

    def test_unauthorized_is_not_retried(self, credentials):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        client = make_client(credentials, handler)
        with pytest.raises(DitriveAuthenticationError):
            client.find_folder("x", "root")
        assert len(calls) == 1

    def test_forbidden(self, credentials):
        client = make_client(
            credentials,
            lambda request: httpx.Response(403, json={"error": {"message": "No access"}}),
        )
        with pytest.raises(DitrivePermissionError, match="No access"):
            client.find_folder("x", "root")

    def test_rate_limit_is_retried(self, credentials):
        responses = [
            httpx.Response(403, json={"error": {"message": "User Rate Limit Exceeded"}}),
            httpx.Response(429),
            httpx.Response(200, json={"files": []}),
        ]
        calls = []

        def handler(request):
            calls.append(request)
            return responses[len(calls) - 1]

        client = make_client(credentials, handler)
        client.find_folder("x", "root")
        assert len(calls) == 3

    def test_network_error(self, credentials):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(credentials, handler, max_retries=1)
        with pytest.raises(DitriveNetworkError):
            client.find_folder("x", "root")
        assert len(calls) == 2

    def test_invalid_json(self, credentials):
        client = make_client(credentials, lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(DitriveInvalidResponseError):
            client.get_file_metadata("file-1")

    def test_retry_delay_grows(self, credentials):
        client = DriveClient(credentials, "root", "repo", retry_delay=1.0)
        assert 0.75 <= client._calculate_retry_delay(0) <= 1.25
        assert 3.0 <= client._calculate_retry_delay(2) <= 5.0
