"""GitHub API client for repository operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from . import __version__
from .exceptions import (
    DitriveAuthenticationError,
    DitriveGitHubError,
    DitriveNetworkError,
    DitriveNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class GitHubRepo:
    """A repository as returned by the GitHub API."""

    id: int
    name: str
    full_name: str
    html_url: str
    clone_url: str
    ssh_url: str = ""
    private: bool = True
    default_branch: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GitHubRepo:
        return cls(
            id=data["id"],
            name=data["name"],
            full_name=data["full_name"],
            html_url=data["html_url"],
            clone_url=data["clone_url"],
            ssh_url=data.get("ssh_url", ""),
            private=data.get("private", True),
            default_branch=data.get("default_branch"),
        )


class GitHubClient:
    """Client for the GitHub REST API (repository host)."""

    API_URL = "https://api.github.com"

    def __init__(
        self,
        username: str,
        token: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize GitHub client.

        Args:
            username: GitHub user name
            token: Personal access token
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.username = username
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                base_url=self.API_URL,
                headers={
                    "Authorization": f"token {self.token}",
                    "Accept": "application/vnd.github.v3+json",
                    "User-Agent": f"pyditrive/{__version__}",
                },
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def _request(self, method: str, endpoint: str, action: str, **kwargs: Any) -> Any:
        """Make a request and return the decoded JSON body.

        Args:
            method: HTTP method
            endpoint: API endpoint (relative to the API URL)
            action: Description used in error messages

        Raises:
            DitriveAuthenticationError: If the token is rejected
            DitriveNotFoundError: If the resource does not exist
            DitriveGitHubError: For any other failed request
        """
        try:
            response = self._get_client().request(method, endpoint, **kwargs)
        except httpx.RequestError as e:
            raise DitriveNetworkError(f"Network error: {e}") from e

        if response.status_code == 401:
            raise DitriveAuthenticationError("Invalid GitHub token")
        if response.status_code == 404:
            raise DitriveNotFoundError(f"Failed to {action}: not found")
        if response.is_error:
            raise DitriveGitHubError(
                f"Failed to {action} ({response.status_code}): {response.text}"
            )
        if not response.content:
            return {}
        return response.json()

    def get_auth_url(self, repo_name: str) -> str:
        """HTTPS remote URL with embedded credentials for pushing."""
        return (
            f"https://{quote(self.username, safe='')}:{quote(self.token, safe='')}"
            f"@github.com/{self.username}/{repo_name}.git"
        )

    def create_repository(
        self, name: str, description: str = "", private: bool = True
    ) -> GitHubRepo:
        """Create a repository for the authenticated user.

        Args:
            name: Repository name
            description: Repository description
            private: Create a private repository

        Returns:
            The created repository
        """
        data = self._request(
            "POST",
            "/user/repos",
            "create repository",
            json={
                "name": name,
                "description": description,
                "private": private,
                "auto_init": False,
            },
        )
        repo = GitHubRepo.from_dict(data)
        logger.info(f"Created GitHub repository: {repo.html_url}")
        return repo

    def get_repository(self, owner: str, name: str) -> GitHubRepo:
        """Get repository information."""
        data = self._request("GET", f"/repos/{owner}/{name}", "get repository")
        repo = GitHubRepo.from_dict(data)
        logger.debug(f"Retrieved repository info for: {repo.full_name}")
        return repo

    def repository_exists(self, owner: str, name: str) -> bool:
        try:
            self.get_repository(owner, name)
        except DitriveNotFoundError:
            return False
        return True

    def validate_token(self) -> bool:
        """Check that the token is accepted by the API."""
        try:
            self._request("GET", "/user", "validate token")
        except (DitriveAuthenticationError, DitriveGitHubError):
            return False
        return True
