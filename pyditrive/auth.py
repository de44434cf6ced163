"""Google Drive authorization.

Two credential providers are available, both exposing
``get_valid_credential()``:

* :class:`OAuthManager` runs the installed-app OAuth flow (browser plus a
  local callback server) and persists tokens in ``tokens.json``;
* :class:`ServiceAccountAuth` signs an RS256 JWT assertion with a service
  account key and exchanges it for an access token.
"""

from __future__ import annotations

import json
import logging
import os
import time
import webbrowser
from dataclasses import asdict, dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import click
import httpx
import jwt

from .config import DEFAULT_REDIRECT_URI
from .exceptions import DitriveAuthError

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"

# Tokens expiring within this many seconds are refreshed
EXPIRY_MARGIN = 300

DEFAULT_CALLBACK_PORT = 8085

SUCCESS_PAGE = (
    b"<html><body style='font-family: sans-serif; text-align: center; "
    b"padding: 50px;'><h1>Authorization Successful!</h1>"
    b"<p>You can close this window and return to the terminal.</p>"
    b"</body></html>"
)


@dataclass
class OAuthCredentials:
    """OAuth client credentials from the Google Cloud Console."""

    client_id: str
    client_secret: str
    redirect_uri: str = DEFAULT_REDIRECT_URI


@dataclass
class StoredTokens:
    """Tokens persisted between runs."""

    access_token: str
    refresh_token: str | None = None
    expires_at: int = 0
    """Expiry time (Unix timestamp, seconds)"""

    token_type: str = "Bearer"

    def is_valid(self, margin: int = EXPIRY_MARGIN) -> bool:
        """Check whether the access token is usable for at least ``margin`` seconds."""
        return self.expires_at > int(time.time()) + margin

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredTokens:
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=int(data.get("expires_at", 0)),
            token_type=data.get("token_type", "Bearer"),
        )


def parse_code_from_request(request_path: str) -> str | None:
    """Extract the authorization code from a callback request path.

    Args:
        request_path: Path with query, e.g. ``/?code=4/0Af...&scope=...``

    Returns:
        The decoded code, or None if the request carries no code
    """
    query = parse_qs(urlparse(request_path).query)
    codes = query.get("code")
    if not codes or not codes[0]:
        return None
    return codes[0]


def callback_port(redirect_uri: str) -> int:
    """Port the local callback server listens on."""
    return urlparse(redirect_uri).port or DEFAULT_CALLBACK_PORT


def _token_request(
    client: httpx.Client, url: str, data: dict[str, str], action: str
) -> dict[str, Any]:
    try:
        response = client.post(url, data=data)
    except httpx.RequestError as e:
        raise DitriveAuthError(f"{action} failed: {e}") from e

    if response.is_error:
        raise DitriveAuthError(f"{action} failed: {response.text}")
    try:
        payload = response.json()
    except ValueError as e:
        raise DitriveAuthError(f"Failed to parse token response: {e}") from e
    if "access_token" not in payload:
        raise DitriveAuthError("Token response did not include an access token")
    return payload


class OAuthManager:
    """OAuth2 manager for Google Drive user credentials."""

    def __init__(
        self,
        credentials: OAuthCredentials,
        tokens_path: Path,
        transport: httpx.BaseTransport | None = None,
        open_browser: bool = True,
    ):
        """Initialize OAuth manager.

        Args:
            credentials: OAuth client credentials
            tokens_path: File where tokens are persisted
            transport: Optional httpx transport (used by tests)
            open_browser: Try to open the authorization URL in a browser
        """
        self.credentials = credentials
        self.tokens_path = tokens_path
        self.open_browser = open_browser
        self._transport = transport
        self._tokens: StoredTokens | None = None

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=httpx.Timeout(30.0), transport=self._transport)

    def load_tokens(self) -> StoredTokens | None:
        """Load persisted tokens, or None if there are none."""
        if not self.tokens_path.exists():
            return None
        try:
            with open(self.tokens_path, encoding="utf-8") as f:
                return StoredTokens.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable token file {self.tokens_path}: {e}")
            return None

    def save_tokens(self, tokens: StoredTokens) -> None:
        """Persist tokens with owner-only permissions."""
        self.tokens_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.tokens_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(tokens.to_dict(), f, indent=2)
        self._tokens = tokens
        logger.debug(f"Saved tokens to {self.tokens_path}")

    def get_valid_credential(self) -> str:
        """Get a valid access token, refreshing or authorizing if needed.

        Raises:
            DitriveAuthError: If no token can be obtained
        """
        tokens = self._tokens or self.load_tokens()
        if tokens is not None:
            if tokens.is_valid():
                self._tokens = tokens
                return tokens.access_token

            if tokens.refresh_token:
                logger.info("Refreshing access token...")
                try:
                    return self.refresh_token(tokens.refresh_token).access_token
                except DitriveAuthError as e:
                    logger.warning(f"Token refresh failed, re-authorizing: {e}")

        logger.info("Starting OAuth authorization flow...")
        return self.authorize().access_token

    get_access_token = get_valid_credential

    def authorization_url(self) -> str:
        """Build the URL the user opens to grant access."""
        params = {
            "client_id": self.credentials.client_id,
            "redirect_uri": self.credentials.redirect_uri,
            "response_type": "code",
            "scope": DRIVE_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    def authorize(self) -> StoredTokens:
        """Run the interactive authorization flow."""
        url = self.authorization_url()
        click.echo("\nGoogle Drive authorization required\n")
        click.echo("Please open this URL in your browser:\n")
        click.echo(f"  {url}\n")
        if self.open_browser and not webbrowser.open(url):
            click.echo("(Could not open browser automatically)")

        code = self.wait_for_callback()
        return self.exchange_code(code)

    def wait_for_callback(self) -> str:
        """Serve the redirect URI locally until a request carries a code."""
        port = callback_port(self.credentials.redirect_uri)
        received: dict[str, str] = {}

        class CallbackHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802
                code = parse_code_from_request(self.path)
                if code is None:
                    self.send_response(400)
                    self.end_headers()
                    self.wfile.write(b"Missing authorization code")
                    return
                received["code"] = code
                self.send_response(200)
                self.send_header("Content-Type", "text/html")
                self.end_headers()
                self.wfile.write(SUCCESS_PAGE)

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug(f"Callback server: {format % args}")

        try:
            server = HTTPServer(("127.0.0.1", port), CallbackHandler)
        except OSError as e:
            raise DitriveAuthError(f"Failed to start callback server: {e}") from e

        click.echo(f"Waiting for authorization (listening on port {port})...")
        with server:
            while "code" not in received:
                server.handle_request()
        return received["code"]

    def exchange_code(self, code: str) -> StoredTokens:
        """Exchange an authorization code for tokens and persist them."""
        with self._client() as client:
            payload = _token_request(
                client,
                TOKEN_URL,
                {
                    "client_id": self.credentials.client_id,
                    "client_secret": self.credentials.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.credentials.redirect_uri,
                },
                "Token exchange",
            )
        tokens = StoredTokens(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=int(time.time()) + int(payload.get("expires_in", 0)),
            token_type=payload.get("token_type", "Bearer"),
        )
        self.save_tokens(tokens)
        return tokens

    def refresh_token(self, refresh_token: str) -> StoredTokens:
        """Refresh the access token, keeping the old refresh token if none is returned."""
        with self._client() as client:
            payload = _token_request(
                client,
                TOKEN_URL,
                {
                    "client_id": self.credentials.client_id,
                    "client_secret": self.credentials.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                "Token refresh",
            )
        tokens = StoredTokens(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_at=int(time.time()) + int(payload.get("expires_in", 0)),
            token_type=payload.get("token_type", "Bearer"),
        )
        self.save_tokens(tokens)
        return tokens

    def logout(self) -> None:
        """Revoke the access token and delete stored tokens.

        Revocation failures are logged; the local tokens are removed anyway.
        """
        tokens = self.load_tokens()
        if tokens is not None:
            with self._client() as client:
                try:
                    response = client.post(REVOKE_URL, data={"token": tokens.access_token})
                    if response.is_error:
                        logger.warning(f"Token revocation returned {response.status_code}")
                except httpx.RequestError as e:
                    logger.warning(f"Token revocation failed: {e}")

        self.tokens_path.unlink(missing_ok=True)
        self._tokens = None
        logger.info("Logged out and cleared stored tokens")

    def is_authenticated(self) -> bool:
        """Check for a usable access token or a refresh token."""
        tokens = self.load_tokens()
        if tokens is None:
            return False
        return tokens.is_valid(margin=0) or bool(tokens.refresh_token)


class ServiceAccountAuth:
    """Access tokens for a Google service account."""

    GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"

    def __init__(
        self,
        service_account_file: Path,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize service account auth.

        Args:
            service_account_file: JSON key downloaded from the Cloud Console
            transport: Optional httpx transport (used by tests)
        """
        self.service_account_file = service_account_file
        self._transport = transport
        self._access_token: str | None = None
        self._expires_at = 0

    def _load_key(self) -> dict[str, Any]:
        try:
            with open(self.service_account_file, encoding="utf-8") as f:
                key = json.load(f)
        except (OSError, ValueError) as e:
            raise DitriveAuthError(f"Failed to read service account key: {e}") from e
        for field_name in ("client_email", "private_key"):
            if not key.get(field_name):
                raise DitriveAuthError(f"Service account key is missing '{field_name}'")
        key.setdefault("token_uri", TOKEN_URL)
        return key

    def build_assertion(self, key: dict[str, Any], now: int | None = None) -> str:
        """Sign the JWT assertion exchanged for an access token."""
        now = int(time.time()) if now is None else now
        claims = {
            "iss": key["client_email"],
            "scope": DRIVE_SCOPE,
            "aud": key["token_uri"],
            "iat": now,
            "exp": now + 3600,
        }
        try:
            return jwt.encode(claims, key["private_key"], algorithm="RS256")
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise DitriveAuthError(f"Failed to sign JWT: {e}") from e

    def get_valid_credential(self) -> str:
        """Get an access token, requesting a new one when close to expiry."""
        if self._access_token and self._expires_at > int(time.time()) + EXPIRY_MARGIN:
            return self._access_token

        key = self._load_key()
        assertion = self.build_assertion(key)
        with httpx.Client(timeout=httpx.Timeout(30.0), transport=self._transport) as client:
            payload = _token_request(
                client,
                key["token_uri"],
                {"grant_type": self.GRANT_TYPE, "assertion": assertion},
                "Service account token request",
            )

        self._access_token = payload["access_token"]
        self._expires_at = int(time.time()) + int(payload.get("expires_in", 3600))
        logger.debug(f"Obtained service account token for {key['client_email']}")
        return self._access_token
