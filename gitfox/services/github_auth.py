"""GitHub credential providers (static token or GitHub App installation token)."""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Protocol

import httpx
import jwt

from gitfox.config.settings import Settings
from gitfox.errors import AuthConfigurationError


class GitHubCredentials(Protocol):
    """Anything that can hand out a token for the GitHub REST API."""

    async def get_token(self) -> str: ...


class StaticTokenAuth:
    """A fixed personal access token or Actions token."""

    def __init__(self, token: str) -> None:
        if not token:
            raise AuthConfigurationError("GitHub token is empty")
        self._token = token

    async def get_token(self) -> str:
        return self._token


class GitHubAppAuth:
    """Handle GitHub App authentication and token management."""

    def __init__(self, settings: Settings, http_timeout: float | None = None) -> None:
        """Initialize GitHub App authentication."""
        self.app_id = settings.github_app_id
        self.installation_id = settings.github_app_installation_id
        self.api_url = settings.github_api_url.rstrip("/")
        self.http_timeout = http_timeout or settings.api_timeout_seconds
        self.private_key = self._load_private_key(settings)

        # Token cache
        self._installation_token: str | None = None
        self._token_expires_at: datetime | None = None
        self._refresh_lock = asyncio.Lock()

    @staticmethod
    def _load_private_key(settings: Settings) -> str:
        """Load the GitHub App private key.

        Returns:
            The private key content

        Raises:
            AuthConfigurationError: If private key is missing or truncated
        """
        # Try loading from file path first (preferred for local development)
        if settings.github_app_private_key_path:
            key_path = Path(settings.github_app_private_key_path)
            if key_path.exists():
                return key_path.read_text()
            raise AuthConfigurationError(f"Private key file not found: {key_path}")

        if settings.github_app_private_key:
            key = settings.github_app_private_key.strip()

            # A real key has BEGIN/END markers with content between them
            lines = key.split("\n")
            if not (key.startswith("-----BEGIN") and key.endswith("-----")) or len(lines) < 3:
                raise AuthConfigurationError(
                    "APP_PRIVATE_KEY appears incomplete. "
                    "Ensure it includes the full key content with BEGIN/END markers."
                )

            return key

        raise AuthConfigurationError(
            "GitHub App private key not configured. "
            "Set APP_PRIVATE_KEY or APP_PRIVATE_KEY_PATH"
        )

    def generate_jwt(self) -> str:
        """Generate a JWT for GitHub App authentication.

        The JWT is used to authenticate as the GitHub App itself.
        It's valid for 10 minutes (GitHub's maximum).

        Returns:
            The JWT token

        Raises:
            AuthConfigurationError: If app_id is not configured
        """
        if not self.app_id:
            raise AuthConfigurationError("GitHub App ID not configured")

        # 60 second clock drift protection
        now = int(time.time()) - 60

        payload = {
            "iat": now,
            "exp": now + (10 * 60),
            "iss": self.app_id,
        }

        return jwt.encode(payload, self.private_key, algorithm="RS256")

    async def get_token(self) -> str:
        return await self.get_installation_access_token()

    async def get_installation_access_token(self, force_refresh: bool = False) -> str:
        """Get an installation access token.

        Tokens are cached and refreshed five minutes before they expire.

        Args:
            force_refresh: Force generation of a new token even if cached token is valid

        Returns:
            The installation access token

        Raises:
            AuthConfigurationError: If installation_id is not configured
            httpx.HTTPError: If the API request fails
        """
        if not self.installation_id:
            raise AuthConfigurationError("GitHub App installation ID not configured")

        async with self._refresh_lock:
            if not force_refresh and self._is_token_valid():
                return self._installation_token  # type: ignore[return-value]

            jwt_token = self.generate_jwt()
            url = f"{self.api_url}/app/installations/{self.installation_id}/access_tokens"
            headers = {
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {jwt_token}",
                "X-GitHub-Api-Version": "2022-11-28",
            }

            async with httpx.AsyncClient(timeout=self.http_timeout) as client:
                response = await client.post(url, headers=headers)
                response.raise_for_status()
                data = response.json()

            self._installation_token = data["token"]
            self._token_expires_at = datetime.fromisoformat(
                data["expires_at"].replace("Z", "+00:00")
            )
            return self._installation_token  # type: ignore[return-value]

    def _is_token_valid(self) -> bool:
        """Check if the cached installation token is still valid.

        Returns:
            True if token exists and hasn't expired (with 5 minute buffer)
        """
        if not self._installation_token or not self._token_expires_at:
            return False

        buffer = timedelta(minutes=5)
        return datetime.now(timezone.utc) < (self._token_expires_at - buffer)


def build_github_credentials(settings: Settings) -> GitHubCredentials:
    """Pick the credential provider configured in ``settings``.

    Raises:
        AuthConfigurationError: If neither a GitHub App nor a token is configured
    """
    if settings.uses_github_app:
        return GitHubAppAuth(settings)
    if settings.github_token:
        return StaticTokenAuth(settings.github_token)
    raise AuthConfigurationError(
        "No GitHub credentials configured. Set GH_TOKEN or APP_ID + APP_INSTALLATION_ID"
    )
