"""Source-control capability backed by the GitHub REST API (PyGithub).

PyGithub is synchronous, so every call runs in a worker thread and the event
loop only sees an awaitable. GitHub and network errors are translated into the
``SourceControlError`` hierarchy so callers can decide what is retriable.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol, TypeVar

import httpx
import requests
from github import (
    Auth,
    BadCredentialsException,
    Github,
    GithubException,
    RateLimitExceededException,
    UnknownObjectException,
)

from gitfox.config.settings import Settings
from gitfox.errors import (
    AuthConfigurationError,
    NotFoundError,
    RateLimitedError,
    SourceControlAuthError,
    SourceControlError,
    SourceControlTransientError,
)
from gitfox.models.github_types import CommitStatusState, FileDiff
from gitfox.services.github_auth import GitHubCredentials

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SourceControlAPI(Protocol):
    """Operations the review pipeline needs from the hosting provider."""

    async def fetch_changed_files(self, repository: str, pr_number: int) -> list[FileDiff]: ...

    async def post_comment(self, repository: str, pr_number: int, body: str) -> None: ...

    async def set_commit_status(
        self,
        repository: str,
        commit_sha: str,
        state: CommitStatusState,
        description: str,
        context: str,
    ) -> None: ...


def _from_status(status: int | None, exc: Exception) -> SourceControlError:
    if status in (401, 403):
        return SourceControlAuthError(f"GitHub denied access ({status}): {exc}", status)
    if status == 404:
        return NotFoundError(f"GitHub resource not found: {exc}", status)
    if status == 429:
        return RateLimitedError(f"GitHub rate limit exceeded: {exc}", status)
    if status is not None and status >= 500:
        return SourceControlTransientError(f"GitHub server error ({status}): {exc}", status)
    return SourceControlError(f"GitHub request failed ({status}): {exc}", status)


def translate_github_error(exc: Exception) -> SourceControlError:
    """Map PyGithub, requests and token-exchange exceptions onto the pipeline's error kinds."""
    if isinstance(exc, SourceControlError):
        return exc
    if isinstance(exc, RateLimitExceededException):
        return RateLimitedError(f"GitHub rate limit exceeded: {exc}", exc.status)
    if isinstance(exc, BadCredentialsException):
        return SourceControlAuthError(f"GitHub rejected credentials: {exc}", exc.status)
    if isinstance(exc, UnknownObjectException):
        return NotFoundError(f"GitHub resource not found: {exc}", exc.status)
    if isinstance(exc, GithubException):
        return _from_status(exc.status, exc)
    # Installation token exchange (httpx) and credential loading
    if isinstance(exc, httpx.HTTPStatusError):
        return _from_status(exc.response.status_code, exc)
    if isinstance(exc, httpx.TransportError):
        return SourceControlTransientError(f"GitHub token exchange failed: {exc}")
    if isinstance(exc, AuthConfigurationError):
        return SourceControlAuthError(f"GitHub credentials unusable: {exc}")
    if isinstance(exc, (requests.Timeout, requests.ConnectionError, TimeoutError)):
        return SourceControlTransientError(f"GitHub unreachable: {exc}")
    return SourceControlError(f"Unexpected GitHub client error: {exc}")


class GitHubSourceControl:
    """GitHub implementation of ``SourceControlAPI``."""

    def __init__(
        self,
        settings: Settings,
        credentials: GitHubCredentials,
        github_factory: Callable[..., Github] = Github,
    ) -> None:
        self.base_url = settings.github_api_url.rstrip("/")
        self.timeout = settings.api_timeout_seconds
        self._credentials = credentials
        self._github_factory = github_factory
        self._clients: dict[str, Github] = {}

    async def _client(self) -> Github:
        token = await self._credentials.get_token()
        client = self._clients.get(token)
        if client is None:
            # Installation tokens rotate; only the current one is kept
            self._clients.clear()
            client = self._github_factory(
                auth=Auth.Token(token),
                base_url=self.base_url,
                timeout=self.timeout,
                retry=None,  # retries are decided by the caller
                per_page=100,
            )
            self._clients[token] = client
        return client

    async def _call(self, func: Callable[[Github], T]) -> T:
        """Run ``func`` with a client in a worker thread; token lookup included."""
        try:
            gh = await self._client()
            return await asyncio.to_thread(func, gh)
        except Exception as exc:
            raise translate_github_error(exc) from exc

    async def fetch_changed_files(self, repository: str, pr_number: int) -> list[FileDiff]:
        """Return the pull request's files in the order GitHub lists them."""

        def _fetch(gh: Github) -> list[FileDiff]:
            pr = gh.get_repo(repository).get_pull(pr_number)
            return [
                FileDiff(
                    filename=f.filename,
                    patch=f.patch,
                    status=f.status,
                    additions=f.additions,
                    deletions=f.deletions,
                    previous_filename=f.previous_filename,
                )
                for f in pr.get_files()
            ]

        files = await self._call(_fetch)
        logger.info(f"Fetched {len(files)} changed files for {repository}#{pr_number}")
        return files

    async def post_comment(self, repository: str, pr_number: int, body: str) -> None:
        def _post(gh: Github) -> None:
            gh.get_repo(repository, lazy=True).get_issue(pr_number).create_comment(body)

        await self._call(_post)
        logger.info(f"Posted review comment on {repository}#{pr_number}")

    async def set_commit_status(
        self,
        repository: str,
        commit_sha: str,
        state: CommitStatusState,
        description: str,
        context: str,
    ) -> None:
        def _set(gh: Github) -> None:
            commit = gh.get_repo(repository, lazy=True).get_commit(commit_sha)
            commit.create_status(state=state, description=description, context=context)

        await self._call(_set)
        logger.info(f"Set commit status '{state}' on {repository}@{commit_sha[:7]}")
