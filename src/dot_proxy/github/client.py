"""GitHub API client and authentication"""

import asyncio
import json
import logging
import re
import shutil
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import aiohttp

from ..configuration import DotConfig
from ..error_handling import retry_on
from ..exceptions import ConfigurationError, HostingError, RateLimited, RepositoryAlreadyExists

logger = logging.getLogger(__name__)

USER_AGENT = "dot-proxy/0.1.0"
GITHUB_API_VERSION = "2022-11-28"


class HostingClient:
    """Creates and deletes repositories on the hosting service.

    ``create_repository`` returns the SSH remote URL of the new repository.
    ``delete_repository`` treats a repository that is already gone as deleted.
    """

    host = "github.com"

    def remote_url(self, owner: str, name: str) -> str:
        return f"git@{self.host}:{owner}/{name}.git"

    async def create_repository(
        self, owner: str, name: str, description: str = "", private: bool = True
    ) -> str:
        raise NotImplementedError

    async def delete_repository(self, owner: str, name: str) -> None:
        raise NotImplementedError

    async def repository_exists(self, owner: str, name: str) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def _rate_limit_delay(headers) -> float:
    retry_after = headers.get("Retry-After")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            pass
    reset = headers.get("X-RateLimit-Reset")
    if reset:
        try:
            return max(0.0, float(reset) - time.time())
        except ValueError:
            pass
    return 0.0


@dataclass
class GitHubClient(HostingClient):
    """GitHub API client with authentication and rate limiting."""

    token: str
    session: aiohttp.ClientSession
    base_url: str = "https://api.github.com"
    host: str = "github.com"
    max_retries: int = 3
    retry_backoff: float = 1.0
    _send: Any = field(default=None, init=False, repr=False)

    def __post_init__(self):
        """Validate GitHub token format and wire up rate-limit retries"""
        if not self._is_valid_github_token(self.token):
            logger.warning("GitHub token format appears invalid")
        self._send = retry_on(
            RateLimited, max_retries=self.max_retries, backoff_factor=self.retry_backoff
        )(self._send_once)

    @staticmethod
    def _is_valid_github_token(token: str) -> bool:
        """Validate GitHub token format"""
        if not token or len(token.strip()) == 0:
            return False

        patterns = [
            r"^ghp_[a-zA-Z0-9]{36}$",  # Personal access tokens (classic)
            r"^github_pat_[a-zA-Z0-9_]{82}$",  # Fine-grained personal access tokens
            r"^gho_[a-zA-Z0-9]{36}$",  # OAuth tokens, as issued to the gh CLI
            r"^ghs_[a-zA-Z0-9]{36}$",  # GitHub App installation tokens
            r"^ghu_[a-zA-Z0-9]{36}$",  # GitHub App user tokens
        ]

        return any(re.match(pattern, token.strip()) for pattern in patterns)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": USER_AGENT,
        }

    async def _send_once(self, method: str, endpoint: str, **kwargs) -> Tuple[int, Dict[str, Any]]:
        """Make one request and return the status code and decoded body"""
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            response = await self.session.request(method, url, headers=self._headers(), **kwargs)
            try:
                status = response.status
                headers = response.headers
                text = await response.text()
            finally:
                response.release()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HostingError(f"{method} {endpoint} failed: {e}") from e

        try:
            body = json.loads(text) if text else {}
        except ValueError:
            body = {"message": text}
        if not isinstance(body, dict):
            body = {"items": body}

        if status == 429 or (status == 403 and headers.get("X-RateLimit-Remaining") == "0"):
            delay = _rate_limit_delay(headers)
            raise RateLimited(
                f"GitHub rate limit hit on {method} {endpoint}", retry_after=delay, status=status
            )
        logger.debug(f"{method} {endpoint} -> {status}")
        return status, body

    async def get(self, endpoint: str, **kwargs) -> Tuple[int, Dict[str, Any]]:
        """Make GET request to GitHub API"""
        return await self._send("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs) -> Tuple[int, Dict[str, Any]]:
        """Make POST request to GitHub API"""
        return await self._send("POST", endpoint, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> Tuple[int, Dict[str, Any]]:
        """Make DELETE request to GitHub API"""
        return await self._send("DELETE", endpoint, **kwargs)

    async def get_authenticated_user(self) -> str:
        status, body = await self.get("/user")
        if status != 200:
            raise HostingError(f"Cannot identify GitHub user: {body.get('message', status)}", status)
        return body["login"]

    async def create_repository(
        self, owner: str, name: str, description: str = "", private: bool = True
    ) -> str:
        payload = {
            "name": name,
            "description": description,
            "private": private,
            "auto_init": False,
        }
        status, body = await self.post(f"/orgs/{owner}/repos", json=payload)
        if status == 404:
            # Not an organization; a personal account creates through /user/repos
            login = await self.get_authenticated_user()
            if login.lower() != owner.lower():
                raise HostingError(f"Organization '{owner}' not found", status)
            status, body = await self.post("/user/repos", json=payload)

        if status == 422 and "already exists" in json.dumps(body).lower():
            raise RepositoryAlreadyExists(f"{owner}/{name}")
        if status != 201:
            raise HostingError(
                f"Failed to create repository {owner}/{name}: {body.get('message', status)}", status
            )
        logger.info(f"Created repository {owner}/{name}")
        return self.remote_url(owner, name)

    async def delete_repository(self, owner: str, name: str) -> None:
        status, body = await self.delete(f"/repos/{owner}/{name}")
        if status == 404:
            logger.debug(f"Repository {owner}/{name} already gone")
            return
        if status not in (200, 202, 204):
            raise HostingError(
                f"Failed to delete repository {owner}/{name}: {body.get('message', status)}", status
            )
        logger.info(f"Deleted repository {owner}/{name}")

    async def repository_exists(self, owner: str, name: str) -> bool:
        status, body = await self.get(f"/repos/{owner}/{name}")
        if status == 200:
            return True
        if status == 404:
            return False
        raise HostingError(f"Cannot check repository {owner}/{name}: {body.get('message', status)}", status)

    async def close(self) -> None:
        await self.session.close()


def get_hosting_client(config: DotConfig) -> HostingClient:
    """Token-authenticated API client if a token is available, else the gh CLI."""
    from .cli import GhCliHostingClient

    token = config.resolve_github_token()
    if token:
        logger.debug("Using GitHub API with token authentication")
        # Caller is responsible for closing the session
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=config.network_timeout_seconds)
        )
        return GitHubClient(
            token=token,
            session=session,
            max_retries=config.hosting_max_retries,
            retry_backoff=config.hosting_retry_backoff,
        )

    if shutil.which("gh"):
        logger.debug("No GitHub token found, using the gh CLI")
        return GhCliHostingClient(timeout=config.network_timeout_seconds)

    raise ConfigurationError(
        "No GitHub credentials: set GITHUB_TOKEN (or github_token in dot.conf) "
        "or install and log in to the GitHub CLI (gh)"
    )
