"""GitHub CLI fallback for repository hosting"""

import asyncio
import logging
import subprocess
from typing import List, Optional, Tuple

from ..exceptions import HostingError, RepositoryAlreadyExists
from .client import HostingClient

logger = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = ("not found", "could not resolve", "http 404")


def _run_gh_command(args: List[str], timeout: float = 60) -> Tuple[str, str, int]:
    """Run GitHub CLI command and return stdout, stderr, and return code"""
    try:
        result = subprocess.run(
            ["gh"] + args,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.stdout, result.stderr, result.returncode
    except subprocess.TimeoutExpired:
        return "", "Command timed out", 1
    except FileNotFoundError:
        return "", "GitHub CLI (gh) not found. Please install it from https://cli.github.com/", 1


class GhCliHostingClient(HostingClient):
    """Hosting client backed by an authenticated ``gh`` installation."""

    def __init__(self, timeout: float = 60, host: Optional[str] = None):
        self.timeout = timeout
        if host:
            self.host = host

    async def _gh(self, *args: str) -> Tuple[str, str, int]:
        return await asyncio.to_thread(_run_gh_command, list(args), self.timeout)

    async def create_repository(
        self, owner: str, name: str, description: str = "", private: bool = True
    ) -> str:
        args = ["repo", "create", f"{owner}/{name}", "--private" if private else "--public"]
        if description:
            args.extend(["--description", description])
        stdout, stderr, returncode = await self._gh(*args)
        if returncode != 0:
            if "already exists" in stderr.lower():
                raise RepositoryAlreadyExists(f"{owner}/{name}")
            raise HostingError(f"Failed to create repository {owner}/{name}: {stderr.strip()}")
        logger.info(f"Created repository {owner}/{name} with gh")
        return self.remote_url(owner, name)

    async def delete_repository(self, owner: str, name: str) -> None:
        stdout, stderr, returncode = await self._gh("repo", "delete", f"{owner}/{name}", "--yes")
        if returncode == 0:
            logger.info(f"Deleted repository {owner}/{name} with gh")
            return
        if any(marker in stderr.lower() for marker in _NOT_FOUND_MARKERS):
            logger.debug(f"Repository {owner}/{name} already gone")
            return
        raise HostingError(f"Failed to delete repository {owner}/{name}: {stderr.strip()}")

    async def repository_exists(self, owner: str, name: str) -> bool:
        stdout, stderr, returncode = await self._gh("repo", "view", f"{owner}/{name}", "--json", "name")
        if returncode == 0:
            return True
        if any(marker in stderr.lower() for marker in _NOT_FOUND_MARKERS):
            return False
        raise HostingError(f"Cannot check repository {owner}/{name}: {stderr.strip()}")
