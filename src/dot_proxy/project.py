"""Project orchestration.

A project is the main repository at ``root`` plus the hidden directories the
global index records for it. Each command maps to exactly one coordinator run.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .configuration import DotConfig
from .exceptions import (
    ConfigurationError,
    DotError,
    InvalidDirectoryPath,
    OrganizationNotAuthorized,
    RepositoryAlreadyExists,
)
from .executor import OperationExecutor
from .git import operations as ops
from .index import GlobalIndexManager
from .keys import RepositoryKey, derive, normalize_relative_path, project_key
from .repository import RepositoryHandle
from .steps import AddStep, CommitStep, InitStep, PushStep
from .transaction import TransactionCoordinator, TransactionReport

logger = logging.getLogger(__name__)


class ProjectManager:
    def __init__(
        self,
        root: Path,
        config: DotConfig,
        index: GlobalIndexManager,
        hosting=None,
        skip_hidden: bool = False,
        atomic: bool = True,
    ):
        self.root = Path(root).resolve()
        self.config = config
        self.index = index
        self.hosting = hosting
        self.skip_hidden = skip_hidden
        self.atomic = atomic
        self.main = RepositoryHandle.main(self.root)
        # Registered directories not found on disk during the last lookup
        self.missing: List[str] = []
        self.registered: List[str] = []

    def coordinator(self, skip_hidden: Optional[bool] = None) -> TransactionCoordinator:
        if skip_hidden is None:
            skip_hidden = self.skip_hidden
        return TransactionCoordinator(OperationExecutor(skip_hidden=skip_hidden), atomic=self.atomic)

    def main_remote_url(self) -> str:
        """The main repository's ``origin`` URL, the root of every key."""
        if not self.main.exists():
            raise DotError(f"{self.root} is not a git repository")
        url = ops.get_remote_url(self.main.repo)
        if not url:
            raise DotError(
                "The main repository has no 'origin' remote; "
                "add one with 'git remote add origin <url>'"
            )
        self.main.remote_url = url
        return url

    @property
    def project_key(self) -> str:
        return project_key(self.main_remote_url())

    async def hidden_handles(self) -> List[RepositoryHandle]:
        """Handles of the registered hidden directories present on disk."""
        key = self.project_key
        entry = await self.index.lookup(key)
        self.missing = []
        self.registered = []
        handles = []
        if entry is None:
            return handles
        for directory in entry.directories():
            self.registered.append(directory.relative_path)
            handle = RepositoryHandle.hidden(
                self.root,
                directory.relative_path,
                RepositoryKey(key, directory.relative_path),
                directory.remote_url,
            )
            if not handle.exists():
                logger.warning(
                    f"Hidden directory {directory.relative_path} is registered but missing "
                    "on disk, skipping",
                    extra={"repository": directory.relative_path, "project_key": key},
                )
                self.missing.append(directory.relative_path)
                continue
            handles.append(handle)
        return handles

    async def handles(self) -> List[RepositoryHandle]:
        self.main_remote_url()
        if self.skip_hidden:
            return [self.main]
        return await self.hidden_handles() + [self.main]

    def _normalize_directories(self, directories: Iterable[str]) -> List[str]:
        paths: List[str] = []
        for directory in directories:
            path = normalize_relative_path(directory)
            if path == ".git" or path.startswith(".git/"):
                raise InvalidDirectoryPath(directory, "inside the main repository's .git directory")
            if path not in paths:
                paths.append(path)
        if not paths:
            raise InvalidDirectoryPath("", "no directories given")
        return paths

    async def init(self, directories: Sequence[str]) -> TransactionReport:
        """Turn ``directories`` into hidden repositories of this project."""
        main_url = self.main_remote_url()
        paths = self._normalize_directories(directories)
        keys = {path: derive(main_url, path) for path in paths}

        organization = self.config.default_organization
        if not self.config.is_organization_authorized(organization):
            raise OrganizationNotAuthorized(organization)
        if self.hosting is None:
            raise ConfigurationError("No hosting client configured")

        key = project_key(main_url)
        entry = await self.index.lookup(key)
        if entry is not None:
            for path in paths:
                if path in entry.hidden_directories:
                    raise RepositoryAlreadyExists(keys[path])

        handles = [RepositoryHandle.hidden(self.root, path, keys[path]) for path in paths]
        handles.append(self.main)
        step = InitStep(key, main_url, paths, organization, self.hosting, self.index)
        return await self.coordinator(skip_hidden=False).run(step, handles, preserve_order=True)

    async def status(self) -> List[Tuple[str, str]]:
        """(name, status text) per repository, hidden first."""
        report = []
        for handle in await self.handles():
            report.append((handle.display_name, handle.status()))
        if not self.skip_hidden:
            for path in self.missing:
                report.insert(len(report) - 1, (path, "Registered but missing on disk"))
        return report

    async def add(self, paths: Sequence[str]) -> TransactionReport:
        handles = await self.handles()
        if self.skip_hidden:
            # Paths inside hidden directories must still be kept away from main
            await self.hidden_handles()
        step = AddStep(paths, hidden_paths=self.registered)
        return await self.coordinator().run(step, handles)

    async def commit(self, message: str) -> TransactionReport:
        handles = await self.handles()
        return await self.coordinator().run(CommitStep(message), handles)

    async def push(self) -> TransactionReport:
        handles = await self.handles()
        step = PushStep(timeout=self.config.network_timeout_seconds)
        return await self.coordinator().run(step, handles)
