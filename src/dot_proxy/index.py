"""Global index of hidden repositories.

The index is a single JSON document, ``index.json``, committed to a dedicated
repository (``.index`` in the default organization). Every write is one commit
whose message names the project and directory, so the repository history is
the audit trail.

Concurrent writers are handled optimistically: a write refreshes the local
clone, applies its change, commits and pushes. When the push is rejected
because another client got there first, the clone is refreshed again and the
same change re-applied to the fresh content, up to a bounded number of
attempts. There is no lock service.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from git import GitCommandError, Repo
from pydantic import BaseModel, Field, ValidationError

from .configuration import INDEX_REPOSITORY_NAME, DotConfig
from .error_handling import ErrorRecoveryStrategy
from .exceptions import (
    IndexConflict,
    IndexStoreError,
    OrganizationNotAuthorized,
    RepositoryKeyConflict,
)
from .git import operations as ops

logger = logging.getLogger(__name__)

INDEX_FILE = "index.json"
INDEX_FORMAT_VERSION = 1
FALLBACK_IDENTITY = {
    "GIT_AUTHOR_NAME": "dot-cli",
    "GIT_AUTHOR_EMAIL": "dot-cli@localhost",
    "GIT_COMMITTER_NAME": "dot-cli",
    "GIT_COMMITTER_EMAIL": "dot-cli@localhost",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HiddenDirectory(BaseModel):
    relative_path: str
    repository_key: str
    remote_url: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    created_by: str = "unknown"


class IndexEntry(BaseModel):
    project_key: str
    main_remote_url: Optional[str] = None
    hidden_directories: Dict[str, HiddenDirectory] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=_utcnow)

    def directories(self) -> List[HiddenDirectory]:
        """Hidden directories in relative-path order."""
        return [self.hidden_directories[p] for p in sorted(self.hidden_directories)]

    def find_key(self, repository_key: str) -> Optional[HiddenDirectory]:
        for directory in self.hidden_directories.values():
            if directory.repository_key == repository_key:
                return directory
        return None


class IndexDocument(BaseModel):
    version: int = INDEX_FORMAT_VERSION
    projects: Dict[str, IndexEntry] = Field(default_factory=dict)

    @classmethod
    def loads(cls, text: str) -> "IndexDocument":
        if not text.strip():
            return cls()
        return cls.model_validate_json(text)

    def dumps(self) -> str:
        payload = self.model_dump(mode="json")
        return json.dumps(payload, indent=2, sort_keys=True) + "\n"


# A mutation edits the document in place and returns the commit message, or
# None when the document already has the desired content.
Mutation = Callable[[IndexDocument], Optional[str]]


class GlobalIndexManager:
    """Reads and writes the global index through a local clone."""

    def __init__(self, config: DotConfig, hosting=None, created_by: Optional[str] = None):
        self.config = config
        self.hosting = hosting
        self.created_by = created_by
        self.local_path = Path(config.index_path)
        self._repo: Optional[Repo] = None
        self._fresh = False

    @property
    def remote_url(self) -> str:
        return self.config.resolve_index_remote_url()

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            raise IndexStoreError("Index repository is not open")
        return self._repo

    async def open(self) -> Repo:
        """Make sure a local clone of the index repository exists."""
        if self._repo is not None:
            return self._repo

        if ops.is_git_repository(self.local_path):
            repo = Repo(self.local_path)
            if ops.get_remote_url(repo) != self.remote_url:
                ops.git_set_remote(repo, self.remote_url)
            self._repo = repo
            return repo

        if self.local_path.exists() and any(self.local_path.iterdir()):
            raise IndexStoreError(f"{self.local_path} exists and is not an index repository")

        try:
            self._repo = self._clone()
        except GitCommandError as e:
            if self.hosting is None or not self.config.default_organization:
                raise IndexStoreError(
                    f"Cannot clone index repository {self.remote_url}: {ops.describe_git_error(e)}"
                ) from e
            org = self.config.default_organization
            if await self.hosting.repository_exists(org, INDEX_REPOSITORY_NAME):
                raise IndexStoreError(
                    f"Cannot clone index repository {self.remote_url}: {ops.describe_git_error(e)}"
                ) from e
            logger.info(f"Creating index repository {org}/{INDEX_REPOSITORY_NAME}")
            await self.hosting.create_repository(
                org, INDEX_REPOSITORY_NAME, description="dot index repository"
            )
            try:
                self._repo = self._clone()
            except GitCommandError as e2:
                raise IndexStoreError(
                    f"Cannot clone index repository {self.remote_url}: {ops.describe_git_error(e2)}"
                ) from e2
        self._fresh = True
        return self._repo

    def _clone(self) -> Repo:
        logger.debug(f"Cloning index repository {self.remote_url} into {self.local_path}")
        return ops.git_clone(
            self.remote_url, self.local_path, timeout=self.config.network_timeout_seconds
        )

    def _remote_branch(self) -> Optional[str]:
        """Branch of the index on the remote, preferring the local branch name."""
        repo = self.repo
        local = ops.git_current_branch(repo)
        listing = repo.git.for_each_ref("--format=%(refname:strip=3)", "refs/remotes/origin/")
        names = [name for name in listing.splitlines() if name and name != "HEAD"]
        for candidate in (local, "main", "master"):
            if candidate and candidate in names:
                return candidate
        return names[0] if names else None

    def _refresh(self) -> None:
        """Fetch and make the local clone match the remote exactly."""
        repo = self.repo
        try:
            ops.git_fetch(repo, timeout=self.config.network_timeout_seconds)
            branch = self._remote_branch()
            if branch is None:
                # Remote is empty: drop any local commit that never made it there
                if repo.head.is_valid():
                    ops.git_unset_head(repo)
                repo.git.read_tree("--empty")
                (self.local_path / INDEX_FILE).unlink(missing_ok=True)
            elif ops.git_current_branch(repo) != branch or not repo.head.is_valid():
                repo.git.checkout("-f", "-B", branch, f"origin/{branch}")
            else:
                ops.git_reset_hard(repo, f"origin/{branch}")
        except GitCommandError as e:
            raise IndexStoreError(f"Cannot refresh index repository: {ops.describe_git_error(e)}") from e
        self._fresh = True

    def _load(self) -> IndexDocument:
        index_file = self.local_path / INDEX_FILE
        if not index_file.exists():
            return IndexDocument()
        try:
            return IndexDocument.loads(index_file.read_text())
        except (OSError, ValidationError, ValueError) as e:
            raise IndexStoreError(f"Corrupt index file {index_file}: {e}") from e

    def _identity_env(self) -> Dict[str, str]:
        reader = self.repo.config_reader()
        if reader.has_option("user", "name") and reader.has_option("user", "email"):
            return {}
        return FALLBACK_IDENTITY

    def _commit(self, document: IndexDocument, message: str) -> bool:
        """Write and commit ``document``; False when nothing changed."""
        repo = self.repo
        (self.local_path / INDEX_FILE).write_text(document.dumps())
        try:
            ops.git_add(repo, [INDEX_FILE])
            if not ops.git_has_staged_changes(repo):
                return False
            with repo.git.custom_environment(**self._identity_env()):
                ops.git_commit(repo, message)
        except GitCommandError as e:
            raise IndexStoreError(f"Cannot commit index change: {ops.describe_git_error(e)}") from e
        return True

    def _authorize(self) -> str:
        org = self.config.default_organization
        if not self.config.is_organization_authorized(org):
            raise OrganizationNotAuthorized(org)
        return org

    async def _update(self, project_key: str, mutate: Mutation) -> IndexDocument:
        """Read-modify-write cycle with bounded retry on push rejection."""
        self._authorize()
        await self.open()

        attempts = self.config.index_push_attempts
        strategy = ErrorRecoveryStrategy(
            max_retries=attempts - 1, backoff_factor=self.config.index_retry_backoff
        )
        for attempt in range(1, attempts + 1):
            self._refresh()
            document = self._load()
            message = mutate(document)
            if message is None:
                logger.debug(f"Index already up to date for {project_key}")
                return document
            if not self._commit(document, message):
                return document
            try:
                ops.git_push(self.repo, timeout=self.config.network_timeout_seconds)
            except GitCommandError as e:
                if not ops.is_push_rejection(e):
                    raise IndexStoreError(f"Cannot push index: {ops.describe_git_error(e)}") from e
                logger.warning(
                    f"Index push rejected (attempt {attempt}/{attempts}), re-fetching",
                    extra={"project_key": project_key, "attempt": attempt},
                )
                if strategy.should_retry(attempt - 1):
                    await asyncio.sleep(strategy.get_retry_delay(attempt - 1))
                continue
            logger.info(message, extra={"project_key": project_key, "attempt": attempt})
            return document

        raise IndexConflict(project_key, attempts)

    def _created_by(self) -> str:
        if self.created_by:
            return self.created_by
        return ops.get_git_user(self.repo)

    async def register(
        self,
        project_key: str,
        relative_path: str,
        repository_key: str,
        *,
        remote_url: Optional[str] = None,
        main_remote_url: Optional[str] = None,
    ) -> IndexEntry:
        """Record ``relative_path`` -> ``repository_key`` for ``project_key``."""

        def mutate(document: IndexDocument) -> Optional[str]:
            entry = document.projects.get(project_key)
            if entry is None:
                entry = IndexEntry(project_key=project_key, main_remote_url=main_remote_url)
                document.projects[project_key] = entry

            owner = entry.find_key(repository_key)
            if owner is not None and owner.relative_path != relative_path:
                raise RepositoryKeyConflict(repository_key, owner.relative_path, relative_path)
            existing = entry.hidden_directories.get(relative_path)
            if existing is not None:
                if existing.repository_key != repository_key:
                    raise RepositoryKeyConflict(existing.repository_key, relative_path, relative_path)
                if remote_url is None or existing.remote_url == remote_url:
                    return None
                existing.remote_url = remote_url
            else:
                entry.hidden_directories[relative_path] = HiddenDirectory(
                    relative_path=relative_path,
                    repository_key=repository_key,
                    remote_url=remote_url,
                    created_by=self._created_by(),
                )
            if main_remote_url and not entry.main_remote_url:
                entry.main_remote_url = main_remote_url
            entry.updated_at = _utcnow()
            return f"Register {relative_path} for {project_key}"

        document = await self._update(project_key, mutate)
        return document.projects[project_key]

    async def remove(self, project_key: str, relative_path: str) -> Optional[IndexEntry]:
        """Drop ``relative_path`` from ``project_key``; the entry goes when empty."""

        def mutate(document: IndexDocument) -> Optional[str]:
            entry = document.projects.get(project_key)
            if entry is None or relative_path not in entry.hidden_directories:
                return None
            del entry.hidden_directories[relative_path]
            if entry.hidden_directories:
                entry.updated_at = _utcnow()
            else:
                del document.projects[project_key]
            return f"Remove {relative_path} from {project_key}"

        document = await self._update(project_key, mutate)
        return document.projects.get(project_key)

    async def lookup(self, project_key: str) -> Optional[IndexEntry]:
        """Entry for ``project_key``; None means no hidden repositories registered."""
        await self.open()
        if not self._fresh:
            self._refresh()
        return self._load().projects.get(project_key)

    def close(self) -> None:
        if self._repo is not None:
            self._repo.close()
            self._repo = None
            self._fresh = False


__all__ = [
    "GlobalIndexManager",
    "HiddenDirectory",
    "IndexDocument",
    "IndexEntry",
    "INDEX_FILE",
]
