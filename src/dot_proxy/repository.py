"""Repository handles.

A handle wraps one version-controlled directory of a project, the main
repository or one hidden directory, and exposes the same operations for both.
The role is a plain tag on the handle: it only decides ordering and whether
the handle carries a repository key.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, NamedTuple, Optional

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from .git import operations as ops
from .keys import RepositoryKey
from .models import OperationResult, RepositoryRole

logger = logging.getLogger(__name__)

MAIN_DISPLAY_NAME = "(main)"

GIT_ERRORS = (GitCommandError, InvalidGitRepositoryError, NoSuchPathError, OSError, ValueError)


class RepositorySnapshot(NamedTuple):
    """HEAD commit and index tree; equal snapshots mean equal repository state."""

    head: Optional[str]
    index_tree: str


@dataclass
class RepositoryHandle:
    local_path: Path
    relative_path: str
    role: RepositoryRole
    key: Optional[RepositoryKey] = None
    remote_url: Optional[str] = None
    _repo: Optional[Repo] = field(default=None, repr=False, compare=False)

    @classmethod
    def main(cls, root: Path, remote_url: Optional[str] = None) -> "RepositoryHandle":
        return cls(Path(root), ".", RepositoryRole.MAIN, None, remote_url)

    @classmethod
    def hidden(
        cls,
        root: Path,
        relative_path: str,
        key: Optional[RepositoryKey],
        remote_url: Optional[str] = None,
    ) -> "RepositoryHandle":
        return cls(Path(root) / relative_path, relative_path, RepositoryRole.HIDDEN, key, remote_url)

    @property
    def is_main(self) -> bool:
        return self.role is RepositoryRole.MAIN

    @property
    def is_hidden(self) -> bool:
        return self.role is RepositoryRole.HIDDEN

    @property
    def display_name(self) -> str:
        return MAIN_DISPLAY_NAME if self.is_main else self.relative_path

    @property
    def repo(self) -> Repo:
        """The GitPython repository, opened on first use."""
        if self._repo is None:
            if not ops.is_git_repository(self.local_path):
                raise InvalidGitRepositoryError(str(self.local_path))
            self._repo = Repo(self.local_path)
        return self._repo

    def exists(self) -> bool:
        return ops.is_git_repository(self.local_path)

    def forget(self) -> None:
        """Drop the cached Repo, e.g. after its .git directory was removed."""
        if self._repo is not None:
            self._repo.close()
        self._repo = None

    def ensure_initialized(self) -> OperationResult:
        if self.exists():
            return OperationResult.noop("already a git repository")
        try:
            self._repo = ops.git_init(self.local_path)
        except GIT_ERRORS as e:
            return OperationResult.failed(f"git init failed: {ops.describe_git_error(e)}")
        return OperationResult.applied("initialized")

    def stage(self, paths: Iterable[str]) -> OperationResult:
        paths = list(paths)
        if not paths:
            return OperationResult.noop("no paths in this repository")
        try:
            before = ops.git_write_tree(self.repo)
            ops.git_add(self.repo, paths)
            after = ops.git_write_tree(self.repo)
        except GIT_ERRORS as e:
            return OperationResult.failed(f"git add failed: {ops.describe_git_error(e)}")
        if before == after:
            return OperationResult.noop("no changes to stage")
        return OperationResult.applied(f"staged {', '.join(paths)}")

    def commit(self, message: str) -> OperationResult:
        try:
            if not ops.git_has_staged_changes(self.repo):
                return OperationResult.noop("nothing to commit")
            sha = ops.git_commit(self.repo, message)
        except GIT_ERRORS as e:
            return OperationResult.failed(f"git commit failed: {ops.describe_git_error(e)}")
        return OperationResult.applied(f"committed {sha[:8]}")

    def push(self, timeout: Optional[float] = None) -> OperationResult:
        try:
            if ops.get_remote_url(self.repo) is None:
                return OperationResult.failed("no 'origin' remote configured")
            if not ops.git_is_ahead(self.repo):
                return OperationResult.noop("everything up-to-date")
            ops.git_push(self.repo, timeout=timeout)
        except GIT_ERRORS as e:
            return OperationResult.failed(f"git push failed: {ops.describe_git_error(e)}")
        return OperationResult.applied("pushed")

    def clone_from(
        self,
        remote_url: str,
        into_path: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> OperationResult:
        target = Path(into_path) if into_path is not None else self.local_path
        if target.exists() and any(target.iterdir()):
            return OperationResult.failed(f"destination {target} already exists and is not empty")
        try:
            self._repo = ops.git_clone(remote_url, target, timeout=timeout)
        except GIT_ERRORS as e:
            return OperationResult.failed(f"git clone failed: {ops.describe_git_error(e)}")
        self.local_path = target
        self.remote_url = remote_url
        return OperationResult.applied(f"cloned {remote_url}")

    def status(self) -> str:
        if not self.exists():
            return "Repository not found locally"
        return ops.git_status(self.repo)

    def snapshot(self) -> RepositorySnapshot:
        return RepositorySnapshot(ops.git_head_commit(self.repo), ops.git_write_tree(self.repo))


def sort_handles(
    handles: Iterable[RepositoryHandle], preserve_order: bool = False
) -> List[RepositoryHandle]:
    """Hidden handles first, main last.

    Hidden handles keep their given order when ``preserve_order`` is set (the
    order directories were passed to ``init``) and are otherwise sorted by
    relative path.
    """
    handles = list(handles)
    hidden = [h for h in handles if h.is_hidden]
    main = [h for h in handles if h.is_main]
    if not preserve_order:
        hidden.sort(key=lambda h: h.relative_path)
    return hidden + main
