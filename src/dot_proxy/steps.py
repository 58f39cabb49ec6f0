"""Per-repository steps run by the transaction coordinator.

A step applies one logical action to one repository handle and knows how to
undo it. Steps record whatever pre-state their rollback needs, keyed by the
handle's local path, so one step instance serves a whole transaction.
"""

import asyncio
import logging
import posixpath
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence

from .exceptions import DotError, OperationFailed
from .git import operations as ops
from .keys import repository_name
from .models import Action, OperationResult
from .repository import GIT_ERRORS, RepositoryHandle

if TYPE_CHECKING:
    from .github.client import HostingClient
    from .index import GlobalIndexManager

logger = logging.getLogger(__name__)


class Step:
    """One logical action, applicable to any handle."""

    action: Action
    irreversible = False

    async def execute(self, handle: RepositoryHandle) -> OperationResult:
        raise NotImplementedError

    async def rollback(self, handle: RepositoryHandle) -> None:
        """Undo a previously applied ``execute``; raise if that is impossible."""
        raise NotImplementedError

    def left_inconsistent(self, handle: RepositoryHandle) -> bool:
        """Whether a failed ``execute`` could not clean up after itself."""
        return False

    def describe(self) -> str:
        return self.action.value


def route_paths(
    paths: Iterable[str], handle: RepositoryHandle, hidden_paths: Sequence[str]
) -> List[str]:
    """Select the project-relative ``paths`` owned by ``handle``.

    Paths inside a hidden directory belong to that hidden repository and are
    rewritten relative to it; everything else belongs to the main repository.
    ``.`` selects everything in every repository.
    """
    routed: List[str] = []
    for raw in paths:
        path = posixpath.normpath(raw.replace("\\", "/"))
        if path == ".":
            return ["."]
        if handle.is_hidden:
            prefix = handle.relative_path
            if path == prefix:
                routed.append(".")
            elif path.startswith(prefix + "/"):
                routed.append(path[len(prefix) + 1:])
        elif not any(path == h or path.startswith(h + "/") for h in hidden_paths):
            routed.append(path)
    if "." in routed:
        return ["."]
    return routed


class AddStep(Step):
    action = Action.ADD

    def __init__(self, paths: Sequence[str], hidden_paths: Sequence[str] = ()):
        self.paths = list(paths)
        self.hidden_paths = list(hidden_paths)
        self._index_trees: Dict[Path, str] = {}

    async def execute(self, handle: RepositoryHandle) -> OperationResult:
        paths = route_paths(self.paths, handle, self.hidden_paths)
        if not paths:
            return OperationResult.noop("no matching paths")
        try:
            self._index_trees[handle.local_path] = ops.git_write_tree(handle.repo)
        except GIT_ERRORS as e:
            return OperationResult.failed(f"cannot snapshot index: {ops.describe_git_error(e)}")
        return handle.stage(paths)

    async def rollback(self, handle: RepositoryHandle) -> None:
        tree = self._index_trees.get(handle.local_path)
        if tree is None:
            return
        ops.git_read_tree(handle.repo, tree)
        logger.debug(f"Restored index of {handle.display_name} to tree {tree[:8]}")

    def describe(self) -> str:
        return f"add {' '.join(self.paths)}"


class CommitStep(Step):
    """Commit staged changes; rollback keeps the changes staged."""

    action = Action.COMMIT

    def __init__(self, message: str):
        self.message = message
        self._previous_heads: Dict[Path, Optional[str]] = {}

    async def execute(self, handle: RepositoryHandle) -> OperationResult:
        try:
            previous = ops.git_head_commit(handle.repo)
        except GIT_ERRORS as e:
            return OperationResult.failed(f"cannot read HEAD: {ops.describe_git_error(e)}")
        result = handle.commit(self.message)
        if result.is_applied:
            self._previous_heads[handle.local_path] = previous
        return result

    async def rollback(self, handle: RepositoryHandle) -> None:
        if handle.local_path not in self._previous_heads:
            return
        previous = self._previous_heads[handle.local_path]
        if previous is None:
            ops.git_unset_head(handle.repo)
        else:
            ops.git_reset_soft(handle.repo, previous)
        logger.debug(f"Reset {handle.display_name} to {previous or 'unborn HEAD'}")


class PushStep(Step):
    """Push the current branch. A completed push cannot be undone."""

    action = Action.PUSH
    irreversible = True

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    async def execute(self, handle: RepositoryHandle) -> OperationResult:
        return handle.push(timeout=self.timeout)

    async def rollback(self, handle: RepositoryHandle) -> None:
        # Rewriting already pushed history is never attempted
        return None


@dataclass
class _InitRecord:
    created_dir: bool = False
    created_repo: bool = False
    previous_origin: Optional[str] = None
    origin_set: bool = False
    remote_name: Optional[str] = None
    registered: bool = False
    previous_gitignore: Optional[str] = None
    gitignore_written: bool = False
    cleanup_errors: List[str] = field(default_factory=list)


class InitStep(Step):
    """Bring directories under dot management.

    For a hidden handle: create the directory, ``git init`` it, create its
    hosted repository, point ``origin`` at it and register it in the global
    index. For the main handle: make sure it is a repository and keep the
    hidden directories out of it via ``.gitignore``.
    """

    action = Action.INIT

    def __init__(
        self,
        project_key: str,
        main_remote_url: str,
        hidden_paths: Sequence[str],
        organization: str,
        hosting: "HostingClient",
        index: "GlobalIndexManager",
    ):
        self.project_key = project_key
        self.main_remote_url = main_remote_url
        self.hidden_paths = list(hidden_paths)
        self.organization = organization
        self.hosting = hosting
        self.index = index
        self._records: Dict[Path, _InitRecord] = {}

    async def execute(self, handle: RepositoryHandle) -> OperationResult:
        record = _InitRecord()
        self._records[handle.local_path] = record
        try:
            if handle.is_main:
                return self._init_main(handle, record)
            return await self._init_hidden(handle, record)
        except (DotError, *GIT_ERRORS) as e:
            reason = e.message if isinstance(e, DotError) else ops.describe_git_error(e)
            logger.warning(f"init of {handle.display_name} failed: {reason}; cleaning up")
            await self._undo(handle, record)
            if record.cleanup_errors:
                reason += "; cleanup failed: " + "; ".join(record.cleanup_errors)
            return OperationResult.failed(reason)
        except (KeyboardInterrupt, asyncio.CancelledError):
            await self._undo(handle, record)
            raise

    async def _init_hidden(self, handle: RepositoryHandle, record: _InitRecord) -> OperationResult:
        if not handle.local_path.exists():
            handle.local_path.mkdir(parents=True)
            record.created_dir = True

        result = handle.ensure_initialized()
        if result.is_failed:
            raise OperationFailed(handle.display_name, result.reason or "git init failed")
        record.created_repo = result.is_applied

        name = repository_name(handle.key)
        remote_url = await self.hosting.create_repository(
            self.organization,
            name,
            description=f"dot hidden directory {handle.relative_path} of {self.project_key}",
        )
        record.remote_name = name

        record.previous_origin = ops.get_remote_url(handle.repo)
        ops.git_set_remote(handle.repo, remote_url)
        record.origin_set = True
        handle.remote_url = remote_url

        await self.index.register(
            self.project_key,
            handle.relative_path,
            handle.key,
            remote_url=remote_url,
            main_remote_url=self.main_remote_url,
        )
        record.registered = True
        return OperationResult.applied(f"created {remote_url}")

    def _init_main(self, handle: RepositoryHandle, record: _InitRecord) -> OperationResult:
        result = handle.ensure_initialized()
        if result.is_failed:
            return result
        record.created_repo = result.is_applied

        gitignore = handle.local_path / ".gitignore"
        previous = gitignore.read_text() if gitignore.exists() else None
        lines = previous.splitlines() if previous else []
        missing = [f"/{p}/" for p in self.hidden_paths if f"/{p}/" not in lines and f"/{p}" not in lines]
        if missing:
            record.previous_gitignore = previous
            content = previous or ""
            if content and not content.endswith("\n"):
                content += "\n"
            if not lines:
                content += "# Hidden directories managed by dot\n"
            content += "\n".join(missing) + "\n"
            gitignore.write_text(content)
            record.gitignore_written = True

        if record.created_repo or record.gitignore_written:
            return OperationResult.applied("ignored " + ", ".join(missing) if missing else "initialized")
        return OperationResult.noop("already initialized")

    async def rollback(self, handle: RepositoryHandle) -> None:
        record = self._records.get(handle.local_path)
        if record is None:
            return
        await self._undo(handle, record)
        if record.cleanup_errors:
            raise OperationFailed(handle.display_name, "; ".join(record.cleanup_errors))

    def left_inconsistent(self, handle: RepositoryHandle) -> bool:
        record = self._records.get(handle.local_path)
        return bool(record and record.cleanup_errors)

    async def _undo(self, handle: RepositoryHandle, record: _InitRecord) -> None:
        """Undo whatever ``record`` says was done, in reverse order."""
        if record.registered:
            try:
                await self.index.remove(self.project_key, handle.relative_path)
                record.registered = False
            except DotError as e:
                record.cleanup_errors.append(f"index entry not removed: {e.message}")

        if record.remote_name:
            try:
                await self.hosting.delete_repository(self.organization, record.remote_name)
                record.remote_name = None
            except DotError as e:
                record.cleanup_errors.append(f"remote repository not deleted: {e.message}")

        if record.origin_set and not record.created_repo:
            try:
                if record.previous_origin:
                    ops.git_set_remote(handle.repo, record.previous_origin)
                else:
                    ops.git_remove_remote(handle.repo)
                record.origin_set = False
            except GIT_ERRORS as e:
                record.cleanup_errors.append(f"origin not restored: {ops.describe_git_error(e)}")

        if record.gitignore_written:
            gitignore = handle.local_path / ".gitignore"
            try:
                if record.previous_gitignore is None:
                    gitignore.unlink(missing_ok=True)
                else:
                    gitignore.write_text(record.previous_gitignore)
                record.gitignore_written = False
            except OSError as e:
                record.cleanup_errors.append(f".gitignore not restored: {e}")

        if record.created_repo:
            handle.forget()
            try:
                shutil.rmtree(handle.local_path / ".git")
                record.created_repo = False
            except OSError as e:
                record.cleanup_errors.append(f".git not removed: {e}")

        if record.created_dir:
            try:
                shutil.rmtree(handle.local_path)
                record.created_dir = False
            except OSError as e:
                record.cleanup_errors.append(f"directory not removed: {e}")
