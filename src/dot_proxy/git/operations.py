"""Git operations against exactly one repository.

These functions are the version-control wrapper used by repository handles and
the index manager. They raise ``GitCommandError`` (or ``OSError``) on failure
and leave classification to the caller.
"""

import configparser
import logging
from pathlib import Path
from typing import Iterable, Optional

from git import Git, GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

logger = logging.getLogger(__name__)

# Tree object of an empty index; the "HEAD tree" of a repository with no commits
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

_REJECTION_MARKERS = (
    "[rejected]",
    "non-fast-forward",
    "fetch first",
    "stale info",
    "cannot lock ref",
    "updates were rejected",
)


def is_git_repository(path: Path) -> bool:
    """Whether ``path`` itself (not a parent) holds a git repository."""
    return (Path(path) / ".git").exists()


def open_repo(path: Path) -> Optional[Repo]:
    """Open the repository rooted at ``path``, or None if there is none."""
    if not is_git_repository(path):
        return None
    try:
        return Repo(path)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return None


def git_init(repo_path: Path) -> Repo:
    """Initialize new Git repository"""
    path = Path(repo_path)
    path.mkdir(parents=True, exist_ok=True)
    repo = Repo.init(path)
    logger.debug(f"Initialized empty Git repository in {path}")
    return repo


def git_head_commit(repo: Repo) -> Optional[str]:
    """SHA of HEAD, or None while the current branch has no commits."""
    if not repo.head.is_valid():
        return None
    return repo.head.commit.hexsha


def git_head_tree(repo: Repo) -> str:
    if not repo.head.is_valid():
        return EMPTY_TREE_SHA
    return repo.head.commit.tree.hexsha


def git_current_branch(repo: Repo) -> Optional[str]:
    """Name of the checked out branch, None on a detached HEAD."""
    try:
        return repo.active_branch.name
    except TypeError:
        return None


def git_write_tree(repo: Repo) -> str:
    """Write the current index as a tree object and return its SHA."""
    return repo.git.write_tree()


def git_read_tree(repo: Repo, tree_sha: str) -> None:
    """Replace the index with ``tree_sha`` without touching the working tree."""
    repo.git.read_tree(tree_sha)


def git_has_staged_changes(repo: Repo) -> bool:
    return git_write_tree(repo) != git_head_tree(repo)


def git_add(repo: Repo, files: Iterable[str]) -> None:
    """Stage ``files``; ``.`` stages every change in the working tree."""
    files = list(files)
    if not files:
        return
    if "." in files:
        repo.git.add("-A")
    else:
        repo.git.add("--", *files)


def git_commit(repo: Repo, message: str) -> str:
    """Commit staged changes and return the new commit SHA."""
    repo.git.commit("-m", message)
    return repo.head.commit.hexsha


def git_reset_soft(repo: Repo, ref: str) -> None:
    """Move the current branch to ``ref``, keeping index and working tree."""
    repo.git.reset("--soft", ref)


def git_unset_head(repo: Repo) -> None:
    """Delete the current branch ref, undoing a root commit but keeping the index."""
    repo.git.update_ref("-d", "HEAD")


def git_status(repo: Repo) -> str:
    """Short status with branch information."""
    return repo.git.status("--short", "--branch")


def get_remote_url(repo: Repo, remote: str = "origin") -> Optional[str]:
    """URL of ``remote``, or None if the remote is not configured."""
    if remote not in [r.name for r in repo.remotes]:
        return None
    return repo.remote(remote).url


def git_set_remote(repo: Repo, url: str, remote: str = "origin") -> None:
    if remote in [r.name for r in repo.remotes]:
        repo.remote(remote).set_url(url)
    else:
        repo.create_remote(remote, url)


def git_remove_remote(repo: Repo, remote: str = "origin") -> None:
    if remote in [r.name for r in repo.remotes]:
        repo.delete_remote(repo.remote(remote))


def get_git_user(repo: Repo) -> str:
    """Configured user name, falling back to the email address."""
    reader = repo.config_reader()
    for option in ("name", "email"):
        try:
            value = reader.get_value("user", option)
        except (configparser.NoSectionError, configparser.NoOptionError):
            continue
        if value:
            return str(value)
    return "unknown"


def git_remote_branch_sha(repo: Repo, branch: str, remote: str = "origin") -> Optional[str]:
    """SHA of the remote-tracking ref for ``branch``, or None if it does not exist."""
    try:
        return repo.git.rev_parse("--verify", "-q", f"refs/remotes/{remote}/{branch}")
    except GitCommandError:
        return None


def git_is_ahead(repo: Repo, remote: str = "origin") -> bool:
    """Whether HEAD has commits the remote-tracking branch does not."""
    head = git_head_commit(repo)
    branch = git_current_branch(repo)
    if head is None or branch is None:
        return False
    return git_remote_branch_sha(repo, branch, remote) != head


def git_push(
    repo: Repo,
    remote: str = "origin",
    branch: Optional[str] = None,
    set_upstream: bool = True,
    timeout: Optional[float] = None,
) -> str:
    """Push ``branch`` (the current branch by default) to ``remote``."""
    if not branch:
        branch = git_current_branch(repo)
        if branch is None:
            raise GitCommandError(["git", "push"], 1, "No active branch found and no branch specified")

    push_args = [remote, f"HEAD:refs/heads/{branch}"]
    if set_upstream:
        push_args = ["--set-upstream", remote, branch]
    return repo.git.push(*push_args, kill_after_timeout=timeout)


def is_push_rejection(error: GitCommandError) -> bool:
    """Whether a push failed because the remote has moved on."""
    text = f"{error.stderr or ''} {error}".lower()
    return any(marker in text for marker in _REJECTION_MARKERS)


def git_fetch(repo: Repo, remote: str = "origin", timeout: Optional[float] = None) -> None:
    repo.git.fetch(remote, "--prune", kill_after_timeout=timeout)


def git_reset_hard(repo: Repo, ref: str) -> None:
    repo.git.reset("--hard", ref)


def git_clone(url: str, path: Path, timeout: Optional[float] = None) -> Repo:
    """Clone ``url`` into ``path`` and open the result."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    Git().clone("--", url, str(path), kill_after_timeout=timeout)
    return Repo(path)


def describe_git_error(error: Exception) -> str:
    """Human-readable reason for a failed git command."""
    if isinstance(error, GitCommandError):
        detail = (error.stderr or "").strip() or (error.stdout or "").strip()
        detail = detail.removeprefix("stderr:").strip().strip("'").strip()
        if detail:
            return detail
        return f"git exited with status {error.status}"
    return str(error) or error.__class__.__name__
