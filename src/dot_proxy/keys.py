"""Repository key derivation.

A repository key identifies one hidden directory of one project::

    {host}/{owner}/{project}/{relative_path}

It is derived only from the main repository's remote URL and the directory's
path relative to the project root, so every clone of the project computes the
same keys without consulting anything else.
"""

import hashlib
import posixpath
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from .exceptions import InvalidDirectoryPath, InvalidRemoteUrl

# user@host:path, without a scheme
_SCP_LIKE = re.compile(r"^(?:(?P<user>[^@/]+)@)?(?P<host>[^:/\s]+):(?P<path>.+)$")


@dataclass(frozen=True)
class RemoteLocation:
    host: str
    owner: str
    project: str

    @property
    def project_key(self) -> str:
        return f"{self.host}/{self.owner}/{self.project}"


class RepositoryKey(str):
    """A derived key, still usable anywhere a plain string is expected."""

    def __new__(cls, project_key: str, relative_path: str) -> "RepositoryKey":
        obj = super().__new__(cls, f"{project_key}/{relative_path}")
        obj.project_key = project_key
        obj.relative_path = relative_path
        return obj

    def __reduce__(self):
        return (RepositoryKey, (self.project_key, self.relative_path))


def _split_path(url: str, path: str) -> tuple[str, str]:
    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    segments = [segment for segment in path.split("/") if segment]
    if len(segments) < 2:
        raise InvalidRemoteUrl(url, "expected owner/project")
    return "/".join(segments[:-1]), segments[-1]


def parse_remote_url(url: str) -> RemoteLocation:
    """Parse an SSH, scp-style or HTTP(S) remote URL into host/owner/project."""
    if not url or not url.strip():
        raise InvalidRemoteUrl(url or "", "empty URL")
    url = url.strip()

    if "://" in url:
        parts = urlsplit(url)
        host = parts.hostname
        if not host:
            raise InvalidRemoteUrl(url, "missing host")
        owner, project = _split_path(url, parts.path)
        return RemoteLocation(host.lower(), owner, project)

    match = _SCP_LIKE.match(url)
    if not match:
        raise InvalidRemoteUrl(url, "unrecognised URL form")
    owner, project = _split_path(url, match.group("path"))
    return RemoteLocation(match.group("host").lower(), owner, project)


def project_key(main_remote_url: str) -> str:
    """Canonical ``host/owner/project`` for a main repository remote."""
    return parse_remote_url(main_remote_url).project_key


def normalize_relative_path(path: str) -> str:
    """Clean a hidden directory path so that it can be part of a key."""
    if path is None or not str(path).strip():
        raise InvalidDirectoryPath(str(path), "path is empty")
    raw = str(path).strip().replace("\\", "/")
    if raw.startswith("/"):
        raise InvalidDirectoryPath(raw, "path must be relative to the project root")

    normalized = posixpath.normpath(raw)
    if normalized in (".", ""):
        raise InvalidDirectoryPath(raw, "path refers to the project root")
    if normalized == ".." or normalized.startswith("../"):
        raise InvalidDirectoryPath(raw, "path leaves the project root")
    return normalized


def derive(main_remote_url: str, relative_directory_path: str) -> RepositoryKey:
    """Derive the repository key for a hidden directory.

    Args:
        main_remote_url: remote URL of the main repository, in any supported form
        relative_directory_path: directory path relative to the project root

    Returns:
        The repository key, e.g. ``github.com/user/project/.kiro``

    Raises:
        InvalidRemoteUrl: if the URL has no host/owner/project
        InvalidDirectoryPath: if the path is empty, absolute or escapes the root
    """
    return RepositoryKey(
        project_key(main_remote_url), normalize_relative_path(relative_directory_path)
    )


def repository_name(key: str) -> str:
    """Name of the hosted repository backing a key.

    Separators become ``-``. A key that already contains ``-`` or ``:`` would be
    ambiguous after that, so its name ends in ``--`` plus a digest of the full
    key. Names without a digest never contain ``--``.
    """
    name = key.replace("/", "-").replace(":", "-")
    if "-" in key or ":" in key:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
        name = f"{name}--{digest}"
    return name


def hosted_remote_url(owner: str, key: str, host: Optional[str] = None) -> str:
    """SSH remote URL of the hosted repository for ``key`` under ``owner``."""
    if host is None:
        host = key.split("/", 1)[0]
    return f"git@{host}:{owner}/{repository_name(key)}.git"
