"""Clone a project together with its hidden directories.

The main repository is cloned first and is never removed again: a failure to
clone a hidden directory leaves a usable main repository and is reported as a
partial clone.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .configuration import DotConfig
from .exceptions import InvalidDirectoryPath, OperationFailed, PartialClone
from .index import GlobalIndexManager
from .keys import RepositoryKey, hosted_remote_url, normalize_relative_path, parse_remote_url
from .repository import MAIN_DISPLAY_NAME, RepositoryHandle

logger = logging.getLogger(__name__)


@dataclass
class CloneOutcome:
    main_path: Path
    project_key: str
    cloned: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return bool(self.failed)

    def raise_for_state(self) -> None:
        if self.failed:
            raise PartialClone(self.failed, outcome=self)


def default_destination(main_remote_url: str, cwd: Optional[Path] = None) -> Path:
    """``<cwd>/<project>`` for a main repository URL."""
    return Path(cwd or Path.cwd()) / parse_remote_url(main_remote_url).project


class CloneDiscovery:
    """Clones the main repository, then every hidden directory the index knows."""

    def __init__(self, config: DotConfig, index: GlobalIndexManager):
        self.config = config
        self.index = index

    def _hidden_remote_url(self, key: RepositoryKey, recorded: Optional[str]) -> Optional[str]:
        if recorded:
            return recorded
        if self.config.default_organization:
            return hosted_remote_url(self.config.default_organization, key)
        return None

    @staticmethod
    def _checked_path(relative_path: str) -> str:
        """Index entries are shared data; only clean paths below the root are cloned."""
        path = normalize_relative_path(relative_path)
        if path == ".git" or path.startswith(".git/"):
            raise InvalidDirectoryPath(relative_path, "inside the main repository's .git directory")
        return path

    async def clone(self, main_remote_url: str, destination: Optional[Path] = None) -> CloneOutcome:
        location = parse_remote_url(main_remote_url)
        target = Path(destination) if destination is not None else default_destination(main_remote_url)
        timeout = self.config.network_timeout_seconds

        main = RepositoryHandle.main(target, main_remote_url)
        result = main.clone_from(main_remote_url, timeout=timeout)
        if result.is_failed:
            raise OperationFailed(MAIN_DISPLAY_NAME, result.reason or "clone failed")
        logger.info(f"Cloned main repository into {target}")

        outcome = CloneOutcome(main_path=target, project_key=location.project_key)
        entry = await self.index.lookup(location.project_key)
        if entry is None:
            logger.info(f"No hidden directories registered for {location.project_key}")
            return outcome

        for directory in entry.directories():
            try:
                relative_path = self._checked_path(directory.relative_path)
            except InvalidDirectoryPath as e:
                logger.warning(f"Skipping index entry: {e.message}")
                outcome.failed[directory.relative_path] = e.message
                continue
            key = RepositoryKey(location.project_key, relative_path)
            remote_url = self._hidden_remote_url(key, directory.remote_url)
            if remote_url is None:
                outcome.failed[relative_path] = "no remote URL recorded and no default organization"
                continue
            handle = RepositoryHandle.hidden(target, relative_path, key, remote_url)
            result = handle.clone_from(remote_url, timeout=timeout)
            if result.is_failed:
                logger.warning(
                    f"Failed to clone hidden directory {relative_path}: {result.reason}",
                    extra={"repository": relative_path},
                )
                outcome.failed[relative_path] = result.reason or "clone failed"
            else:
                outcome.cloned.append(relative_path)
        return outcome
