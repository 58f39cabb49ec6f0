"""Configuration for dot.

Configuration lives in ``~/.dot/dot.conf`` as JSON and is validated with a
Pydantic model. It is read once per invocation and handed explicitly to the
objects that need it; nothing reads it as module-level state.

Environment variable binding:
    ```bash
    export DOT_DEFAULT_ORGANIZATION=my-org
    export DOT_INDEX_REMOTE_URL=git@github.com:my-org/.index.git
    export DOT_INDEX_PATH=~/.dot/.index
    export GITHUB_TOKEN=ghp_xxxxxxxxxxxx   # or GH_TOKEN
    ```

A ``.env`` file next to the configuration file, or in the current directory,
is loaded first so tokens do not have to live in the JSON file.

Usage examples:
    >>> from dot_proxy.configuration import ConfigManager
    >>> manager = ConfigManager.load()
    >>> manager.config.default_organization
    'my-org'
    >>> manager.is_organization_authorized("my-org")
    True
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..exceptions import ConfigurationError, OrganizationNotAuthorized

logger = logging.getLogger(__name__)

DOT_HOME = Path("~/.dot")
CONFIG_FILE_NAME = "dot.conf"
INDEX_REPOSITORY_NAME = ".index"

ENV_OVERRIDES = {
    "DOT_DEFAULT_ORGANIZATION": "default_organization",
    "DOT_INDEX_REMOTE_URL": "index_remote_url",
    "DOT_INDEX_PATH": "index_path",
}


def default_config_path() -> Path:
    return (DOT_HOME / CONFIG_FILE_NAME).expanduser()


class DotConfig(BaseModel):
    """Process-wide settings, read-only for the duration of a command."""

    authorized_organizations: List[str] = Field(default_factory=list)
    default_organization: Optional[str] = None
    github_token: Optional[str] = None
    index_remote_url: Optional[str] = None
    index_path: Path = Field(default_factory=lambda: (DOT_HOME / INDEX_REPOSITORY_NAME).expanduser())
    index_push_attempts: int = Field(default=5, ge=1)
    index_retry_backoff: float = Field(default=0.5, ge=0)
    network_timeout_seconds: float = Field(default=60.0, gt=0)
    hosting_max_retries: int = Field(default=3, ge=0)
    hosting_retry_backoff: float = Field(default=1.0, ge=0)

    @field_validator("authorized_organizations")
    @classmethod
    def _dedupe_organizations(cls, value: List[str]) -> List[str]:
        seen: List[str] = []
        for org in value:
            org = org.strip()
            if org and org not in seen:
                seen.append(org)
        return seen

    @field_validator("index_path", mode="before")
    @classmethod
    def _expand_index_path(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Path(value).expanduser()
        if isinstance(value, Path):
            return value.expanduser()
        return value

    @model_validator(mode="after")
    def _default_must_be_authorized(self) -> "DotConfig":
        if (
            self.default_organization is not None
            and self.default_organization not in self.authorized_organizations
        ):
            raise ValueError(
                f"default_organization '{self.default_organization}' "
                "is not in authorized_organizations"
            )
        return self

    def is_organization_authorized(self, org: Optional[str]) -> bool:
        return org is not None and org in self.authorized_organizations

    def resolve_index_remote_url(self) -> str:
        """Remote URL of the index repository for the default organization."""
        if self.index_remote_url:
            return self.index_remote_url
        if not self.default_organization:
            raise OrganizationNotAuthorized(None)
        return f"git@github.com:{self.default_organization}/{INDEX_REPOSITORY_NAME}.git"

    def resolve_github_token(self) -> Optional[str]:
        return self.github_token or os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN")


class ConfigManager:
    """Loads, mutates and saves the configuration file."""

    def __init__(self, config_path: Path, config: DotConfig):
        self.config_path = config_path
        self.config = config

    @classmethod
    def load(cls, config_path: Optional[Path] = None, apply_env: bool = True) -> "ConfigManager":
        """Load the configuration, writing a default file on first use."""
        config_path = Path(config_path).expanduser() if config_path else default_config_path()

        if apply_env:
            env_file = config_path.parent / ".env"
            if env_file.exists():
                load_dotenv(env_file)
                logger.info(f"Loaded environment variables from {env_file}")
            cwd_env = Path.cwd() / ".env"
            if cwd_env.exists() and cwd_env != env_file:
                load_dotenv(cwd_env)

        if config_path.exists():
            try:
                data: Dict[str, Any] = json.loads(config_path.read_text())
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(f"Cannot read {config_path}: {e}") from e
        else:
            data = {}
            logger.info(f"Creating default configuration at {config_path}")
            cls(config_path, DotConfig()).save()

        if apply_env:
            for env_name, field_name in ENV_OVERRIDES.items():
                value = os.getenv(env_name)
                if value:
                    data[field_name] = value
            org = data.get("default_organization")
            if org and org not in data.get("authorized_organizations", []):
                # An org selected through the environment is implicitly authorized
                if os.getenv("DOT_DEFAULT_ORGANIZATION") == org:
                    data.setdefault("authorized_organizations", []).append(org)

        try:
            config = DotConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e
        return cls(config_path, config)

    def is_organization_authorized(self, org: str) -> bool:
        return self.config.is_organization_authorized(org)

    def get_default_organization(self) -> Optional[str]:
        return self.config.default_organization

    def add_organization(self, org: str) -> None:
        if org not in self.config.authorized_organizations:
            self.config.authorized_organizations.append(org)
            self.save()

    def remove_organization(self, org: str) -> None:
        self.config.authorized_organizations = [
            o for o in self.config.authorized_organizations if o != org
        ]
        if self.config.default_organization == org:
            self.config.default_organization = None
        self.save()

    def set_default_organization(self, org: str) -> None:
        if not self.is_organization_authorized(org):
            raise OrganizationNotAuthorized(org)
        self.config.default_organization = org
        self.save()

    def save(self) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        payload = self.config.model_dump(mode="json", exclude_none=True)
        self.config_path.write_text(json.dumps(payload, indent=2) + "\n")


def create_test_config(**overrides: Any) -> DotConfig:
    """Configuration with fast retries, for tests."""
    values: Dict[str, Any] = {
        "authorized_organizations": ["test-org"],
        "default_organization": "test-org",
        "index_push_attempts": 3,
        "index_retry_backoff": 0.0,
        "network_timeout_seconds": 30.0,
        "hosting_max_retries": 2,
        "hosting_retry_backoff": 0.0,
    }
    values.update(overrides)
    return DotConfig.model_validate(values)


__all__ = [
    "ConfigManager",
    "DotConfig",
    "create_test_config",
    "default_config_path",
    "INDEX_REPOSITORY_NAME",
]
