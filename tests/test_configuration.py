"""Tests for configuration loading and organization management."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from dot_proxy.configuration import ConfigManager, DotConfig, create_test_config
from dot_proxy.exceptions import ConfigurationError, OrganizationNotAuthorized


@pytest.fixture
def clean_env(tmp_path):
    """Isolate os.environ changes made by dotenv and the tests."""
    names = ("GITHUB_TOKEN", "GH_TOKEN", "DOT_DEFAULT_ORGANIZATION", "DOT_INDEX_REMOTE_URL", "DOT_INDEX_PATH")
    with patch.dict(os.environ, {}, clear=False):
        for name in names:
            os.environ.pop(name, None)
        with patch("pathlib.Path.cwd", return_value=tmp_path):
            yield


class TestDotConfig:
    def test_defaults(self):
        config = DotConfig()
        assert config.authorized_organizations == []
        assert config.default_organization is None
        assert config.index_push_attempts == 5
        assert config.index_path == Path("~/.dot/.index").expanduser()

    def test_default_must_be_authorized(self):
        with pytest.raises(ValueError):
            DotConfig(authorized_organizations=["a"], default_organization="b")

    def test_organizations_are_deduplicated(self):
        config = DotConfig(authorized_organizations=["a", " a ", "b", ""])
        assert config.authorized_organizations == ["a", "b"]

    def test_index_remote_url(self):
        assert create_test_config().resolve_index_remote_url() == "git@github.com:test-org/.index.git"
        custom = create_test_config(index_remote_url="https://git.example.com/x/.index.git")
        assert custom.resolve_index_remote_url() == "https://git.example.com/x/.index.git"

    def test_index_remote_url_needs_organization(self):
        with pytest.raises(OrganizationNotAuthorized):
            DotConfig().resolve_index_remote_url()

    def test_push_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            DotConfig(index_push_attempts=0)

    def test_token_resolution_order(self, clean_env):
        assert create_test_config().resolve_github_token() is None
        os.environ["GH_TOKEN"] = "from-gh"
        assert create_test_config().resolve_github_token() == "from-gh"
        os.environ["GITHUB_TOKEN"] = "from-github"
        assert create_test_config().resolve_github_token() == "from-github"
        assert create_test_config(github_token="from-file").resolve_github_token() == "from-file"


class TestConfigManager:
    def test_missing_file_writes_defaults(self, tmp_path, clean_env):
        path = tmp_path / "dot" / "dot.conf"
        manager = ConfigManager.load(path)
        assert path.exists()
        assert json.loads(path.read_text())["authorized_organizations"] == []
        assert manager.get_default_organization() is None

    def test_reads_existing_file(self, tmp_path, clean_env):
        path = tmp_path / "dot.conf"
        path.write_text(json.dumps({"authorized_organizations": ["acme"], "default_organization": "acme"}))
        manager = ConfigManager.load(path)
        assert manager.is_organization_authorized("acme")
        assert not manager.is_organization_authorized("other")

    def test_invalid_json(self, tmp_path, clean_env):
        path = tmp_path / "dot.conf"
        path.write_text("{broken")
        with pytest.raises(ConfigurationError):
            ConfigManager.load(path)

    def test_invalid_values(self, tmp_path, clean_env):
        path = tmp_path / "dot.conf"
        path.write_text(json.dumps({"authorized_organizations": ["a"], "default_organization": "b"}))
        with pytest.raises(ConfigurationError):
            ConfigManager.load(path)

    def test_environment_organization_is_authorized(self, tmp_path, clean_env):
        os.environ["DOT_DEFAULT_ORGANIZATION"] = "env-org"
        manager = ConfigManager.load(tmp_path / "dot.conf")
        assert manager.get_default_organization() == "env-org"
        assert manager.is_organization_authorized("env-org")

    def test_dotenv_next_to_config_provides_token(self, tmp_path, clean_env):
        (tmp_path / ".env").write_text("GITHUB_TOKEN=token-from-dotenv\n")
        manager = ConfigManager.load(tmp_path / "dot.conf")
        assert manager.config.resolve_github_token() == "token-from-dotenv"

    def test_organization_management_persists(self, tmp_path, clean_env):
        path = tmp_path / "dot.conf"
        manager = ConfigManager.load(path)
        manager.add_organization("acme")
        manager.add_organization("acme")
        manager.set_default_organization("acme")

        reloaded = ConfigManager.load(path)
        assert reloaded.config.authorized_organizations == ["acme"]
        assert reloaded.get_default_organization() == "acme"

        reloaded.remove_organization("acme")
        again = ConfigManager.load(path)
        assert again.config.authorized_organizations == []
        assert again.get_default_organization() is None

    def test_default_must_be_added_first(self, tmp_path, clean_env):
        manager = ConfigManager.load(tmp_path / "dot.conf")
        with pytest.raises(OrganizationNotAuthorized):
            manager.set_default_organization("acme")
