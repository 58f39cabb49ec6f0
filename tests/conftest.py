"""
Global pytest configuration and fixtures.

Every test that touches git runs against a private HOME whose gitconfig sets
an identity, ``main`` as the default branch and an ``insteadOf`` rule that maps
``git@github.com:`` onto a directory of bare repositories. No test reaches the
network.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from dot_proxy.configuration import create_test_config
from dot_proxy.index import GlobalIndexManager
from dot_proxy.project import ProjectManager
from fixtures.git_repos import GitRepositoryFactory
from fixtures.hosting import FakeHostingClient

ISOLATED_ENV = (
    "GIT_CONFIG_GLOBAL",
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GITHUB_TOKEN",
    "GH_TOKEN",
    "DOT_DEFAULT_ORGANIZATION",
    "DOT_INDEX_REMOTE_URL",
    "DOT_INDEX_PATH",
)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp()).resolve()
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def remotes(temp_dir: Path, monkeypatch) -> Path:
    """Directory of bare repositories standing in for git@github.com."""
    remotes_dir = temp_dir / "remotes"
    remotes_dir.mkdir()
    home = temp_dir / "home"
    home.mkdir()
    (home / ".gitconfig").write_text(
        "[user]\n"
        "\tname = Test User\n"
        "\temail = test@example.com\n"
        "[init]\n"
        "\tdefaultBranch = main\n"
        f'[url "{remotes_dir.as_posix()}/"]\n'
        "\tinsteadOf = git@github.com:\n"
    )
    for name in ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    return remotes_dir


@pytest.fixture
def git_repo_factory():
    """Provide access to GitRepositoryFactory."""
    return GitRepositoryFactory


@pytest.fixture
def config(temp_dir: Path, remotes: Path):
    return create_test_config(index_path=temp_dir / "index-clone")


@pytest.fixture
def index_remote(remotes: Path) -> Path:
    """Empty bare index repository of the test organization."""
    return GitRepositoryFactory.create_bare_remote(remotes, "test-org", ".index")


@pytest.fixture
def hosting(remotes: Path) -> FakeHostingClient:
    return FakeHostingClient(remotes)


@pytest.fixture
def index(config, index_remote, hosting) -> Generator[GlobalIndexManager, None, None]:
    manager = GlobalIndexManager(config, hosting=hosting)
    yield manager
    manager.close()


@pytest.fixture
def project_root(temp_dir: Path, remotes: Path) -> Path:
    """Main repository cloned from git@github.com:user/project.git."""
    return GitRepositoryFactory.create_project(temp_dir / "work" / "project", remotes)


@pytest.fixture
def make_project(project_root, config, index, hosting):
    """Build a ProjectManager for the test project with the given options."""

    def factory(**options) -> ProjectManager:
        return ProjectManager(project_root, config, index, hosting=hosting, **options)

    return factory


@pytest.fixture
def fresh_index(temp_dir: Path, config):
    """A second index manager with its own local clone, like another machine."""
    managers = []

    def factory(name: str = "other") -> GlobalIndexManager:
        other_config = config.model_copy(update={"index_path": temp_dir / f"index-{name}"})
        manager = GlobalIndexManager(other_config)
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.close()
