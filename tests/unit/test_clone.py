"""Tests for cloning a project with its hidden directories."""

import shutil
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from dot_proxy.clone import CloneDiscovery, default_destination
from dot_proxy.exceptions import ExitCode, OperationFailed, PartialClone
from dot_proxy.git import operations as ops
from dot_proxy.transaction import TransactionState

MAIN_URL = "git@github.com:user/project.git"


@pytest_asyncio.fixture
async def published(make_project, project_root):
    """Project with .kiro and .claude initialized, committed and pushed."""
    project = make_project()
    assert (await project.init([".kiro", ".claude"])).state is TransactionState.COMMITTED
    for directory in (".kiro", ".claude"):
        (project_root / directory / "notes.md").write_text(f"notes for {directory}")
    await project.add(["."])
    await project.commit("Publish")
    assert (await project.push()).state is TransactionState.COMMITTED
    return project_root


class TestCloneDiscovery:
    @pytest.mark.asyncio
    async def test_clone_restores_hidden_directories(self, published, config, fresh_index, temp_dir):
        destination = temp_dir / "elsewhere" / "project"
        outcome = await CloneDiscovery(config, fresh_index()).clone(MAIN_URL, destination)

        assert not outcome.partial
        assert outcome.cloned == [".claude", ".kiro"]
        assert (destination / "README.md").exists()
        assert (destination / ".kiro" / "notes.md").read_text() == "notes for .kiro"
        assert (destination / ".claude" / "notes.md").read_text() == "notes for .claude"
        outcome.raise_for_state()

    @pytest.mark.asyncio
    async def test_missing_hidden_remote_gives_partial_clone(self, published, config, fresh_index, remotes, temp_dir):
        shutil.rmtree(remotes / "test-org" / "github.com-user-project-.claude.git")
        destination = temp_dir / "elsewhere" / "project"

        outcome = await CloneDiscovery(config, fresh_index()).clone(MAIN_URL, destination)

        assert outcome.partial
        assert outcome.cloned == [".kiro"]
        assert list(outcome.failed) == [".claude"]
        # The main repository stays usable
        assert ops.is_git_repository(destination)
        assert (destination / ".kiro" / "notes.md").exists()
        with pytest.raises(PartialClone) as excinfo:
            outcome.raise_for_state()
        assert excinfo.value.exit_code == ExitCode.PARTIAL_CLONE
        assert str(excinfo.value) == "Failed to clone hidden directories: .claude"

    @pytest.mark.asyncio
    async def test_index_entry_outside_project_is_not_cloned(self, published, config, fresh_index, temp_dir, monkeypatch):
        other = fresh_index()
        entry = await other.lookup("github.com/user/project")
        kiro = entry.hidden_directories[".kiro"]
        entry.hidden_directories["../../escape"] = kiro.model_copy(update={"relative_path": "../../escape"})
        entry.hidden_directories[".git/hooks"] = kiro.model_copy(update={"relative_path": ".git/hooks"})
        monkeypatch.setattr(other, "lookup", AsyncMock(return_value=entry))
        destination = temp_dir / "elsewhere" / "project"

        outcome = await CloneDiscovery(config, other).clone(MAIN_URL, destination)

        assert outcome.cloned == [".claude", ".kiro"]
        assert sorted(outcome.failed) == ["../../escape", ".git/hooks"]
        assert not (temp_dir / "escape").exists()
        assert not ops.is_git_repository(destination / ".git" / "hooks")

    @pytest.mark.asyncio
    async def test_project_without_hidden_directories(self, project_root, config, index, temp_dir):
        destination = temp_dir / "plain"
        outcome = await CloneDiscovery(config, index).clone(MAIN_URL, destination)
        assert outcome.cloned == []
        assert not outcome.partial

    @pytest.mark.asyncio
    async def test_main_clone_failure_raises(self, config, index, temp_dir):
        with pytest.raises(OperationFailed):
            await CloneDiscovery(config, index).clone("git@github.com:user/absent.git", temp_dir / "absent")

    def test_default_destination_uses_project_name(self, temp_dir):
        assert default_destination(MAIN_URL, cwd=temp_dir) == temp_dir / "project"
