"""Tests for the GitHub hosting clients."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from dot_proxy.configuration import create_test_config
from dot_proxy.exceptions import ConfigurationError, HostingError, RateLimited, RepositoryAlreadyExists
from dot_proxy.github import GhCliHostingClient, GitHubClient, get_hosting_client

TOKEN = "ghp_" + "a" * 36


def make_response(status, body=None, headers=None):
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.text = AsyncMock(return_value=json.dumps(body) if body is not None else "")
    response.release = MagicMock()
    return response


def make_client(*responses, max_retries=2):
    session = MagicMock()
    session.request = AsyncMock(side_effect=list(responses))
    session.close = AsyncMock()
    client = GitHubClient(token=TOKEN, session=session, max_retries=max_retries, retry_backoff=0)
    return client, session


class TestCreateRepository:
    @pytest.mark.asyncio
    async def test_creates_under_organization(self):
        client, session = make_client(make_response(201, {"name": "repo"}))

        url = await client.create_repository("test-org", "repo", description="d")

        assert url == "git@github.com:test-org/repo.git"
        method, endpoint = session.request.call_args.args
        assert method == "POST"
        assert endpoint == "https://api.github.com/orgs/test-org/repos"
        assert session.request.call_args.kwargs["json"]["private"] is True
        headers = session.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == f"Bearer {TOKEN}"
        assert headers["X-GitHub-Api-Version"] == "2022-11-28"

    @pytest.mark.asyncio
    async def test_falls_back_to_user_repos_for_personal_account(self):
        client, session = make_client(
            make_response(404, {"message": "Not Found"}),
            make_response(200, {"login": "alice"}),
            make_response(201, {"name": "repo"}),
        )

        url = await client.create_repository("alice", "repo")

        assert url == "git@github.com:alice/repo.git"
        endpoints = [call.args[1] for call in session.request.call_args_list]
        assert endpoints[-1] == "https://api.github.com/user/repos"

    @pytest.mark.asyncio
    async def test_unknown_organization(self):
        client, _ = make_client(make_response(404, {}), make_response(200, {"login": "alice"}))
        with pytest.raises(HostingError, match="not found"):
            await client.create_repository("nobody", "repo")

    @pytest.mark.asyncio
    async def test_already_exists_is_not_retried(self):
        client, session = make_client(
            make_response(422, {"message": "Repository creation failed.", "errors": [{"message": "name already exists on this account"}]})
        )
        with pytest.raises(RepositoryAlreadyExists):
            await client.create_repository("test-org", "repo")
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        client, session = make_client(
            make_response(429, {"message": "slow down"}, {"Retry-After": "0"}),
            make_response(201, {}),
        )
        assert await client.create_repository("test-org", "repo") == "git@github.com:test-org/repo.git"
        assert session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_gives_up_after_max_retries(self):
        limited = [make_response(403, {}, {"X-RateLimit-Remaining": "0"}) for _ in range(3)]
        client, session = make_client(*limited, max_retries=2)
        with pytest.raises(RateLimited):
            await client.create_repository("test-org", "repo")
        assert session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_plain_forbidden_is_hosting_error(self):
        client, session = make_client(make_response(403, {"message": "Must have admin rights"}))
        with pytest.raises(HostingError, match="admin rights"):
            await client.create_repository("test-org", "repo")
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_network_error_is_hosting_error(self):
        client, _ = make_client(aiohttp.ClientConnectionError("unreachable"))
        with pytest.raises(HostingError):
            await client.create_repository("test-org", "repo")


class TestDeleteAndExists:
    @pytest.mark.asyncio
    async def test_delete_treats_missing_as_deleted(self):
        client, _ = make_client(make_response(404, {"message": "Not Found"}))
        await client.delete_repository("test-org", "repo")

    @pytest.mark.asyncio
    async def test_delete_failure(self):
        client, _ = make_client(make_response(500, {"message": "boom"}))
        with pytest.raises(HostingError):
            await client.delete_repository("test-org", "repo")

    @pytest.mark.asyncio
    async def test_repository_exists(self):
        client, _ = make_client(make_response(200, {"name": "repo"}), make_response(404, {}))
        assert await client.repository_exists("test-org", "repo") is True
        assert await client.repository_exists("test-org", "gone") is False

    @pytest.mark.asyncio
    async def test_close_closes_session(self):
        client, session = make_client()
        await client.close()
        session.close.assert_awaited_once()


class TestGhCliHostingClient:
    @pytest.mark.asyncio
    async def test_create_uses_gh_repo_create(self):
        with patch("dot_proxy.github.cli._run_gh_command", return_value=("", "", 0)) as run:
            url = await GhCliHostingClient().create_repository("test-org", "repo", description="d")
        assert url == "git@github.com:test-org/repo.git"
        args = run.call_args.args[0]
        assert args[:3] == ["repo", "create", "test-org/repo"]
        assert "--private" in args

    @pytest.mark.asyncio
    async def test_create_already_exists(self):
        stderr = "GraphQL: Name already exists on this account (createRepository)"
        with patch("dot_proxy.github.cli._run_gh_command", return_value=("", stderr, 1)):
            with pytest.raises(RepositoryAlreadyExists):
                await GhCliHostingClient().create_repository("test-org", "repo")

    @pytest.mark.asyncio
    async def test_delete_missing_repository_is_ok(self):
        stderr = "HTTP 404: Not Found"
        with patch("dot_proxy.github.cli._run_gh_command", return_value=("", stderr, 1)):
            await GhCliHostingClient().delete_repository("test-org", "repo")

    @pytest.mark.asyncio
    async def test_missing_gh_binary(self):
        with patch("dot_proxy.github.cli.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(HostingError, match="gh"):
                await GhCliHostingClient().create_repository("test-org", "repo")


class TestGetHostingClient:
    @pytest.mark.asyncio
    async def test_prefers_token(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", TOKEN)
        client = get_hosting_client(create_test_config())
        try:
            assert isinstance(client, GitHubClient)
            assert client.max_retries == 2
        finally:
            await client.close()

    def test_falls_back_to_gh_cli(self, monkeypatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GH_TOKEN", raising=False)
        with patch("dot_proxy.github.client.shutil.which", return_value="/usr/bin/gh"):
            assert isinstance(get_hosting_client(create_test_config()), GhCliHostingClient)

    def test_no_credentials(self, monkeypatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("GH_TOKEN", raising=False)
        with patch("dot_proxy.github.client.shutil.which", return_value=None):
            with pytest.raises(ConfigurationError):
                get_hosting_client(create_test_config())
