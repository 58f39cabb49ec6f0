"""Tests for error taxonomy and retry mechanisms."""

import pytest
from unittest.mock import patch

from dot_proxy.error_handling import ErrorRecoveryStrategy, retry_on
from dot_proxy.exceptions import (
    DotError,
    ExitCode,
    IndexConflict,
    IndexStoreError,
    InvalidDirectoryPath,
    OrganizationNotAuthorized,
    PartialClone,
    RateLimited,
)


class TestExitCodes:
    """Each error class carries the exit code the CLI reports."""

    def test_default_exit_code(self):
        assert DotError("x").exit_code == ExitCode.ERROR

    def test_usage_errors(self):
        assert InvalidDirectoryPath("..", "leaves root").exit_code == ExitCode.USAGE

    def test_index_conflict_is_store_error(self):
        error = IndexConflict("github.com/user/project", 5)
        assert isinstance(error, IndexStoreError)
        assert "5 time(s)" in error.message

    def test_partial_clone_message(self):
        error = PartialClone({".kiro": "x", ".claude": "y"})
        assert error.exit_code == ExitCode.PARTIAL_CLONE
        assert error.message == "Failed to clone hidden directories: .claude, .kiro"

    def test_missing_organization_message(self):
        assert "No default organization" in OrganizationNotAuthorized(None).message
        assert "'acme'" in OrganizationNotAuthorized("acme").message


class TestErrorRecoveryStrategy:
    """Test ErrorRecoveryStrategy functionality."""

    def test_should_retry(self):
        """Retries are allowed until max_retries is reached."""
        strategy = ErrorRecoveryStrategy(max_retries=2)
        assert strategy.should_retry(0)
        assert strategy.should_retry(1)
        assert not strategy.should_retry(2)

    def test_exponential_backoff(self):
        """Test retry delay grows exponentially and is capped."""
        strategy = ErrorRecoveryStrategy(backoff_factor=0.5, max_delay=3.0)
        assert strategy.get_retry_delay(0) == 0.5
        assert strategy.get_retry_delay(1) == 1.0
        assert strategy.get_retry_delay(2) == 2.0
        assert strategy.get_retry_delay(3) == 3.0

    def test_server_retry_after_wins_when_longer(self):
        strategy = ErrorRecoveryStrategy(backoff_factor=0.1)
        error = RateLimited("slow down", retry_after=7)
        assert strategy.get_retry_delay(0, error) == 7.0


class TestRetryOn:
    """Test the retry_on decorator."""

    def test_sync_function_retries_then_succeeds(self):
        calls = []

        @retry_on(RateLimited, max_retries=3, backoff_factor=0)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RateLimited("limited")
            return "ok"

        with patch("dot_proxy.error_handling.time.sleep") as sleep:
            assert flaky() == "ok"
        assert len(calls) == 3
        assert sleep.call_count == 2

    def test_other_exceptions_are_not_retried(self):
        calls = []

        @retry_on(RateLimited, max_retries=3, backoff_factor=0)
        def broken():
            calls.append(1)
            raise ValueError("nope")

        with pytest.raises(ValueError):
            broken()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_async_function_gives_up(self):
        calls = []

        @retry_on(RateLimited, max_retries=2, backoff_factor=0)
        async def always_limited():
            calls.append(1)
            raise RateLimited("limited")

        with pytest.raises(RateLimited):
            await always_limited()
        assert len(calls) == 3

    def test_preserves_function_metadata(self):
        @retry_on(RateLimited)
        def documented():
            """Docstring."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring."
