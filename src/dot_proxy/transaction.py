"""Atomic multi-repository transactions.

Hidden repositories are processed before the main repository so that the
publicly visible repository never references hidden state that has not landed
yet. In atomic mode the first failure stops the transaction and every step
already applied is rolled back in reverse order; pushes cannot be undone and
are reported instead. In non-atomic mode every repository is attempted and
nothing is rolled back.

State machine::

    PLANNED -> EXECUTING -> COMMITTED
                         -> ROLLING_BACK -> ROLLED_BACK | ROLLBACK_FAILED
                         -> PARTIAL_PUSH_FAILURE
                         -> PARTIAL_FAILURE            (non-atomic only)
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Tuple

from .exceptions import (
    ExitCode,
    PartialFailure,
    PartialPushFailure,
    RollbackFailed,
    TransactionRolledBack,
)
from .executor import OperationExecutor
from .models import Action, HandleResult, OperationResult
from .repository import RepositoryHandle, sort_handles
from .steps import Step

logger = logging.getLogger(__name__)


class TransactionState(Enum):
    PLANNED = "planned"
    EXECUTING = "executing"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    PARTIAL_PUSH_FAILURE = "partial_push_failure"
    PARTIAL_FAILURE = "partial_failure"


@dataclass
class TransactionPlan:
    """Ordered (handle, action) pairs plus the prefix executed so far."""

    steps: List[Tuple[RepositoryHandle, Action]]
    executed: List[HandleResult] = field(default_factory=list)

    @property
    def remaining(self) -> List[RepositoryHandle]:
        return [handle for handle, _ in self.steps[len(self.executed):]]


@dataclass
class TransactionReport:
    transaction_id: str
    action: Action
    atomic: bool
    state: TransactionState = TransactionState.PLANNED
    results: List[HandleResult] = field(default_factory=list)
    rolled_back: List[RepositoryHandle] = field(default_factory=list)
    inconsistent: List[Tuple[RepositoryHandle, str]] = field(default_factory=list)
    pushed: List[RepositoryHandle] = field(default_factory=list)
    not_reached: List[RepositoryHandle] = field(default_factory=list)
    interrupted: bool = False

    @property
    def failed(self) -> List[HandleResult]:
        return [r for r in self.results if r.result.is_failed]

    @property
    def applied(self) -> List[HandleResult]:
        return [r for r in self.results if r.result.is_applied]

    @property
    def ok(self) -> bool:
        return self.state is TransactionState.COMMITTED

    def raise_for_state(self) -> None:
        """Raise the error matching a failed terminal state."""
        if self.state is TransactionState.COMMITTED:
            return

        failed = ", ".join(f"{r.name} ({r.result.reason})" for r in self.failed) or "none"
        if self.state is TransactionState.ROLLBACK_FAILED:
            details = "; ".join(
                f"{h.display_name} at {h.local_path}: {reason}" for h, reason in self.inconsistent
            )
            error = RollbackFailed(
                f"{self.action.value} failed in {failed} and rollback failed; "
                f"manual recovery needed for: {details}",
                inconsistent=[h.display_name for h, _ in self.inconsistent],
                report=self,
            )
        elif self.state is TransactionState.PARTIAL_PUSH_FAILURE:
            pushed = [h.display_name for h in self.pushed]
            error = PartialPushFailure(
                f"push failed in {failed}; already pushed: {', '.join(pushed)}",
                pushed=pushed,
                report=self,
            )
        elif self.state is TransactionState.PARTIAL_FAILURE:
            error = PartialFailure(
                f"{self.action.value} failed in {len(self.failed)} of "
                f"{len(self.results)} repositories: {failed}",
                report=self,
            )
        else:
            rolled_back = ", ".join(h.display_name for h in self.rolled_back) or "nothing to roll back"
            error = TransactionRolledBack(
                f"{self.action.value} failed in {failed}; rolled back: {rolled_back}",
                report=self,
            )

        if self.interrupted and self.state in (
            TransactionState.ROLLED_BACK,
            TransactionState.PARTIAL_FAILURE,
        ):
            error.exit_code = ExitCode.INTERRUPTED
        raise error


class TransactionCoordinator:
    """Runs one step across a project's repositories, atomically or not."""

    def __init__(self, executor: OperationExecutor, atomic: bool = True):
        self.executor = executor
        self.atomic = atomic

    def plan(
        self, step: Step, handles: Iterable[RepositoryHandle], preserve_order: bool = False
    ) -> TransactionPlan:
        ordered = sort_handles(self.executor.select(handles), preserve_order=preserve_order)
        return TransactionPlan([(handle, step.action) for handle in ordered])

    async def run(
        self, step: Step, handles: Iterable[RepositoryHandle], preserve_order: bool = False
    ) -> TransactionReport:
        plan = self.plan(step, handles, preserve_order)
        report = TransactionReport(uuid.uuid4().hex[:8], step.action, self.atomic)
        log_extra = {"transaction_id": report.transaction_id, "action": step.action.value}
        logger.info(
            f"Transaction {report.transaction_id}: {step.describe()} on "
            f"{len(plan.steps)} repositories ({'atomic' if self.atomic else 'non-atomic'})",
            extra=log_extra,
        )

        report.state = TransactionState.EXECUTING
        for handle, action in plan.steps:
            try:
                # A pending cancellation is delivered here, between repositories
                await asyncio.sleep(0)
                handle_result = await self.executor.apply_one(step, handle)
            except (KeyboardInterrupt, asyncio.CancelledError):
                logger.warning(f"Interrupted during {action.value} of {handle.display_name}", extra=log_extra)
                handle_result = HandleResult(handle, action, OperationResult.failed("interrupted"))
                report.interrupted = True

            plan.executed.append(handle_result)
            report.results.append(handle_result)

            if handle_result.result.is_failed:
                logger.warning(
                    f"{action.value} failed in {handle.display_name}: {handle_result.result.reason}",
                    extra={**log_extra, "repository": handle.display_name},
                )
                if step.left_inconsistent(handle):
                    report.inconsistent.append((handle, handle_result.result.reason or "cleanup failed"))
                if self.atomic or report.interrupted:
                    break

        report.not_reached = plan.remaining

        if not report.failed:
            report.state = TransactionState.COMMITTED
        elif not self.atomic:
            report.state = (
                TransactionState.ROLLBACK_FAILED if report.inconsistent else TransactionState.PARTIAL_FAILURE
            )
        else:
            await self._roll_back(step, report, log_extra)

        logger.info(f"Transaction {report.transaction_id} ended {report.state.value}", extra=log_extra)
        return report

    async def _roll_back(self, step: Step, report: TransactionReport, log_extra: dict) -> None:
        applied = [r.handle for r in report.applied]

        if step.irreversible:
            report.pushed = applied
            report.state = (
                TransactionState.PARTIAL_PUSH_FAILURE if applied else TransactionState.ROLLED_BACK
            )
            return

        report.state = TransactionState.ROLLING_BACK
        for handle in reversed(applied):
            try:
                await step.rollback(handle)
            except Exception as e:
                logger.error(
                    f"Rollback of {step.action.value} failed in {handle.display_name}: {e}",
                    extra={**log_extra, "repository": handle.display_name},
                )
                report.inconsistent.append((handle, str(e)))
            else:
                report.rolled_back.append(handle)
                logger.info(f"Rolled back {handle.display_name}", extra=log_extra)

        report.state = (
            TransactionState.ROLLBACK_FAILED if report.inconsistent else TransactionState.ROLLED_BACK
        )
