"""Operation executor: apply one step to a set of repository handles."""

import logging
from typing import Iterable, List

from .models import HandleResult, OperationResult
from .repository import RepositoryHandle
from .steps import Step

logger = logging.getLogger(__name__)


class OperationExecutor:
    """Applies a step to handles and records one result per handle.

    Single-repository failures, raised or returned, always come back as a
    ``Failed`` result; deciding what a failure means is left to the caller.
    """

    def __init__(self, skip_hidden: bool = False):
        self.skip_hidden = skip_hidden

    def select(self, handles: Iterable[RepositoryHandle]) -> List[RepositoryHandle]:
        """Restrict ``handles`` to the main repository in skip-hidden mode."""
        handles = list(handles)
        if self.skip_hidden:
            return [h for h in handles if h.is_main]
        return handles

    async def apply_one(self, step: Step, handle: RepositoryHandle) -> HandleResult:
        logger.debug(
            f"{step.describe()} -> {handle.display_name}",
            extra={"repository": handle.display_name, "action": step.action.value},
        )
        try:
            result = await step.execute(handle)
        except Exception as e:
            logger.debug(f"{step.action.value} raised in {handle.display_name}", exc_info=True)
            result = OperationResult.failed(f"{e.__class__.__name__}: {e}")
        return HandleResult(handle, step.action, result)

    async def apply(self, step: Step, handles: Iterable[RepositoryHandle]) -> List[HandleResult]:
        results = []
        for handle in self.select(handles):
            results.append(await self.apply_one(step, handle))
        return results
