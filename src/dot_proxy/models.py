"""Result and action types shared by handles, the executor and the coordinator."""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .repository import RepositoryHandle


class RepositoryRole(Enum):
    MAIN = "main"
    HIDDEN = "hidden"


class Action(Enum):
    INIT = "init"
    ADD = "add"
    COMMIT = "commit"
    PUSH = "push"


class OutcomeKind(Enum):
    APPLIED = "applied"
    NOOP = "noop"
    FAILED = "failed"


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one action against one repository."""

    kind: OutcomeKind
    message: str = ""
    reason: Optional[str] = None

    @classmethod
    def applied(cls, message: str = "") -> "OperationResult":
        return cls(OutcomeKind.APPLIED, message)

    @classmethod
    def noop(cls, message: str = "") -> "OperationResult":
        return cls(OutcomeKind.NOOP, message)

    @classmethod
    def failed(cls, reason: str) -> "OperationResult":
        return cls(OutcomeKind.FAILED, reason, reason)

    @property
    def is_applied(self) -> bool:
        return self.kind is OutcomeKind.APPLIED

    @property
    def is_noop(self) -> bool:
        return self.kind is OutcomeKind.NOOP

    @property
    def is_failed(self) -> bool:
        return self.kind is OutcomeKind.FAILED


@dataclass(frozen=True)
class HandleResult:
    """One row of an executor or transaction report."""

    handle: "RepositoryHandle"
    action: Action
    result: OperationResult

    @property
    def name(self) -> str:
        return self.handle.display_name
