"""
Error taxonomy shared by the store-facing services and the HTTP layer.
"""
from dataclasses import dataclass
from typing import List, Optional


class QuestError(Exception):
    """Base class for every error raised by the quest services."""


class NotFound(QuestError):
    pass


class AlreadyExists(QuestError):
    pass


class TooMany(QuestError):
    pass


class Unauthenticated(QuestError):
    pass


class Forbidden(QuestError):
    pass


class TransientStoreError(QuestError):
    """Network/backend failure. Safe to retry."""


class FetchInProgress(QuestError):
    """A feed is already fetching; concurrent calls are rejected, not queued."""


@dataclass
class FieldError:
    objective: Optional[int]  # None for quest-level fields
    field: str
    message: str


class ValidationError(QuestError):
    """Carries every violation found, not only the first one."""

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        super().__init__("; ".join(self._describe(e) for e in self.errors))

    @staticmethod
    def _describe(error: FieldError) -> str:
        where = f"objective {error.objective}" if error.objective is not None else "quest"
        return f"{where}: {error.field} {error.message}"

    @property
    def objectives(self) -> List[int]:
        """Objective numbers named by at least one error, in order."""
        seen = []
        for error in self.errors:
            if error.objective is not None and error.objective not in seen:
                seen.append(error.objective)
        return seen


class PartialCascadeFailure(QuestError):
    """
    A multi-step delete stopped partway. `completed` lists the steps that are
    durable; every step is idempotent so the whole operation can be re-run.
    """

    def __init__(self, step: str, completed: List[str], cause: Exception):
        self.step = step
        self.completed = list(completed)
        self.cause = cause
        super().__init__(f"step '{step}' failed after {self.completed}: {cause}")
