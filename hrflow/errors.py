"""Exceptions raised by the workflow engine."""

from __future__ import annotations

from typing import Optional
from uuid import UUID


class HrflowError(Exception):
    """Base class for engine errors."""


class DefinitionError(HrflowError):
    """A workflow definition or node mapping is missing or malformed."""


class NotFoundError(HrflowError):
    """A tenant-scoped lookup found nothing."""


class InvalidTransitionError(HrflowError):
    """A status change that the lifecycle does not allow."""


class StepExecutionError(HrflowError):
    """An action failed while executing a node for a run."""

    def __init__(
        self, message: str, run_id: UUID, node_id: Optional[UUID] = None
    ) -> None:
        super().__init__(message)
        self.run_id = run_id
        self.node_id = node_id
