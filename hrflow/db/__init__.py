"""Relational store for workflow definitions and executions."""

from __future__ import annotations

import os
from typing import Optional

from ..config import HrflowConfig, load_config
from .models import (
    EmployeeJourneyView,
    Workflow,
    WorkflowActionQueue,
    WorkflowNode,
    WorkflowRun,
    WorkflowRunStep,
    WorkflowVersion,
)
from .workflow_db import WorkflowDB

_database_instance: WorkflowDB | None = None


def get_database(
    database_url: Optional[str] = None, config: Optional[HrflowConfig] = None
) -> WorkflowDB:
    """Factory function to obtain the shared ``WorkflowDB``.

    The URL can be provided explicitly, via environment variable
    ``HRFLOW_DATABASE_URL`` or ``DATABASE_URL``, or from loaded configuration.
    Only ``sqlite+aiosqlite`` and ``postgresql+asyncpg`` URLs are accepted.
    """

    global _database_instance
    if _database_instance is not None and database_url is None and config is None:
        return _database_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("HRFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not (
        database_url.startswith("sqlite+aiosqlite://")
        or database_url.startswith("postgresql+asyncpg://")
    ):
        raise ValueError(f"Unsupported database backend: {database_url}")

    _database_instance = WorkflowDB(database_url)
    return _database_instance


__all__ = [
    "EmployeeJourneyView",
    "Workflow",
    "WorkflowActionQueue",
    "WorkflowDB",
    "WorkflowNode",
    "WorkflowRun",
    "WorkflowRunStep",
    "WorkflowVersion",
    "get_database",
]
