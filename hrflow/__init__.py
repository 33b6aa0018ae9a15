"""hrflow: durable workflow orchestration for HR processes."""

from .contracts import StepContext, TriggerEvent, TriggerFailure, TriggerResult
from .db import WorkflowDB, get_database
from .definition import DefinitionEdge, DefinitionNode, WorkflowDefinition
from .engine import WorkflowEngine
from .hooks import LoggingHooks, WebhookHooks, WorkflowHooks, get_hooks
from .queue import WorkflowQueueProcessor

__version__ = "0.1.0"
__all__ = [
    "DefinitionEdge",
    "DefinitionNode",
    "LoggingHooks",
    "StepContext",
    "TriggerEvent",
    "TriggerFailure",
    "TriggerResult",
    "WebhookHooks",
    "WorkflowDB",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowHooks",
    "WorkflowQueueProcessor",
    "get_database",
    "get_hooks",
]
