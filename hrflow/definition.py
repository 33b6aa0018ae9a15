"""Workflow graph definitions stored on each workflow version."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Annotated, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from .errors import DefinitionError

logger = logging.getLogger(__name__)

DEFINITION_KEYS = {"nodes", "edges", "metadata"}


class DefinitionNode(BaseModel):
    """One node of a workflow graph."""

    id: str
    type: str
    label: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    join: Literal["any", "all"] = "any"

    @field_validator("config", mode="before")
    @classmethod
    def _config_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, Mapping) else {}

    @field_validator("join", mode="before")
    @classmethod
    def _default_join(cls, value: Any) -> Any:
        return value or "any"

    @property
    def event(self) -> Optional[str]:
        """Event name configured on a trigger node."""
        return self.config.get("event")


class DefinitionEdge(BaseModel):
    """Directed edge between two node ids."""

    source: str
    target: str


class WorkflowDefinition(BaseModel):
    """Nodes, edges and metadata of one workflow version."""

    nodes: List[DefinitionNode] = Field(default_factory=list)
    edges: List[DefinitionEdge] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, value: Any) -> "WorkflowDefinition":
        """Normalize a stored definition blob.

        Anything that is not a mapping with only ``nodes``, ``edges`` and
        ``metadata`` keys becomes the empty definition. Malformed nodes and
        edges are dropped one by one so that the rest of the graph survives.
        """
        if not isinstance(value, Mapping):
            return cls()
        unknown = set(value) - DEFINITION_KEYS
        if unknown:
            logger.warning(f"Ignoring definition with unexpected keys: {sorted(unknown)}")
            return cls()

        nodes: List[DefinitionNode] = []
        raw_nodes = value.get("nodes")
        for raw in raw_nodes if isinstance(raw_nodes, list) else []:
            try:
                nodes.append(DefinitionNode.model_validate(raw))
            except ValidationError as exc:
                logger.warning(f"Skipping malformed definition node {raw!r}: {exc}")

        edges: List[DefinitionEdge] = []
        raw_edges = value.get("edges")
        for raw in raw_edges if isinstance(raw_edges, list) else []:
            try:
                edges.append(DefinitionEdge.model_validate(raw))
            except ValidationError as exc:
                logger.warning(f"Skipping malformed definition edge {raw!r}: {exc}")

        metadata = value.get("metadata")
        return cls(
            nodes=nodes,
            edges=edges,
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        )

    def to_raw(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def node(self, node_id: str) -> Optional[DefinitionNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def trigger_nodes(self, event: Optional[str] = None) -> List[DefinitionNode]:
        """Trigger nodes, optionally only those listening for ``event``."""
        return [
            node
            for node in self.nodes
            if node.type == "trigger" and (event is None or node.event == event)
        ]

    def incoming(self, node_id: str) -> List[DefinitionEdge]:
        return [edge for edge in self.edges if edge.target == node_id]

    def outgoing(self, node_id: str) -> List[DefinitionEdge]:
        return [edge for edge in self.edges if edge.source == node_id]


# ---------------------------------------------------------------------------
# Node configuration


class DueDate(BaseModel):
    absolute: Optional[str] = None
    relative: Optional[str] = None


class SendEmailAction(BaseModel):
    kind: Literal["email"] = "email"
    template: str


class AssignTaskAction(BaseModel):
    kind: Literal["assign_task"] = "assign_task"
    tasks: List[str] = Field(default_factory=list)
    description: str = ""
    instructions: str = ""
    priority: str = "medium"
    assigned_to: Optional[Dict[str, Any]] = None
    due_date: Optional[DueDate] = None


class CreateDocumentAction(BaseModel):
    kind: Literal["create_document"] = "create_document"
    documents: List[str] = Field(default_factory=list)
    assigned_to: Optional[Dict[str, Any]] = None
    due_date: Optional[DueDate] = None


class FillFormAction(BaseModel):
    kind: Literal["fill_form"] = "fill_form"
    form: Optional[Any] = None
    form_schema: Dict[str, Any] = Field(default_factory=dict)
    assigned_to: Optional[Dict[str, Any]] = None
    due_date: Optional[DueDate] = None


ActionConfig = Annotated[
    Union[SendEmailAction, AssignTaskAction, CreateDocumentAction, FillFormAction],
    Field(discriminator="kind"),
]

_action_adapter: TypeAdapter[ActionConfig] = TypeAdapter(ActionConfig)

# Marker fields for definitions authored before ``kind`` existed, in priority order.
_ACTION_MARKERS = (
    ("template", "email"),
    ("tasks", "assign_task"),
    ("documents", "create_document"),
    ("form", "fill_form"),
    ("form_schema", "fill_form"),
)


def infer_action_kind(config: Mapping[str, Any]) -> Optional[str]:
    """Return the explicit ``kind`` or the one implied by marker fields."""
    if config.get("kind"):
        return str(config["kind"])
    for field, kind in _ACTION_MARKERS:
        if config.get(field) is not None:
            return kind
    return None


def parse_action_config(config: Mapping[str, Any]) -> Optional[ActionConfig]:
    """Parse an action node config into its tagged variant.

    Returns ``None`` for an action that carries neither a ``kind`` nor any
    marker field.
    """
    kind = infer_action_kind(config)
    if kind is None:
        return None
    try:
        return _action_adapter.validate_python({**config, "kind": kind})
    except ValidationError as exc:
        raise DefinitionError(f"Invalid {kind} action config: {exc}") from exc


class Duration(BaseModel):
    value: int = Field(default=1, ge=0)
    unit: Literal["minute", "hour", "day"] = "day"

    def to_timedelta(self) -> timedelta:
        return timedelta(**{f"{self.unit}s": self.value})


class DelayConfig(BaseModel):
    duration: Duration = Field(default_factory=Duration)

    @field_validator("duration", mode="before")
    @classmethod
    def _default_duration(cls, value: Any) -> Any:
        return value if value is not None else {}


def parse_delay_config(config: Mapping[str, Any]) -> DelayConfig:
    try:
        return DelayConfig.model_validate(config)
    except ValidationError as exc:
        raise DefinitionError(f"Invalid delay config: {exc}") from exc
