"""
Domain models for the workflow engine.

Graph documents travel between the editor and the engine in camelCase;
every wire model also accepts snake_case field names. All models use
Pydantic for validation and serialization.
"""

import json
import random
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from flow_engine.core.clock import utcnow
from flow_engine.core.errors import MalformedDocument
from flow_engine.core.state_machine import RunStateMachine, RunStatus

# Port identifiers
PORT_YES = "yes"
PORT_NO = "no"
DEFAULT_PORT = "out"
DECISION_PORTS = (PORT_YES, PORT_NO)


class NodeType(str, Enum):
    """Supported node types. The set is closed."""

    TRIGGER = "trigger"
    DELAY = "delay"
    DECISION = "decision"
    BUSINESS = "business"


class DocumentStatus(str, Enum):
    """
    Lifecycle of a graph document.

    Only ACTIVE documents are executable. Drafts may be structurally invalid.
    """

    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"


class EdgeType(str, Enum):
    """How the editor draws edges. Presentation only; execution ignores it."""

    DEFAULT = "default"        # Bezier
    STRAIGHT = "straight"
    SMOOTHSTEP = "smoothstep"


class WireModel(BaseModel):
    """Base for models exchanged with the editor."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _normalize_node_type(value: Any) -> Any:
    """Accept 'Trigger', 'trigger' and the editor label 'Trigger Node'."""
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized.endswith(" node"):
            normalized = normalized[: -len(" node")]
        return normalized
    return value


# ==================== Node Configuration ====================


class RetryConfig(WireModel):
    """Retry policy for business action invocations."""

    max_attempts: int = Field(default=3, ge=1, le=100, description="Total invocation attempts")
    initial_delay: float = Field(default=1.0, ge=0.0, description="Initial delay in seconds")
    max_delay: float = Field(default=60.0, ge=0.0, description="Maximum delay in seconds")
    exponential_base: float = Field(default=2.0, ge=1.0, le=10.0, description="Backoff base")
    jitter: bool = Field(default=True, description="Add randomized jitter")

    @model_validator(mode="after")
    def validate_delays(self) -> "RetryConfig":
        """Ensure max_delay is greater than initial_delay."""
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self

    def compute_delay(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        delay = self.initial_delay * (self.exponential_base ** max(attempt - 1, 0))
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.0)
        return delay


class TriggerConfig(WireModel):
    """Trigger: identifies the external event class that starts a run."""

    event_kind: str = Field(..., min_length=1, description="External event class")


class DelayConfig(WireModel):
    """Delay: pauses a run for a fixed number of seconds."""

    duration_seconds: int = Field(..., ge=0, description="Pause duration in seconds")


class DecisionConfig(WireModel):
    """Decision: routes to port 'yes' or 'no' by evaluating a condition."""

    condition_expression: str = Field(..., min_length=1, description="Boolean expression")
    terminal_branches: list[Literal["yes", "no"]] = Field(
        default_factory=list,
        description="Branches deliberately left unattached (flow ends there)",
    )


class BusinessConfig(WireModel):
    """Business: invokes an external action capability."""

    action_kind: str = Field(..., min_length=1, description="External capability identifier")
    action_parameters: dict[str, Any] = Field(default_factory=dict, description="Static arguments")
    retry: Optional[RetryConfig] = Field(default=None, description="Override retry settings")


NodeConfig = Union[TriggerConfig, DelayConfig, DecisionConfig, BusinessConfig]

CONFIG_TYPES: dict[NodeType, type[WireModel]] = {
    NodeType.TRIGGER: TriggerConfig,
    NodeType.DELAY: DelayConfig,
    NodeType.DECISION: DecisionConfig,
    NodeType.BUSINESS: BusinessConfig,
}


# ==================== Graph Document ====================


class NodeDefinition(WireModel):
    """A single typed node of a graph document."""

    id: str = Field(..., min_length=1, max_length=255, description="Unique node identifier")
    type: NodeType = Field(..., description="Node type")
    name: str = Field(default="", description="Display name")
    description: str = Field(default="", description="Display description")
    config: NodeConfig = Field(..., description="Type-specific configuration")

    @model_validator(mode="before")
    @classmethod
    def build_config(cls, data: Any) -> Any:
        """Pick the config model from the node type."""
        if not isinstance(data, dict):
            return data

        data = dict(data)
        # Editor canvas nodes keep their payload under "data"
        payload = data.get("data")
        if isinstance(payload, dict):
            for key in ("name", "description", "config"):
                if key not in data and key in payload:
                    data[key] = payload[key]

        try:
            node_type = NodeType(_normalize_node_type(data.get("type")))
        except ValueError:
            return data  # reported by the type field

        config = data.get("config")
        if config is None:
            config = {}
        config_cls = CONFIG_TYPES[node_type]
        if isinstance(config, dict):
            try:
                data["config"] = config_cls.model_validate(config)
            except ValidationError as exc:
                problems = "; ".join(
                    f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                    for err in exc.errors()
                )
                raise ValueError(f"invalid {node_type.value} config ({problems})") from None
        return data

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        return _normalize_node_type(v)

    @model_validator(mode="after")
    def check_config_matches_type(self) -> "NodeDefinition":
        expected = CONFIG_TYPES[self.type]
        if not isinstance(self.config, expected):
            raise ValueError(
                f"Node '{self.id}' of type {self.type.value} requires {expected.__name__}"
            )
        return self


class EdgeDefinition(WireModel):
    """Directed connection from a node's output port to another node."""

    id: Optional[str] = Field(default=None, description="Editor edge identifier")
    source_node_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("sourceNodeId", "source_node_id", "source"),
        serialization_alias="sourceNodeId",
    )
    source_port_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sourcePortId", "source_port_id", "sourceHandle"),
        serialization_alias="sourcePortId",
    )
    target_node_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("targetNodeId", "target_node_id", "target"),
        serialization_alias="targetNodeId",
    )

    @property
    def port(self) -> str:
        """Port the edge leaves from; unnamed ports are the implicit output."""
        return self.source_port_id or DEFAULT_PORT

    @property
    def label(self) -> str:
        return self.id or f"{self.source_node_id}:{self.port}->{self.target_node_id}"


class GraphDocument(WireModel):
    """
    The unit of authoring and persistence.

    Holds shape and cheap structural lookups only; well-formedness rules
    live in the validator.
    """

    id: UUID = Field(default_factory=uuid4, description="Unique document ID")
    name: str = Field(default="Untitled workflow", max_length=255)
    description: Optional[str] = Field(default=None)
    version: int = Field(default=1, ge=1, description="Monotonic version number")
    status: DocumentStatus = Field(default=DocumentStatus.DRAFT)
    parent_id: Optional[UUID] = Field(default=None, description="Version this one supersedes")
    is_template: bool = Field(default=False)
    edge_type: EdgeType = Field(default=EdgeType.DEFAULT, description="Editor edge style")

    nodes: list[NodeDefinition] = Field(default_factory=list)
    edges: list[EdgeDefinition] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    published_at: Optional[datetime] = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def unwrap_configuration(cls, data: Any) -> Any:
        """Accept the stored form where nodes/edges sit under 'configuration'."""
        if isinstance(data, dict) and isinstance(data.get("configuration"), dict):
            data = dict(data)
            configuration = data.pop("configuration")
            data.setdefault("nodes", configuration.get("nodes", []))
            data.setdefault("edges", configuration.get("edges", []))
        return data

    @field_validator("nodes")
    @classmethod
    def validate_unique_node_ids(cls, v: list[NodeDefinition]) -> list[NodeDefinition]:
        """Ensure all node IDs are unique."""
        ids = [node.id for node in v]
        if len(ids) != len(set(ids)):
            duplicates = sorted({x for x in ids if ids.count(x) > 1})
            raise ValueError(f"Duplicate node IDs found: {duplicates}")
        return v

    @model_validator(mode="after")
    def validate_edge_references(self) -> "GraphDocument":
        """Every edge must connect two existing nodes."""
        node_ids = {node.id for node in self.nodes}
        dangling = [
            edge.label
            for edge in self.edges
            if edge.source_node_id not in node_ids or edge.target_node_id not in node_ids
        ]
        if dangling:
            raise ValueError(f"Edges reference unknown nodes: {dangling}")
        return self

    # ==================== Structural Queries ====================

    def node_by_id(self, node_id: str) -> Optional[NodeDefinition]:
        """Get node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def trigger_nodes(self) -> list[NodeDefinition]:
        return [node for node in self.nodes if node.type == NodeType.TRIGGER]

    def trigger_node(self) -> Optional[NodeDefinition]:
        """The unique entry node, or None when there is not exactly one."""
        triggers = self.trigger_nodes()
        return triggers[0] if len(triggers) == 1 else None

    def outgoing_edges(
        self,
        node_id: str,
        port_id: Optional[str] = None,
    ) -> list[EdgeDefinition]:
        """Edges leaving a node, optionally restricted to one port."""
        return [
            edge
            for edge in self.edges
            if edge.source_node_id == node_id and (port_id is None or edge.port == port_id)
        ]

    def incoming_edges(self, node_id: str) -> list[EdgeDefinition]:
        return [edge for edge in self.edges if edge.target_node_id == node_id]

    def successor(self, node_id: str, port_id: str = DEFAULT_PORT) -> Optional[str]:
        """
        Resolve the node reached from ``node_id`` through ``port_id``.

        Single-port nodes ignore the port name. Returns None when the port
        has no outgoing edge.
        """
        node = self.node_by_id(node_id)
        if node is None:
            return None
        if node.type == NodeType.DECISION:
            edges = self.outgoing_edges(node_id, port_id)
        else:
            edges = self.outgoing_edges(node_id)
        return edges[0].target_node_id if edges else None

    @property
    def is_executable(self) -> bool:
        return self.status == DocumentStatus.ACTIVE

    @property
    def event_kind(self) -> Optional[str]:
        trigger = self.trigger_node()
        if trigger is None:
            return None
        return trigger.config.event_kind

    def new_version(
        self,
        edits: Optional["GraphDocument"] = None,
        now: Optional[datetime] = None,
    ) -> "GraphDocument":
        """
        Draft that supersedes this document.

        The draft carries the content of ``edits`` when given, otherwise a
        copy of this document's own nodes and edges.
        """
        now = now or utcnow()
        source = edits if edits is not None else self
        return source.model_copy(
            deep=True,
            update={
                "id": uuid4(),
                "version": self.version + 1,
                "parent_id": self.id,
                "status": DocumentStatus.DRAFT,
                "created_at": now,
                "updated_at": now,
                "published_at": None,
            },
        )

    def to_wire(self) -> dict[str, Any]:
        """Serialize the way the editor expects it."""
        return self.model_dump(mode="json", by_alias=True)


def parse_graph_document(data: dict[str, Any] | str | bytes) -> GraphDocument:
    """
    Construct a graph document from its serialized form.

    Raises:
        MalformedDocument: If required fields are absent, types mismatch,
            node types are unknown, node IDs repeat or edges dangle.
    """
    try:
        if isinstance(data, (str, bytes)):
            return GraphDocument.model_validate_json(data)
        return GraphDocument.model_validate(data)
    except ValidationError as exc:
        errors = json.loads(exc.json(include_url=False))
        raise MalformedDocument(
            f"Malformed graph document: {exc.error_count()} error(s)",
            errors=errors,
        ) from None


# ==================== Runs ====================


class NodeOutcome(str, Enum):
    """How the run left a node."""

    ADVANCED = "ADVANCED"    # Moved on to a successor
    COMPLETED = "COMPLETED"  # No successor; the run completed here
    FAILED = "FAILED"        # The run failed at this node
    CANCELLED = "CANCELLED"  # The run was cancelled while at this node


class HistoryEntry(BaseModel):
    """One visit of a run to a node."""

    node_id: str
    node_type: NodeType
    entered_at: datetime
    exited_at: Optional[datetime] = None
    outcome: Optional[NodeOutcome] = None
    port_id: Optional[str] = None
    detail: Optional[str] = None


class Run(BaseModel):
    """One execution instance of a graph document."""

    id: UUID = Field(default_factory=uuid4, description="Unique run ID")
    document_id: UUID = Field(..., description="Executed graph document")
    document_version: int = Field(default=1, ge=1)
    event_kind: str = Field(..., description="Event that instantiated the run")

    current_node_id: str = Field(..., description="Node the run is at")
    status: RunStatus = Field(default=RunStatus.RUNNING)

    variables: dict[str, Any] = Field(default_factory=dict)
    history: list[HistoryEntry] = Field(default_factory=list)

    resume_at: Optional[datetime] = Field(default=None, description="Set while waiting on a timer")
    action_attempts: int = Field(default=0, ge=0, description="Attempts at the current business node")
    error_message: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in RunStateMachine.TERMINAL_STATES

    def open_entry(self) -> Optional[HistoryEntry]:
        """History entry of the node the run is still inside, if any."""
        if self.history and self.history[-1].exited_at is None:
            return self.history[-1]
        return None


# ==================== Business Actions ====================


class ActionRequest(BaseModel):
    """Side effect declared by a business node."""

    action_kind: str
    action_parameters: dict[str, Any] = Field(default_factory=dict)


class ActionResult(BaseModel):
    """Outcome of one business action invocation."""

    success: bool = Field(..., description="Whether the action succeeded")
    result_variables: dict[str, Any] = Field(default_factory=dict)
    retryable_error: bool = Field(default=False, description="Whether a failure may be retried")
    error_message: Optional[str] = Field(default=None)
    error_type: Optional[str] = Field(default=None)
    duration_ms: int = Field(default=0, ge=0)
