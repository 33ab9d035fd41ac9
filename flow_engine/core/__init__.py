"""Core domain models and business logic."""

from flow_engine.core.models import (
    ActionRequest,
    ActionResult,
    BusinessConfig,
    DecisionConfig,
    DelayConfig,
    DocumentStatus,
    EdgeDefinition,
    EdgeType,
    GraphDocument,
    HistoryEntry,
    NodeDefinition,
    NodeOutcome,
    NodeType,
    RetryConfig,
    Run,
    TriggerConfig,
    parse_graph_document,
)
from flow_engine.core.state_machine import (
    InvalidStateTransitionError,
    RunStateMachine,
    RunStatus,
)
from flow_engine.core.validator import GraphValidator, ValidationError, ValidationResult, validate

__all__ = [
    "ActionRequest",
    "ActionResult",
    "BusinessConfig",
    "DecisionConfig",
    "DelayConfig",
    "DocumentStatus",
    "EdgeDefinition",
    "EdgeType",
    "GraphDocument",
    "HistoryEntry",
    "NodeDefinition",
    "NodeOutcome",
    "NodeType",
    "RetryConfig",
    "Run",
    "TriggerConfig",
    "parse_graph_document",
    "InvalidStateTransitionError",
    "RunStateMachine",
    "RunStatus",
    "GraphValidator",
    "ValidationError",
    "ValidationResult",
    "validate",
]
