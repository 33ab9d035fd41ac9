"""
Handlers for the four node types.

Dispatch is a closed mapping over NodeType; a missing handler is caught at
import time rather than when a run first reaches such a node.
"""

from typing import Any, Mapping

from flow_engine.core.models import (
    DEFAULT_PORT,
    PORT_NO,
    PORT_YES,
    ActionRequest,
    BusinessConfig,
    DecisionConfig,
    DelayConfig,
    NodeType,
    TriggerConfig,
)
from flow_engine.expressions import evaluate_condition
from flow_engine.handlers.base import HandlerResult, NodeHandler


class TriggerHandler(NodeHandler[TriggerConfig]):
    """Entry node. Runs once, at run creation, and selects its only port."""

    node_type = NodeType.TRIGGER

    def handle(self, config: TriggerConfig, variables: Mapping[str, Any]) -> HandlerResult:
        return HandlerResult(next_port_id=DEFAULT_PORT)


class DelayHandler(NodeHandler[DelayConfig]):
    """Signals a pause; never touches variables."""

    node_type = NodeType.DELAY

    def handle(self, config: DelayConfig, variables: Mapping[str, Any]) -> HandlerResult:
        return HandlerResult(next_port_id=DEFAULT_PORT, delay_seconds=config.duration_seconds)


class DecisionHandler(NodeHandler[DecisionConfig]):
    """
    Routes to 'yes' when the condition is truthy, otherwise to 'no'.

    Raises:
        ExpressionError: If the condition cannot be evaluated against the
            run's variables.
    """

    node_type = NodeType.DECISION

    def handle(self, config: DecisionConfig, variables: Mapping[str, Any]) -> HandlerResult:
        outcome = evaluate_condition(config.condition_expression, variables)
        return HandlerResult(next_port_id=PORT_YES if outcome else PORT_NO)


class BusinessHandler(NodeHandler[BusinessConfig]):
    """The only handler that declares a side effect."""

    node_type = NodeType.BUSINESS

    def handle(self, config: BusinessConfig, variables: Mapping[str, Any]) -> HandlerResult:
        return HandlerResult(
            next_port_id=DEFAULT_PORT,
            action=ActionRequest(
                action_kind=config.action_kind,
                action_parameters=dict(config.action_parameters),
            ),
        )


HANDLERS: dict[NodeType, NodeHandler] = {
    handler.node_type: handler
    for handler in (TriggerHandler(), DelayHandler(), DecisionHandler(), BusinessHandler())
}

_missing = set(NodeType) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No handler registered for node types: {sorted(t.value for t in _missing)}")


def get_handler(node_type: NodeType) -> NodeHandler:
    """Get the handler for a node type."""
    return HANDLERS[node_type]
