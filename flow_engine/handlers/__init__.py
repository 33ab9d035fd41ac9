"""Node handlers, one per node type."""

from flow_engine.handlers.base import HandlerResult, NodeHandler
from flow_engine.handlers.nodes import (
    HANDLERS,
    BusinessHandler,
    DecisionHandler,
    DelayHandler,
    TriggerHandler,
    get_handler,
)

__all__ = [
    "HandlerResult",
    "NodeHandler",
    "HANDLERS",
    "BusinessHandler",
    "DecisionHandler",
    "DelayHandler",
    "TriggerHandler",
    "get_handler",
]
