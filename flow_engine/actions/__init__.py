"""Business-action capabilities invoked by Business nodes."""

from flow_engine.actions.registry import ActionCallable, ActionRegistry, ActionTimeoutError

__all__ = ["ActionCallable", "ActionRegistry", "ActionTimeoutError"]
