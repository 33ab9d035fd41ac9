"""
Base node handler definitions.

Handlers are pure: they read a node's config and the run's variables and
return a proposal. Only the engine applies it to the run.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Generic, Mapping, Optional, TypeVar

from flow_engine.core.models import DEFAULT_PORT, ActionRequest, NodeType, WireModel

ConfigT = TypeVar("ConfigT", bound=WireModel)


@dataclass(frozen=True)
class HandlerResult:
    """
    Proposal returned by a node handler.

    Attributes:
        next_port_id: Port to leave the node through
        variable_updates: Bindings to merge into the run's variables
        action: Side effect to dispatch (Business nodes only)
        delay_seconds: Pause before leaving the node (Delay nodes only)
    """

    next_port_id: str = DEFAULT_PORT
    variable_updates: dict[str, Any] = field(default_factory=dict)
    action: Optional[ActionRequest] = None
    delay_seconds: Optional[int] = None

    @property
    def suspends(self) -> bool:
        """Whether the engine has to park the run before following the port."""
        return self.action is not None or bool(self.delay_seconds)


class NodeHandler(ABC, Generic[ConfigT]):
    """Strategy for one node type."""

    node_type: NodeType

    @abstractmethod
    def handle(self, config: ConfigT, variables: Mapping[str, Any]) -> HandlerResult:
        """
        Process a node.

        Args:
            config: The node's type-specific configuration
            variables: Read-only view of the run's variables

        Returns:
            HandlerResult describing where the run should go next
        """
