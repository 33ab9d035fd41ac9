"""
Graph document validation.

Runs every structural check in one pass so the editor sees all problems at
once: trigger count, port arity, reachability, cycles, self-loops,
condition syntax and unattached decision branches.
"""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from flow_engine.core.models import (
    DECISION_PORTS,
    GraphDocument,
    NodeDefinition,
    NodeType,
)
from flow_engine.expressions import ExpressionError, validate_expression


@dataclass
class ValidationError:
    """Represents a single validation error."""

    code: str
    message: str
    node_ids: list[str] = field(default_factory=list)
    edge_ids: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "node_ids": self.node_ids,
            "edge_ids": self.edge_ids,
            "details": self.details,
        }


@dataclass
class ValidationResult:
    """Result of graph validation. Valid when no errors were recorded."""

    is_valid: bool = True
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)

    def add_error(
        self,
        code: str,
        message: str,
        node_ids: Optional[list[str]] = None,
        edge_ids: Optional[list[str]] = None,
        **details: Any,
    ) -> None:
        """Add a validation error."""
        self.errors.append(
            ValidationError(code, message, list(node_ids or []), list(edge_ids or []), details)
        )
        self.is_valid = False

    def add_warning(
        self,
        code: str,
        message: str,
        node_ids: Optional[list[str]] = None,
        edge_ids: Optional[list[str]] = None,
        **details: Any,
    ) -> None:
        """Add a validation warning."""
        self.warnings.append(
            ValidationError(code, message, list(node_ids or []), list(edge_ids or []), details)
        )

    def error_codes(self) -> set[str]:
        return {error.code for error in self.errors}

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [error.to_dict() for error in self.errors],
            "warnings": [warning.to_dict() for warning in self.warnings],
        }


class GraphValidator:
    """
    Validates graph document structure.

    Nodes are visited in sorted id order and adjacency lists are sorted, so
    the result does not depend on how the editor ordered nodes or edges.
    """

    def __init__(self, document: GraphDocument, strict_decision_branches: bool = False):
        self.document = document
        self.strict_decision_branches = strict_decision_branches
        self._node_map: dict[str, NodeDefinition] = {}
        self._adjacency_list: dict[str, list[str]] = defaultdict(list)

        self._build_graph()

    def _build_graph(self) -> None:
        """Build internal graph representation."""
        for node in self.document.nodes:
            self._node_map[node.id] = node

        for edge in self.document.edges:
            # Self-loops are reported on their own, not as cycles
            if edge.source_node_id != edge.target_node_id:
                self._adjacency_list[edge.source_node_id].append(edge.target_node_id)

        for node_id in self._adjacency_list:
            self._adjacency_list[node_id] = sorted(set(self._adjacency_list[node_id]))

    @property
    def _sorted_node_ids(self) -> list[str]:
        return sorted(self._node_map)

    def validate(self) -> ValidationResult:
        """
        Perform full validation of the document.

        Returns:
            ValidationResult with errors and warnings
        """
        result = ValidationResult()

        self._check_trigger_count(result)
        self._check_port_arity(result)
        self._check_reachability(result)
        self._check_cycles(result)
        self._check_self_loops(result)
        self._check_conditions(result)
        self._check_decision_branches(result)

        return result

    def _check_trigger_count(self, result: ValidationResult) -> None:
        """Exactly one Trigger node must exist."""
        triggers = sorted(node.id for node in self.document.trigger_nodes())
        if len(triggers) != 1:
            result.add_error(
                code="TRIGGER_COUNT",
                message=f"Workflow must have exactly one trigger node, found {len(triggers)}",
                node_ids=triggers,
                trigger_count=len(triggers),
            )

    def _check_port_arity(self, result: ValidationResult) -> None:
        """Decision nodes: one edge per named port; all others: one edge total."""
        for node_id in self._sorted_node_ids:
            node = self._node_map[node_id]
            edges = self.document.outgoing_edges(node_id)

            if node.type == NodeType.DECISION:
                by_port: dict[str, list[str]] = defaultdict(list)
                for edge in edges:
                    by_port[edge.port].append(edge.label)

                for port in sorted(by_port):
                    labels = sorted(by_port[port])
                    if port not in DECISION_PORTS:
                        result.add_error(
                            code="INVALID_PORT",
                            message=(
                                f"Decision node '{node_id}' has no port '{port}'; "
                                f"valid ports are {list(DECISION_PORTS)}"
                            ),
                            node_ids=[node_id],
                            edge_ids=labels,
                            port=port,
                        )
                    elif len(labels) > 1:
                        result.add_error(
                            code="PORT_ARITY",
                            message=(
                                f"Decision node '{node_id}' has {len(labels)} edges "
                                f"on port '{port}'"
                            ),
                            node_ids=[node_id],
                            edge_ids=labels,
                            port=port,
                        )
            elif len(edges) > 1:
                result.add_error(
                    code="PORT_ARITY",
                    message=(
                        f"{node.type.value.capitalize()} node '{node_id}' has "
                        f"{len(edges)} outgoing edges; at most one is allowed"
                    ),
                    node_ids=[node_id],
                    edge_ids=sorted(edge.label for edge in edges),
                )

    def _check_reachability(self, result: ValidationResult) -> None:
        """Every node must be reachable from the trigger(s) by forward traversal."""
        roots = sorted(node.id for node in self.document.trigger_nodes())
        if not roots:
            # Nothing to traverse from; the trigger count error covers it
            return

        reachable = set(roots)
        queue = deque(roots)

        while queue:
            node_id = queue.popleft()
            for neighbor in self._adjacency_list[node_id]:
                if neighbor not in reachable:
                    reachable.add(neighbor)
                    queue.append(neighbor)

        for node_id in self._sorted_node_ids:
            if node_id not in reachable:
                result.add_error(
                    code="UNREACHABLE_NODE",
                    message=f"Node '{node_id}' is not reachable from the trigger",
                    node_ids=[node_id],
                )

    def _check_cycles(self, result: ValidationResult) -> None:
        """
        Detect cycles with a depth-first traversal and a recursion-stack set.

        A back-edge to a node currently on the stack closes a cycle; the nodes
        between that node and the top of the stack are reported. The
        traversal keeps its own stack of (node, remaining neighbors), so
        long chains do not hit the interpreter's recursion limit.
        """
        visited: set[str] = set()
        rec_stack: set[str] = set()
        reported: set[frozenset[str]] = set()

        def enter(node_id: str, path: list[str], stack: list) -> None:
            visited.add(node_id)
            rec_stack.add(node_id)
            path.append(node_id)
            stack.append((node_id, iter(self._adjacency_list.get(node_id, []))))

        # Triggers first so cycles are described from the entry point
        roots = sorted(node.id for node in self.document.trigger_nodes())
        for root in roots + self._sorted_node_ids:
            if root in visited:
                continue

            path: list[str] = []
            stack: list[tuple[str, Iterator[str]]] = []
            enter(root, path, stack)

            while stack:
                node_id, neighbors = stack[-1]
                for neighbor in neighbors:
                    if neighbor not in visited:
                        enter(neighbor, path, stack)
                        break
                    if neighbor in rec_stack:
                        cycle = path[path.index(neighbor):]
                        key = frozenset(cycle)
                        if key not in reported:
                            reported.add(key)
                            result.add_error(
                                code="CYCLE_DETECTED",
                                message=f"Workflow contains a cycle through nodes: {cycle}",
                                node_ids=cycle,
                            )
                else:
                    stack.pop()
                    path.pop()
                    rec_stack.remove(node_id)

    def _check_self_loops(self, result: ValidationResult) -> None:
        """No edge may connect a node to itself."""
        for edge in sorted(self.document.edges, key=lambda e: e.label):
            if edge.source_node_id == edge.target_node_id:
                result.add_error(
                    code="SELF_LOOP",
                    message=f"Node '{edge.source_node_id}' has an edge to itself",
                    node_ids=[edge.source_node_id],
                    edge_ids=[edge.label],
                )

    def _check_conditions(self, result: ValidationResult) -> None:
        """Decision conditions must parse."""
        for node_id in self._sorted_node_ids:
            node = self._node_map[node_id]
            if node.type != NodeType.DECISION:
                continue
            try:
                validate_expression(node.config.condition_expression)
            except ExpressionError as e:
                result.add_error(
                    code="INVALID_CONDITION",
                    message=f"Decision node '{node_id}': {e}",
                    node_ids=[node_id],
                    expression=node.config.condition_expression,
                )

    def _check_decision_branches(self, result: ValidationResult) -> None:
        """Unattached decision branches end the flow; flag the unmarked ones."""
        for node_id in self._sorted_node_ids:
            node = self._node_map[node_id]
            if node.type != NodeType.DECISION:
                continue
            for port in DECISION_PORTS:
                if self.document.outgoing_edges(node_id, port):
                    continue
                if port in node.config.terminal_branches:
                    continue
                report = result.add_error if self.strict_decision_branches else result.add_warning
                report(
                    code="UNATTACHED_BRANCH",
                    message=(
                        f"Decision node '{node_id}' has no edge on port '{port}'; "
                        "the run completes when this branch is taken"
                    ),
                    node_ids=[node_id],
                    port=port,
                )


def validate(document: GraphDocument, strict_decision_branches: bool = False) -> ValidationResult:
    """Validate a graph document."""
    return GraphValidator(document, strict_decision_branches).validate()
