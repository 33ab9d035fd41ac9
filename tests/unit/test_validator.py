"""
Unit tests for graph validation.
"""

import random

import pytest

from conftest import business, decision, delay, document, edge, trigger
from flow_engine.core.models import parse_graph_document
from flow_engine.core.validator import GraphValidator, ValidationResult, validate


def build(nodes, edges):
    return parse_graph_document(document(nodes, edges))


class TestValidGraphs:
    """Documents that should pass."""

    def test_linear_flow(self, reminder_document):
        result = validate(parse_graph_document(reminder_document))

        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_decision_with_both_branches(self, age_document):
        result = validate(parse_graph_document(age_document))

        assert result.is_valid
        assert result.warnings == []

    def test_single_trigger_only(self):
        result = validate(build([trigger()], []))

        assert result.is_valid

    def test_diamond_is_not_a_cycle(self):
        """Two branches joining the same node form a DAG."""
        doc = build(
            [trigger(), decision("d", "x > 1"), delay("a", 1), delay("b", 2), business("end", "notify")],
            [
                edge("trigger", "d"),
                edge("d", "a", "yes"),
                edge("d", "b", "no"),
                edge("a", "end"),
                edge("b", "end"),
            ],
        )

        assert validate(doc).is_valid


class TestTriggerCount:
    """Exactly one trigger."""

    def test_no_trigger(self):
        result = validate(build([delay("w", 1)], []))

        assert not result.is_valid
        assert result.error_codes() == {"TRIGGER_COUNT"}
        assert result.errors[0].details["trigger_count"] == 0

    def test_two_triggers(self):
        result = validate(build([trigger("a"), trigger("b", "other")], []))

        assert "TRIGGER_COUNT" in result.error_codes()
        error = next(e for e in result.errors if e.code == "TRIGGER_COUNT")
        assert error.node_ids == ["a", "b"]


class TestPortArity:
    """Outgoing edge limits per port."""

    def test_single_port_node_with_two_edges(self):
        doc = build(
            [trigger(), delay("a", 1), delay("b", 1)],
            [edge("trigger", "a"), edge("trigger", "b")],
        )

        result = validate(doc)

        assert result.error_codes() == {"PORT_ARITY"}
        assert result.errors[0].node_ids == ["trigger"]

    def test_decision_port_with_two_edges(self):
        doc = build(
            [trigger(), decision("d", "x"), delay("a", 1), delay("b", 1)],
            [edge("trigger", "d"), edge("d", "a", "yes"), edge("d", "b", "yes")],
        )

        result = validate(doc)

        assert "PORT_ARITY" in result.error_codes()
        assert result.errors[0].details["port"] == "yes"

    def test_decision_unknown_port(self):
        doc = build(
            [trigger(), decision("d", "x"), delay("a", 1)],
            [edge("trigger", "d"), edge("d", "a", "maybe")],
        )

        result = validate(doc)

        assert "INVALID_PORT" in result.error_codes()

    def test_decision_edge_without_port(self):
        doc = build(
            [trigger(), decision("d", "x"), delay("a", 1)],
            [edge("trigger", "d"), edge("d", "a")],
        )

        assert "INVALID_PORT" in validate(doc).error_codes()


class TestReachability:
    """Every node reachable from the trigger."""

    def test_orphan_node(self):
        doc = build(
            [trigger(), delay("w", 1), business("orphan", "notify")],
            [edge("trigger", "w")],
        )

        result = validate(doc)

        assert result.error_codes() == {"UNREACHABLE_NODE"}
        assert result.errors[0].node_ids == ["orphan"]

    def test_one_error_per_unreachable_node(self):
        doc = build(
            [trigger(), delay("x", 1), delay("y", 1)],
            [edge("x", "y")],
        )

        result = validate(doc)

        unreachable = [e.node_ids[0] for e in result.errors if e.code == "UNREACHABLE_NODE"]
        assert unreachable == ["x", "y"]

    def test_not_checked_without_trigger(self):
        result = validate(build([delay("a", 1), delay("b", 1)], []))

        assert "UNREACHABLE_NODE" not in result.error_codes()


class TestCycles:
    """Graphs must be acyclic."""

    def test_two_node_cycle(self):
        doc = build(
            [trigger(), delay("a", 1), delay("b", 1)],
            [edge("trigger", "a"), edge("a", "b"), edge("b", "a")],
        )

        result = validate(doc)

        cycles = [e for e in result.errors if e.code == "CYCLE_DETECTED"]
        assert len(cycles) == 1
        assert set(cycles[0].node_ids) == {"a", "b"}

    def test_cycle_through_decision(self):
        doc = build(
            [trigger(), decision("d", "retry"), delay("w", 60)],
            [edge("trigger", "d"), edge("d", "w", "yes"), edge("w", "d")],
        )

        result = validate(doc)

        assert "CYCLE_DETECTED" in result.error_codes()

    def test_self_loop_reported_separately(self):
        doc = build(
            [trigger(), delay("a", 1)],
            [edge("trigger", "a"), edge("a", "a")],
        )

        result = validate(doc)

        assert "SELF_LOOP" in result.error_codes()
        assert "CYCLE_DETECTED" not in result.error_codes()

    def test_cycle_nodes_listed_from_entry(self):
        doc = build(
            [trigger(), delay("a", 1), delay("b", 1), delay("c", 1)],
            [edge("trigger", "a"), edge("a", "b"), edge("b", "c"), edge("c", "a")],
        )

        cycles = [e for e in validate(doc).errors if e.code == "CYCLE_DETECTED"]

        assert [c.node_ids for c in cycles] == [["a", "b", "c"]]

    def test_long_chain_is_valid(self):
        """Chains far deeper than the interpreter's recursion limit."""
        ids = [f"step{i}" for i in range(1500)]
        nodes = [trigger()] + [delay(node_id, 1) for node_id in ids]
        edges = [edge(a, b) for a, b in zip(["trigger"] + ids, ids)]

        result = validate(build(nodes, edges))

        assert result.is_valid
        assert result.errors == []

    def test_long_cycle_reported_once(self):
        ids = [f"step{i}" for i in range(1500)]
        nodes = [trigger()] + [delay(node_id, 1) for node_id in ids]
        edges = [edge(a, b) for a, b in zip(["trigger"] + ids, ids)]
        edges.append(edge(ids[-1], ids[0]))

        cycles = [e for e in validate(build(nodes, edges)).errors if e.code == "CYCLE_DETECTED"]

        assert len(cycles) == 1
        assert cycles[0].node_ids == ids


class TestConditions:
    """Decision conditions must parse."""

    def test_invalid_syntax(self):
        doc = build(
            [trigger(), decision("d", "age >=")],
            [edge("trigger", "d")],
        )

        result = validate(doc)

        assert "INVALID_CONDITION" in result.error_codes()
        error = next(e for e in result.errors if e.code == "INVALID_CONDITION")
        assert error.details["expression"] == "age >="

    def test_unsupported_construct(self):
        doc = build(
            [trigger(), decision("d", "__import__('os')")],
            [edge("trigger", "d")],
        )

        assert "INVALID_CONDITION" in validate(doc).error_codes()

    def test_unknown_variable_is_not_a_structural_error(self):
        """Variables are only known at run time."""
        doc = build(
            [trigger(), decision("d", "not_yet_set == 1", terminalBranches=["yes", "no"])],
            [edge("trigger", "d")],
        )

        assert validate(doc).is_valid


class TestDecisionBranches:
    """Unattached decision branches."""

    def unattached_no(self, **config):
        return build(
            [trigger(), decision("d", "x", **config), delay("w", 1)],
            [edge("trigger", "d"), edge("d", "w", "yes")],
        )

    def test_warning_by_default(self):
        result = validate(self.unattached_no())

        assert result.is_valid
        assert [w.code for w in result.warnings] == ["UNATTACHED_BRANCH"]
        assert result.warnings[0].details["port"] == "no"

    def test_error_when_strict(self):
        result = validate(self.unattached_no(), strict_decision_branches=True)

        assert not result.is_valid
        assert result.error_codes() == {"UNATTACHED_BRANCH"}

    def test_marked_terminal_branch_is_silent(self):
        result = validate(self.unattached_no(terminalBranches=["no"]), strict_decision_branches=True)

        assert result.is_valid
        assert result.warnings == []


class TestAllErrorsReported:
    """Validation reports every problem, deterministically."""

    def broken(self):
        return document(
            [
                trigger("t1"),
                trigger("t2", "other"),
                decision("d", "x >"),
                delay("a", 1),
                delay("b", 1),
                delay("orphan", 1),
                delay("loop", 1),
            ],
            [
                edge("t1", "d"),
                edge("t1", "a"),
                edge("d", "a", "yes"),
                edge("a", "b"),
                edge("b", "a"),
                edge("loop", "loop"),
            ],
        )

    def test_every_code_reported(self):
        result = validate(parse_graph_document(self.broken()))

        assert result.error_codes() == {
            "TRIGGER_COUNT",
            "PORT_ARITY",
            "UNREACHABLE_NODE",
            "CYCLE_DETECTED",
            "SELF_LOOP",
            "INVALID_CONDITION",
        }

    def test_result_independent_of_input_order(self):
        data = self.broken()
        expected = validate(parse_graph_document(data)).to_dict()

        rng = random.Random(42)
        for _ in range(5):
            shuffled = dict(data)
            shuffled["nodes"] = rng.sample(data["nodes"], len(data["nodes"]))
            shuffled["edges"] = rng.sample(data["edges"], len(data["edges"]))

            assert validate(parse_graph_document(shuffled)).to_dict() == expected

    def test_validator_class_matches_function(self):
        doc = parse_graph_document(self.broken())

        assert GraphValidator(doc).validate().to_dict() == validate(doc).to_dict()


class TestValidationResult:
    """Tests for the result container."""

    def test_warning_keeps_result_valid(self):
        result = ValidationResult()
        result.add_warning("SOMETHING", "heads up", node_ids=["a"])

        assert result.is_valid

    def test_error_invalidates(self):
        result = ValidationResult()
        result.add_error("BAD", "broken", node_ids=["a"], edge_ids=["e1"], extra=1)

        data = result.to_dict()
        assert data["is_valid"] is False
        assert data["errors"] == [
            {
                "code": "BAD",
                "message": "broken",
                "node_ids": ["a"],
                "edge_ids": ["e1"],
                "details": {"extra": 1},
            }
        ]


@pytest.mark.parametrize("expression", ["age >= 18", "vip === true && !blocked", "len(tags) > 0"])
def test_common_conditions_validate(expression):
    doc = build(
        [trigger(), decision("d", expression, terminalBranches=["yes", "no"])],
        [edge("trigger", "d")],
    )

    assert validate(doc).is_valid
