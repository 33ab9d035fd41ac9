"""
Unit tests for node handlers.
"""

import pytest

from flow_engine.core.models import (
    BusinessConfig,
    DecisionConfig,
    DelayConfig,
    NodeType,
    TriggerConfig,
)
from flow_engine.expressions import ExpressionError
from flow_engine.handlers import (
    HANDLERS,
    BusinessHandler,
    DecisionHandler,
    DelayHandler,
    TriggerHandler,
    get_handler,
)


class TestHandlerRegistry:
    """Tests for handler dispatch."""

    def test_every_node_type_has_a_handler(self):
        assert set(HANDLERS) == set(NodeType)

    @pytest.mark.parametrize(
        "node_type,handler_cls",
        [
            (NodeType.TRIGGER, TriggerHandler),
            (NodeType.DELAY, DelayHandler),
            (NodeType.DECISION, DecisionHandler),
            (NodeType.BUSINESS, BusinessHandler),
        ],
    )
    def test_get_handler(self, node_type, handler_cls):
        assert isinstance(get_handler(node_type), handler_cls)


class TestTriggerHandler:
    def test_selects_default_port(self):
        result = TriggerHandler().handle(TriggerConfig(event_kind="signup"), {})

        assert result.next_port_id == "out"
        assert result.variable_updates == {}
        assert not result.suspends


class TestDelayHandler:
    """Tests for the delay handler."""

    def test_requests_pause(self):
        result = DelayHandler().handle(DelayConfig(duration_seconds=300), {"x": 1})

        assert result.delay_seconds == 300
        assert result.next_port_id == "out"
        assert result.suspends
        assert result.variable_updates == {}

    def test_zero_duration_does_not_suspend(self):
        result = DelayHandler().handle(DelayConfig(duration_seconds=0), {})

        assert result.delay_seconds == 0
        assert not result.suspends


class TestDecisionHandler:
    """Tests for the decision handler."""

    def test_truthy_selects_yes(self):
        config = DecisionConfig(condition_expression="age >= 18")

        assert DecisionHandler().handle(config, {"age": 40}).next_port_id == "yes"

    def test_falsy_selects_no(self):
        config = DecisionConfig(condition_expression="age >= 18")

        assert DecisionHandler().handle(config, {"age": 10}).next_port_id == "no"

    def test_evaluation_error_propagates(self):
        config = DecisionConfig(condition_expression="age >= 18")

        with pytest.raises(ExpressionError):
            DecisionHandler().handle(config, {})

    def test_does_not_touch_variables(self):
        variables = {"age": 40}
        config = DecisionConfig(condition_expression="age >= 18")

        result = DecisionHandler().handle(config, variables)

        assert result.variable_updates == {}
        assert variables == {"age": 40}


class TestBusinessHandler:
    """Tests for the business handler."""

    def test_declares_action(self):
        config = BusinessConfig(action_kind="sendSms", action_parameters={"template": "t1"})

        result = BusinessHandler().handle(config, {"phone": "555"})

        assert result.suspends
        assert result.action.action_kind == "sendSms"
        assert result.action.action_parameters == {"template": "t1"}
        assert result.delay_seconds is None

    def test_parameters_are_copied(self):
        config = BusinessConfig(action_kind="sendSms", action_parameters={"template": "t1"})

        result = BusinessHandler().handle(config, {})
        result.action.action_parameters["template"] = "changed"

        assert config.action_parameters == {"template": "t1"}
