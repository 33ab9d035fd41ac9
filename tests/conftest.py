"""
Pytest fixtures and configuration for tests.
"""

from typing import Any

import pytest
import pytest_asyncio

from flow_engine.actions import ActionRegistry
from flow_engine.config import Environment, Settings
from flow_engine.core.clock import ManualClock
from flow_engine.core.models import RetryConfig
from flow_engine.orchestrator import DocumentService, WorkflowEngine
from flow_engine.scheduler import InMemoryTimerService
from flow_engine.storage import InMemoryDocumentStore, InMemoryRunStore, LocalLeaseManager


class RecordingActions(ActionRegistry):
    """Action registry that remembers every invocation."""

    def __init__(self, timeout: float | None = None):
        super().__init__(timeout=timeout)
        self.calls: list[tuple[str, dict[str, Any], dict[str, Any]]] = []

    async def invoke(self, action_kind, action_parameters, run_variables):
        self.calls.append((action_kind, dict(action_parameters), dict(run_variables)))
        return await super().invoke(action_kind, action_parameters, run_variables)

    def kinds_called(self) -> list[str]:
        return [kind for kind, _, _ in self.calls]


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        environment=Environment.TEST,
        debug=True,
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def actions() -> RecordingActions:
    registry = RecordingActions()

    @registry.action("sendReminder")
    async def send_reminder(parameters, variables):
        return {"reminder_sent": True}

    @registry.action("adultFlow")
    async def adult_flow(parameters, variables):
        return {"flow": "adult"}

    @registry.action("minorFlow")
    async def minor_flow(parameters, variables):
        return {"flow": "minor"}

    return registry


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def run_store() -> InMemoryRunStore:
    return InMemoryRunStore()


@pytest.fixture
def documents(document_store, clock) -> DocumentService:
    return DocumentService(document_store, clock=clock)


@pytest.fixture
def timers(clock) -> InMemoryTimerService:
    return InMemoryTimerService(clock=clock)


@pytest_asyncio.fixture
async def engine(documents, run_store, timers, actions, clock):
    """Started engine on in-memory backends with a manual clock."""
    engine = WorkflowEngine(
        documents=documents,
        runs=run_store,
        timers=timers,
        actions=actions,
        leases=LocalLeaseManager(acquire_timeout=5.0),
        clock=clock,
        default_retry=RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0, jitter=False),
    )
    await engine.start()
    yield engine
    await engine.stop()


# ==================== Sample Documents ====================


def trigger(node_id: str = "trigger", event_kind: str = "appointment.booked") -> dict:
    return {"id": node_id, "type": "trigger", "name": "Trigger", "config": {"eventKind": event_kind}}


def delay(node_id: str, seconds: int) -> dict:
    return {"id": node_id, "type": "delay", "name": "Delay", "config": {"durationSeconds": seconds}}


def decision(node_id: str, expression: str, **config) -> dict:
    return {
        "id": node_id,
        "type": "decision",
        "name": "Decision",
        "config": {"conditionExpression": expression, **config},
    }


def business(node_id: str, action_kind: str, **config) -> dict:
    return {
        "id": node_id,
        "type": "business",
        "name": "Business",
        "config": {"actionKind": action_kind, "actionParameters": {}, **config},
    }


def edge(source: str, target: str, port: str | None = None) -> dict:
    data = {"sourceNodeId": source, "targetNodeId": target}
    if port is not None:
        data["sourcePortId"] = port
    return data


def document(nodes: list[dict], edges: list[dict], name: str = "Test workflow") -> dict:
    return {"name": name, "nodes": nodes, "edges": edges}


@pytest.fixture
def reminder_document() -> dict:
    """Trigger -> Delay(5s) -> Business(sendReminder)."""
    return document(
        [trigger(), delay("wait", 5), business("remind", "sendReminder")],
        [edge("trigger", "wait"), edge("wait", "remind")],
        name="Appointment reminder",
    )


@pytest.fixture
def age_document() -> dict:
    """Trigger -> Decision(age >= 18) -> adultFlow | minorFlow."""
    return document(
        [
            trigger(),
            decision("check_age", "age >= 18"),
            business("adult", "adultFlow"),
            business("minor", "minorFlow"),
        ],
        [
            edge("trigger", "check_age"),
            edge("check_age", "adult", "yes"),
            edge("check_age", "minor", "no"),
        ],
        name="Age routing",
    )


@pytest.fixture
def editor_document() -> dict:
    """Document as the editor canvas stores it."""
    return {
        "name": "Editor export",
        "description": "Exported from the canvas",
        "isTemplate": True,
        "configuration": {
            "nodes": [
                {
                    "id": "1",
                    "type": "Trigger Node",
                    "position": {"x": 0, "y": 0},
                    "data": {
                        "name": "Booked",
                        "description": "Appointment booked",
                        "config": {"eventKind": "appointment.booked"},
                    },
                },
                {
                    "id": "2",
                    "type": "Decision",
                    "data": {"name": "VIP?", "config": {"conditionExpression": "vip === true"}},
                },
                {
                    "id": "3",
                    "type": "business",
                    "data": {"name": "Call", "config": {"actionKind": "callPatient"}},
                },
            ],
            "edges": [
                {"id": "e1-2", "source": "1", "target": "2"},
                {"id": "e2-3", "source": "2", "sourceHandle": "yes", "target": "3"},
            ],
        },
    }


async def publish(documents: DocumentService, data: dict):
    """Save and publish a document, asserting it is valid."""
    document_id = await documents.save_draft(data)
    result = await documents.publish(document_id)
    assert result.is_valid, result.to_dict()
    return document_id
