"""Document lifecycle and run execution."""

from flow_engine.orchestrator.documents import DocumentService
from flow_engine.orchestrator.engine import WorkflowEngine

__all__ = ["DocumentService", "WorkflowEngine"]
