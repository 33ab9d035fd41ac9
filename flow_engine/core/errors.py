"""
Exception taxonomy for the workflow engine.

Structural and validation errors are raised synchronously to callers.
Runtime execution failures are never raised; they are recorded on the Run.
"""

from typing import TYPE_CHECKING, Any, Optional
from uuid import UUID

if TYPE_CHECKING:
    from flow_engine.core.validator import ValidationResult


class FlowEngineError(Exception):
    """Base class for all engine errors."""


class MalformedDocument(FlowEngineError):
    """Raised when a serialized graph document cannot be constructed."""

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        self.errors = errors or []
        super().__init__(message)


class ValidationFailure(FlowEngineError):
    """Raised when an operation requires a valid document and validation failed."""

    def __init__(self, result: "ValidationResult"):
        self.result = result
        codes = sorted({error.code for error in result.errors})
        super().__init__(f"Graph validation failed: {codes}")


class DocumentNotFound(FlowEngineError):
    """Raised when a graph document does not exist."""

    def __init__(self, document_id: UUID):
        self.document_id = document_id
        super().__init__(f"Graph document not found: {document_id}")


class NoMatchingGraph(FlowEngineError):
    """Raised when no active document has a Trigger for the given event kind."""

    def __init__(self, event_kind: str, document_id: Optional[UUID] = None):
        self.event_kind = event_kind
        self.document_id = document_id
        target = f"document {document_id}" if document_id else "any active document"
        super().__init__(f"No trigger for event '{event_kind}' in {target}")


class RunNotFound(FlowEngineError):
    """Raised when a run does not exist."""

    def __init__(self, run_id: UUID):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class LeaseUnavailable(FlowEngineError):
    """Raised when the exclusive lease on a run cannot be acquired in time."""

    def __init__(self, run_id: UUID, timeout: float):
        self.run_id = run_id
        self.timeout = timeout
        super().__init__(f"Could not acquire lease for run {run_id} within {timeout}s")


class DocumentInUse(FlowEngineError):
    """Raised when deleting a document that is active or has runs."""

    def __init__(self, document_id: UUID, reason: str):
        self.document_id = document_id
        self.reason = reason
        super().__init__(f"Graph document {document_id} cannot be deleted: {reason}")
