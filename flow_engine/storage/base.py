"""
Storage contracts for graph documents and runs.

Stores persist whole records (full replace, never partial patches) and do
not serialize access; the engine does that with per-run leases.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from flow_engine.core.models import DocumentStatus, GraphDocument, Run
from flow_engine.core.state_machine import RunStatus


class RunStore(ABC):
    """Durable, queryable storage of run state keyed by run id."""

    @abstractmethod
    async def create(self, run: Run) -> None:
        """Persist a new run."""

    @abstractmethod
    async def load(self, run_id: UUID) -> Optional[Run]:
        """Load a run, or None if it does not exist."""

    @abstractmethod
    async def save(self, run: Run) -> None:
        """Replace the stored run with the given complete record."""

    @abstractmethod
    async def list_waiting(self, before: datetime) -> list[Run]:
        """Runs waiting on a timer whose resume time is at or before ``before``."""

    @abstractmethod
    async def list_by_status(self, status: RunStatus) -> list[Run]:
        """Runs currently in the given status."""

    @abstractmethod
    async def has_runs(self, document_id: UUID) -> bool:
        """Whether any run, finished or not, executed the given document."""


class DocumentStore(ABC):
    """Storage of graph documents keyed by document id."""

    @abstractmethod
    async def save(self, document: GraphDocument) -> None:
        """Insert or replace a document."""

    @abstractmethod
    async def load(self, document_id: UUID) -> Optional[GraphDocument]:
        """Load a document, or None if it does not exist."""

    @abstractmethod
    async def list_documents(
        self,
        status: Optional[DocumentStatus] = None,
    ) -> list[GraphDocument]:
        """All documents, optionally filtered by status, oldest first."""

    @abstractmethod
    async def delete(self, document_id: UUID) -> bool:
        """
        Remove a document. Returns False if it did not exist.

        Documents whose ``parent_id`` pointed at it keep a null parent.
        """

    @abstractmethod
    async def find_active_by_event(self, event_kind: str) -> list[GraphDocument]:
        """Active documents whose Trigger listens for ``event_kind``."""
