"""
In-memory stores.

Records are copied on the way in and on the way out so callers never share
mutable state with the store, the same as with a database.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from flow_engine.core.models import DocumentStatus, GraphDocument, Run
from flow_engine.core.state_machine import RunStatus
from flow_engine.storage.base import DocumentStore, RunStore


class InMemoryRunStore(RunStore):
    """Run store backed by a dict."""

    def __init__(self):
        self._runs: dict[UUID, Run] = {}

    async def create(self, run: Run) -> None:
        if run.id in self._runs:
            raise ValueError(f"Run already exists: {run.id}")
        self._runs[run.id] = run.model_copy(deep=True)

    async def load(self, run_id: UUID) -> Optional[Run]:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def save(self, run: Run) -> None:
        if run.id not in self._runs:
            raise KeyError(f"Run not found: {run.id}")
        self._runs[run.id] = run.model_copy(deep=True)

    async def list_waiting(self, before: datetime) -> list[Run]:
        waiting = [
            run
            for run in self._runs.values()
            if run.status == RunStatus.WAITING_ON_TIMER
            and run.resume_at is not None
            and run.resume_at <= before
        ]
        waiting.sort(key=lambda run: run.resume_at)
        return [run.model_copy(deep=True) for run in waiting]

    async def list_by_status(self, status: RunStatus) -> list[Run]:
        runs = sorted(
            (run for run in self._runs.values() if run.status == status),
            key=lambda run: run.created_at,
        )
        return [run.model_copy(deep=True) for run in runs]

    async def has_runs(self, document_id: UUID) -> bool:
        return any(run.document_id == document_id for run in self._runs.values())

    def __len__(self) -> int:
        return len(self._runs)


class InMemoryDocumentStore(DocumentStore):
    """Document store backed by a dict."""

    def __init__(self):
        self._documents: dict[UUID, GraphDocument] = {}

    async def save(self, document: GraphDocument) -> None:
        self._documents[document.id] = document.model_copy(deep=True)

    async def load(self, document_id: UUID) -> Optional[GraphDocument]:
        document = self._documents.get(document_id)
        return document.model_copy(deep=True) if document else None

    async def list_documents(
        self,
        status: Optional[DocumentStatus] = None,
    ) -> list[GraphDocument]:
        documents = sorted(
            (
                document
                for document in self._documents.values()
                if status is None or document.status == status
            ),
            key=lambda document: (document.created_at, str(document.id)),
        )
        return [document.model_copy(deep=True) for document in documents]

    async def delete(self, document_id: UUID) -> bool:
        if self._documents.pop(document_id, None) is None:
            return False
        for document in self._documents.values():
            if document.parent_id == document_id:
                document.parent_id = None
        return True

    async def find_active_by_event(self, event_kind: str) -> list[GraphDocument]:
        active = await self.list_documents(DocumentStatus.ACTIVE)
        return [document for document in active if document.event_kind == event_kind]
