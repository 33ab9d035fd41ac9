"""PostgreSQL implementations of the document and run stores."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from flow_engine.core.models import DocumentStatus, GraphDocument, Run
from flow_engine.core.state_machine import RunStatus
from flow_engine.storage.base import DocumentStore, RunStore
from flow_engine.storage.postgres.database import Database
from flow_engine.storage.postgres.repository import WorkflowRepository


class PostgresRunStore(RunStore):
    """Run store with one short transaction per call."""

    def __init__(self, database: Database):
        self.database = database

    async def create(self, run: Run) -> None:
        async with self.database.session() as session:
            await WorkflowRepository(session).create_run(run)

    async def load(self, run_id: UUID) -> Optional[Run]:
        async with self.database.session() as session:
            repo = WorkflowRepository(session)
            model = await repo.get_run(run_id)
            return repo.model_to_run(model) if model else None

    async def save(self, run: Run) -> None:
        async with self.database.session() as session:
            if not await WorkflowRepository(session).replace_run(run):
                raise KeyError(f"Run not found: {run.id}")

    async def list_waiting(self, before: datetime) -> list[Run]:
        async with self.database.session() as session:
            repo = WorkflowRepository(session)
            models = await repo.get_runs_waiting_on_timer(before)
            return [repo.model_to_run(model) for model in models]

    async def list_by_status(self, status: RunStatus) -> list[Run]:
        async with self.database.session() as session:
            repo = WorkflowRepository(session)
            models = await repo.get_runs_by_status(status)
            return [repo.model_to_run(model) for model in models]

    async def has_runs(self, document_id: UUID) -> bool:
        async with self.database.session() as session:
            return await WorkflowRepository(session).document_has_runs(document_id)


class PostgresDocumentStore(DocumentStore):
    """Document store with one short transaction per call."""

    def __init__(self, database: Database):
        self.database = database

    async def save(self, document: GraphDocument) -> None:
        async with self.database.session() as session:
            await WorkflowRepository(session).upsert_document(document)

    async def load(self, document_id: UUID) -> Optional[GraphDocument]:
        async with self.database.session() as session:
            repo = WorkflowRepository(session)
            model = await repo.get_document(document_id)
            return repo.model_to_document(model) if model else None

    async def list_documents(
        self,
        status: Optional[DocumentStatus] = None,
    ) -> list[GraphDocument]:
        async with self.database.session() as session:
            repo = WorkflowRepository(session)
            models = await repo.list_documents(status)
            return [repo.model_to_document(model) for model in models]

    async def delete(self, document_id: UUID) -> bool:
        async with self.database.session() as session:
            return await WorkflowRepository(session).delete_document(document_id)

    async def find_active_by_event(self, event_kind: str) -> list[GraphDocument]:
        async with self.database.session() as session:
            repo = WorkflowRepository(session)
            models = await repo.get_active_documents_by_event(event_kind)
            return [repo.model_to_document(model) for model in models]
