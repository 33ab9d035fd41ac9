"""
Repository layer for document and run data access.

Provides high-level data access methods with proper transaction handling.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import and_, delete, exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from flow_engine.core.models import DocumentStatus, GraphDocument, Run
from flow_engine.core.state_machine import RunStatus
from flow_engine.storage.postgres.models import GraphDocumentModel, RunModel


class WorkflowRepository:
    """
    Repository for graph documents and runs.

    All methods operate within the provided session's transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== Graph Document Operations ====================

    async def upsert_document(self, document: GraphDocument) -> GraphDocumentModel:
        """Insert a document or replace the stored row with the same id."""
        model = await self.session.merge(self.document_to_model(document))
        await self.session.flush()
        return model

    async def get_document(self, document_id: UUID) -> Optional[GraphDocumentModel]:
        """Get graph document by ID."""
        result = await self.session.execute(
            select(GraphDocumentModel)
            .where(GraphDocumentModel.id == document_id)
        )
        return result.scalar_one_or_none()

    async def list_documents(
        self,
        status: Optional[DocumentStatus] = None,
    ) -> list[GraphDocumentModel]:
        """List graph documents, oldest first."""
        query = select(GraphDocumentModel)
        if status is not None:
            query = query.where(GraphDocumentModel.status == status.value)
        result = await self.session.execute(
            query.order_by(GraphDocumentModel.created_at, GraphDocumentModel.id)
        )
        return list(result.scalars().all())

    async def get_active_documents_by_event(self, event_kind: str) -> list[GraphDocumentModel]:
        """Active documents whose trigger listens for the event."""
        result = await self.session.execute(
            select(GraphDocumentModel)
            .where(
                and_(
                    GraphDocumentModel.status == DocumentStatus.ACTIVE.value,
                    GraphDocumentModel.event_kind == event_kind,
                )
            )
            .order_by(GraphDocumentModel.created_at, GraphDocumentModel.id)
        )
        return list(result.scalars().all())

    async def delete_document(self, document_id: UUID) -> bool:
        """Delete a document row; child versions are unlinked by the foreign key."""
        result = await self.session.execute(
            delete(GraphDocumentModel).where(GraphDocumentModel.id == document_id)
        )
        return result.rowcount > 0

    # ==================== Run Operations ====================

    async def create_run(self, run: Run) -> RunModel:
        """Create a new run."""
        model = RunModel(id=run.id, **self._run_values(run))
        self.session.add(model)
        await self.session.flush()
        return model

    async def get_run(self, run_id: UUID) -> Optional[RunModel]:
        """Get run by ID."""
        result = await self.session.execute(
            select(RunModel)
            .where(RunModel.id == run_id)
        )
        return result.scalar_one_or_none()

    async def replace_run(self, run: Run) -> bool:
        """
        Overwrite every column of a run.

        Returns:
            True if a row was updated
        """
        result = await self.session.execute(
            update(RunModel)
            .where(RunModel.id == run.id)
            .values(**self._run_values(run))
        )
        return result.rowcount > 0

    async def get_runs_waiting_on_timer(self, before: datetime) -> list[RunModel]:
        """Runs parked at a delay whose resume time has passed."""
        result = await self.session.execute(
            select(RunModel)
            .where(
                and_(
                    RunModel.status == RunStatus.WAITING_ON_TIMER.value,
                    RunModel.resume_at <= before,
                )
            )
            .order_by(RunModel.resume_at)
        )
        return list(result.scalars().all())

    async def document_has_runs(self, document_id: UUID) -> bool:
        result = await self.session.execute(
            select(exists().where(RunModel.document_id == document_id))
        )
        return bool(result.scalar())

    async def get_runs_by_status(self, status: RunStatus) -> list[RunModel]:
        """Runs in a given status, oldest first."""
        result = await self.session.execute(
            select(RunModel)
            .where(RunModel.status == status.value)
            .order_by(RunModel.created_at)
        )
        return list(result.scalars().all())

    # ==================== Helper Methods ====================

    def document_to_model(self, document: GraphDocument) -> GraphDocumentModel:
        """Convert domain model to database model."""
        wire = document.to_wire()
        return GraphDocumentModel(
            id=document.id,
            name=document.name,
            description=document.description,
            version=document.version,
            status=document.status.value,
            parent_id=document.parent_id,
            is_template=document.is_template,
            edge_type=document.edge_type.value,
            event_kind=document.event_kind,
            configuration={"nodes": wire["nodes"], "edges": wire["edges"]},
            created_at=document.created_at,
            updated_at=document.updated_at,
            published_at=document.published_at,
        )

    def model_to_document(self, model: GraphDocumentModel) -> GraphDocument:
        """Convert database model to domain model."""
        return GraphDocument.model_validate(
            {
                "id": model.id,
                "name": model.name,
                "description": model.description,
                "version": model.version,
                "status": model.status,
                "parent_id": model.parent_id,
                "is_template": model.is_template,
                "edge_type": model.edge_type,
                "configuration": model.configuration,
                "created_at": model.created_at,
                "updated_at": model.updated_at,
                "published_at": model.published_at,
            }
        )

    def _run_values(self, run: Run) -> dict[str, Any]:
        data = run.model_dump(mode="json", include={"variables", "history"})
        return {
            "document_id": run.document_id,
            "document_version": run.document_version,
            "event_kind": run.event_kind,
            "current_node_id": run.current_node_id,
            "status": run.status.value,
            "variables": data["variables"],
            "history": data["history"],
            "resume_at": run.resume_at,
            "action_attempts": run.action_attempts,
            "error_message": run.error_message,
            "created_at": run.created_at,
            "updated_at": run.updated_at,
            "completed_at": run.completed_at,
        }

    def model_to_run(self, model: RunModel) -> Run:
        """Convert database model to domain model."""
        return Run(
            id=model.id,
            document_id=model.document_id,
            document_version=model.document_version,
            event_kind=model.event_kind,
            current_node_id=model.current_node_id,
            status=RunStatus(model.status),
            variables=model.variables or {},
            history=model.history or [],
            resume_at=model.resume_at,
            action_attempts=model.action_attempts,
            error_message=model.error_message,
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
        )
