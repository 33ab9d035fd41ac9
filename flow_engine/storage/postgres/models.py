"""
SQLAlchemy models for PostgreSQL persistence.

Implements durable storage for graph documents and runs.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
    }


class GraphDocumentModel(Base):
    """
    Stores graph documents.

    Nodes and edges live together in ``configuration`` in the editor's wire
    format. Published versions are never updated in place; edits insert a
    new row pointing back through ``parent_id``.
    """

    __tablename__ = "graph_documents"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", index=True)
    parent_id: Mapped[Optional[UUID]] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("graph_documents.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_template: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edge_type: Mapped[str] = mapped_column(String(50), nullable=False, default="default")

    # Denormalized from the trigger node for event routing
    event_kind: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    configuration: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_graph_documents_status_event_kind", "status", "event_kind"),
    )


class RunModel(Base):
    """
    Stores run state.

    The whole run is rewritten on every engine step.
    """

    __tablename__ = "workflow_runs"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    document_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("graph_documents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    document_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    event_kind: Mapped[str] = mapped_column(String(255), nullable=False)

    # State
    current_node_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="RUNNING", index=True)

    variables: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)

    resume_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    action_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_workflow_runs_status_resume_at", "status", "resume_at"),
        Index("ix_workflow_runs_created_at", "created_at"),
    )
