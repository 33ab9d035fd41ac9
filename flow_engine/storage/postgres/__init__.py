"""PostgreSQL storage layer."""

from flow_engine.storage.postgres.database import Database
from flow_engine.storage.postgres.models import Base, GraphDocumentModel, RunModel
from flow_engine.storage.postgres.repository import WorkflowRepository
from flow_engine.storage.postgres.stores import PostgresDocumentStore, PostgresRunStore

__all__ = [
    "Base",
    "GraphDocumentModel",
    "RunModel",
    "WorkflowRepository",
    "PostgresDocumentStore",
    "PostgresRunStore",
    "Database",
]
