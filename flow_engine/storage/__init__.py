"""Storage layer for documents, runs and per-run leases."""

from flow_engine.storage.base import DocumentStore, RunStore
from flow_engine.storage.leases import LocalLeaseManager, RunLeaseManager
from flow_engine.storage.memory import InMemoryDocumentStore, InMemoryRunStore

__all__ = [
    "DocumentStore",
    "RunStore",
    "LocalLeaseManager",
    "RunLeaseManager",
    "InMemoryDocumentStore",
    "InMemoryRunStore",
]
