"""
Graph document lifecycle.

Drafts may be saved in any state; only documents that pass validation are
published (made executable). Published documents are never edited in
place: saving over them creates the next version as a new draft.
"""

import logging
from typing import Any, Optional, Union
from uuid import UUID, uuid4

from flow_engine.core.clock import Clock
from flow_engine.core.errors import (
    DocumentInUse,
    DocumentNotFound,
    NoMatchingGraph,
    ValidationFailure,
)
from flow_engine.core.models import DocumentStatus, GraphDocument, parse_graph_document
from flow_engine.core.validator import ValidationResult, validate
from flow_engine.storage.base import DocumentStore

logger = logging.getLogger(__name__)


class DocumentService:
    """Persistence and publication of graph documents."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Optional[Clock] = None,
        strict_decision_branches: bool = False,
    ):
        self.store = store
        self.clock = clock or Clock()
        self.strict_decision_branches = strict_decision_branches

    def validate(self, document: GraphDocument) -> ValidationResult:
        """Validate a document with this service's settings."""
        return validate(document, self.strict_decision_branches)

    async def save_draft(self, document: Union[GraphDocument, dict[str, Any]]) -> UUID:
        """
        Save a draft without validating it.

        Args:
            document: Document or its serialized form

        Returns:
            ID the draft was stored under. Differs from the given ID when
            the stored document is already published.

        Raises:
            MalformedDocument: If the serialized form cannot be parsed
        """
        if not isinstance(document, GraphDocument):
            document = parse_graph_document(document)

        now = self.clock.now()
        existing = await self.store.load(document.id)

        if existing is not None and existing.status != DocumentStatus.DRAFT:
            draft = existing.new_version(document, now)
            logger.info(
                f"Document {existing.id} is {existing.status.value}; "
                f"saved edits as version {draft.version} ({draft.id})"
            )
        else:
            draft = document.model_copy(
                deep=True,
                update={
                    "status": DocumentStatus.DRAFT,
                    "version": existing.version if existing else document.version,
                    "created_at": existing.created_at if existing else document.created_at,
                    "updated_at": now,
                    "published_at": None,
                },
            )

        await self.store.save(draft)
        return draft.id

    async def load(self, document_id: UUID) -> GraphDocument:
        """
        Load a document.

        Raises:
            DocumentNotFound: If no document has this ID
        """
        document = await self.store.load(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    async def publish(self, document_id: UUID) -> ValidationResult:
        """
        Mark a document executable if it validates.

        Publishing a new version retires the active version it supersedes,
        so an event never starts runs on two versions of the same flow.
        Runs already in flight on the old version are unaffected.

        Returns:
            The validation result; the document is unchanged when invalid
        """
        document = await self.load(document_id)
        result = self.validate(document)

        if not result.is_valid:
            logger.info(
                f"Document {document_id} not published: "
                f"{sorted(result.error_codes())}"
            )
            return result

        if document.status != DocumentStatus.ACTIVE:
            now = self.clock.now()
            document.status = DocumentStatus.ACTIVE
            document.published_at = now
            document.updated_at = now
            await self.store.save(document)
            logger.info(f"Published document {document_id} version {document.version}")

        if document.parent_id is not None:
            parent = await self.store.load(document.parent_id)
            if parent is not None and parent.status == DocumentStatus.ACTIVE:
                await self._set_status(parent, DocumentStatus.INACTIVE)

        return result

    async def deactivate(self, document_id: UUID) -> GraphDocument:
        """Stop a document from starting new runs. Drafts are left as they are."""
        document = await self.load(document_id)
        if document.status == DocumentStatus.ACTIVE:
            document = await self._set_status(document, DocumentStatus.INACTIVE)
        return document

    async def delete(self, document_id: UUID) -> None:
        """
        Delete a draft or inactive document.

        Later versions that point back to it keep their content and lose
        only the link.

        Raises:
            DocumentNotFound: If no document has this ID
            DocumentInUse: If the document is active
        """
        document = await self.load(document_id)
        if document.status == DocumentStatus.ACTIVE:
            raise DocumentInUse(document_id, "it is active; deactivate it first")
        await self.store.delete(document_id)
        logger.info(f"Deleted {document.status.value} document {document_id}")

    async def duplicate(self, document_id: UUID, name: Optional[str] = None) -> UUID:
        """
        Copy a document (typically a template) into a new, independent draft.

        Returns:
            ID of the copy
        """
        source = await self.load(document_id)
        now = self.clock.now()
        copy = source.model_copy(
            deep=True,
            update={
                "id": uuid4(),
                "name": name or f"{source.name} (copy)",
                "version": 1,
                "parent_id": None,
                "status": DocumentStatus.DRAFT,
                "is_template": False,
                "created_at": now,
                "updated_at": now,
                "published_at": None,
            },
        )
        await self.store.save(copy)
        logger.info(f"Duplicated document {document_id} as {copy.id}")
        return copy.id

    async def list_documents(
        self,
        status: Optional[DocumentStatus] = None,
    ) -> list[GraphDocument]:
        return await self.store.list_documents(status)

    async def find_executable(self, event_kind: str) -> list[GraphDocument]:
        """Active documents whose Trigger listens for ``event_kind``."""
        return await self.store.find_active_by_event(event_kind)

    async def require_executable(self, document_id: UUID, event_kind: str) -> GraphDocument:
        """
        Load a document that may start a run for ``event_kind``.

        Raises:
            DocumentNotFound: If no document has this ID
            NoMatchingGraph: If the document is not active or its Trigger
                listens for a different event
            ValidationFailure: If an active document does not validate
        """
        document = await self.load(document_id)
        if not document.is_executable or document.event_kind != event_kind:
            raise NoMatchingGraph(event_kind, document_id)

        result = self.validate(document)
        if not result.is_valid:
            raise ValidationFailure(result)
        return document

    async def _set_status(self, document: GraphDocument, status: DocumentStatus) -> GraphDocument:
        document.status = status
        document.updated_at = self.clock.now()
        await self.store.save(document)
        logger.info(f"Document {document.id} is now {status.value}")
        return document
