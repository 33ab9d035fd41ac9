"""
FastAPI routes for the workflow engine API.

Implements the API endpoints:
- POST /documents - Save a draft
- GET /documents - List documents
- GET /documents/:id - Get a document
- POST /documents/:id/publish - Validate and publish
- POST /documents/:id/deactivate - Stop starting new runs
- POST /documents/:id/duplicate - Copy into a new draft
- DELETE /documents/:id - Delete a draft or inactive document
- POST /runs - Start a run of a document
- POST /events - Start runs for every matching document
- GET /runs/:id - Get run status
- POST /runs/:id/cancel - Cancel a run
- GET /health - Health check
"""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field

from flow_engine import __version__
from flow_engine.core.errors import (
    DocumentInUse,
    DocumentNotFound,
    MalformedDocument,
    NoMatchingGraph,
    RunNotFound,
    ValidationFailure,
)
from flow_engine.core.models import DocumentStatus, GraphDocument
from flow_engine.orchestrator.engine import WorkflowEngine

router = APIRouter(prefix="/v1", tags=["workflows"])


# ==================== Request/Response Models ====================

class DocumentSummary(BaseModel):
    """Document metadata without nodes and edges."""

    id: str
    name: str
    version: int
    status: str
    is_template: bool
    parent_id: Optional[str] = None
    event_kind: Optional[str] = None

    @classmethod
    def from_document(cls, document: GraphDocument) -> "DocumentSummary":
        return cls(
            id=str(document.id),
            name=document.name,
            version=document.version,
            status=document.status.value,
            is_template=document.is_template,
            parent_id=str(document.parent_id) if document.parent_id else None,
            event_kind=document.event_kind,
        )


class PublishResponse(BaseModel):
    """Response for document publication."""

    id: str
    is_valid: bool
    status: str
    errors: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[dict[str, Any]] = Field(default_factory=list)


class DuplicateRequest(BaseModel):
    """Request body for duplicating a document."""

    name: Optional[str] = Field(default=None, max_length=255)


class RunStartRequest(BaseModel):
    """Request body for starting a run."""

    document_id: UUID
    event_kind: str = Field(..., min_length=1)
    variables: dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "document_id": "0b8f5a0e-6d55-4f0e-a0c4-7c6a3f0b9d11",
                "event_kind": "appointment.booked",
                "variables": {"age": 16, "patient": {"name": "Ada"}},
            }
        }


class RunStartResponse(BaseModel):
    """Response for run start."""

    run_id: str
    status: str


class EventRequest(BaseModel):
    """An external event."""

    event_kind: str = Field(..., min_length=1)
    variables: dict[str, Any] = Field(default_factory=dict)


class EventResponse(BaseModel):
    """Runs started for an event."""

    event_kind: str
    run_ids: list[str]


class RunCancelResponse(BaseModel):
    """Response for run cancellation."""

    run_id: str
    status: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    services: dict[str, str]


# ==================== Dependency Injection ====================

async def get_engine(request: Request) -> WorkflowEngine:
    """Get engine from app state."""
    return request.app.state.engine


def _not_found(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


# ==================== Document Routes ====================

@router.post(
    "/documents",
    response_model=DocumentSummary,
    status_code=status.HTTP_201_CREATED,
    summary="Save a draft",
    description="Save a graph document as a draft. Drafts are not validated.",
)
async def save_draft(
    document: dict[str, Any] = Body(...),
    engine: WorkflowEngine = Depends(get_engine),
) -> DocumentSummary:
    try:
        document_id = await engine.documents.save_draft(document)
    except MalformedDocument as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "errors": e.errors},
        )
    return DocumentSummary.from_document(await engine.documents.load(document_id))


@router.get("/documents", response_model=list[DocumentSummary], summary="List documents")
async def list_documents(
    status_filter: Optional[DocumentStatus] = Query(default=None, alias="status"),
    engine: WorkflowEngine = Depends(get_engine),
) -> list[DocumentSummary]:
    documents = await engine.documents.list_documents(status_filter)
    return [DocumentSummary.from_document(document) for document in documents]


@router.get("/documents/{document_id}", summary="Get a document in wire format")
async def get_document(
    document_id: UUID,
    engine: WorkflowEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        document = await engine.documents.load(document_id)
    except DocumentNotFound as e:
        raise _not_found(e)
    return document.to_wire()


@router.post(
    "/documents/{document_id}/publish",
    response_model=PublishResponse,
    summary="Publish a document",
    description="Validate a document and make it executable. Invalid documents stay unchanged.",
)
async def publish_document(
    document_id: UUID,
    engine: WorkflowEngine = Depends(get_engine),
) -> PublishResponse:
    try:
        result = await engine.documents.publish(document_id)
        document = await engine.documents.load(document_id)
    except DocumentNotFound as e:
        raise _not_found(e)

    response = PublishResponse(id=str(document_id), status=document.status.value, **result.to_dict())
    if not result.is_valid:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=response.model_dump(),
        )
    return response


@router.post(
    "/documents/{document_id}/deactivate",
    response_model=DocumentSummary,
    summary="Deactivate a document",
)
async def deactivate_document(
    document_id: UUID,
    engine: WorkflowEngine = Depends(get_engine),
) -> DocumentSummary:
    try:
        document = await engine.documents.deactivate(document_id)
    except DocumentNotFound as e:
        raise _not_found(e)
    return DocumentSummary.from_document(document)


@router.post(
    "/documents/{document_id}/duplicate",
    response_model=DocumentSummary,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate a document",
    description="Copy a document or template into a new draft.",
)
async def duplicate_document(
    document_id: UUID,
    request: Optional[DuplicateRequest] = None,
    engine: WorkflowEngine = Depends(get_engine),
) -> DocumentSummary:
    try:
        copy_id = await engine.documents.duplicate(document_id, request.name if request else None)
    except DocumentNotFound as e:
        raise _not_found(e)
    return DocumentSummary.from_document(await engine.documents.load(copy_id))


@router.delete(
    "/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a document",
    description="Delete a draft or inactive document that has never been run.",
)
async def delete_document(
    document_id: UUID,
    engine: WorkflowEngine = Depends(get_engine),
) -> Response:
    try:
        await engine.delete_document(document_id)
    except DocumentNotFound as e:
        raise _not_found(e)
    except DocumentInUse as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ==================== Run Routes ====================

@router.post(
    "/runs",
    response_model=RunStartResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a run",
)
async def start_run(
    request: RunStartRequest,
    engine: WorkflowEngine = Depends(get_engine),
) -> RunStartResponse:
    try:
        run_id = await engine.start_run(request.document_id, request.event_kind, request.variables)
    except DocumentNotFound as e:
        raise _not_found(e)
    except (NoMatchingGraph, ValidationFailure) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    run = await engine.get_run(run_id)
    return RunStartResponse(run_id=str(run_id), status=run.status.value)


@router.post(
    "/events",
    response_model=EventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Deliver an external event",
    description="Start a run for every active document whose trigger matches the event.",
)
async def deliver_event(
    request: EventRequest,
    engine: WorkflowEngine = Depends(get_engine),
) -> EventResponse:
    run_ids = await engine.handle_event(request.event_kind, request.variables)
    return EventResponse(event_kind=request.event_kind, run_ids=[str(run_id) for run_id in run_ids])


@router.get("/runs/{run_id}", summary="Get run status")
async def get_run(
    run_id: UUID,
    engine: WorkflowEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        run = await engine.get_run(run_id)
    except RunNotFound as e:
        raise _not_found(e)
    return run.model_dump(mode="json")


@router.post("/runs/{run_id}/cancel", response_model=RunCancelResponse, summary="Cancel a run")
async def cancel_run(
    run_id: UUID,
    engine: WorkflowEngine = Depends(get_engine),
) -> RunCancelResponse:
    try:
        run_status = await engine.cancel_run(run_id)
    except RunNotFound as e:
        raise _not_found(e)
    return RunCancelResponse(run_id=str(run_id), status=run_status.value)


# ==================== Health Check Routes ====================

@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the engine and its backing services.",
)
async def health_check(request: Request) -> HealthResponse:
    """Check health of all services."""
    services = {}

    engine = request.app.state.engine
    services["engine"] = "healthy" if engine.is_running else "unhealthy"

    redis_connection = getattr(request.app.state, "redis_connection", None)
    if redis_connection is not None:
        services["redis"] = "healthy" if await redis_connection.health_check() else "unhealthy"

    database = getattr(request.app.state, "database", None)
    if database is not None:
        services["postgres"] = "healthy" if await database.health_check() else "unhealthy"

    # Determine overall status
    unhealthy_count = sum(1 for s in services.values() if s == "unhealthy")
    if unhealthy_count == 0:
        overall_status = "healthy"
    elif unhealthy_count == len(services):
        overall_status = "unhealthy"
    else:
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=__version__,
        services=services,
    )
