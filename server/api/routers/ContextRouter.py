"""Context router: manage scoped context documents and their processing.

Setting a context schedules its processing as a background task so the
response is returned immediately.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from server.models.requests import SetContextRequest
from server.models.responses import CacheClearResponse, ContextItem, ContextListResponse, RemoveContextResponse
from shared.dependencies.auth import verify_api_key
from shared.models.context import ContextDocument, ContextScope, ProcessingResult, ProcessingStats, ScopeKind
from shared.models.errors import ContextNotFoundError, ValidationError, VectorStoreError

context_router = APIRouter(prefix="/contexts", dependencies=[Depends(verify_api_key)], tags=["Contexts"])


def _scope_or_422(kind: ScopeKind, target_id: str | None) -> ContextScope:
    try:
        return ContextScope.from_parts(kind, target_id)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@context_router.post("", response_model=ContextDocument)
async def set_context(request: Request, body: SetContextRequest, background_tasks: BackgroundTasks) -> ContextDocument:
    """Create or replace the context document of a scope.

    Args:
        request (Request): The incoming FastAPI request (carries app state).
        body (SetContextRequest): Scope, source URL and uploader.
        background_tasks (BackgroundTasks): Receives the processing run.

    Returns:
        ContextDocument: The stored document.

    Raises:
        HTTPException: 422 for an invalid scope, 400 for a source URL that is not allowed.
    """
    scope = _scope_or_422(body.kind, body.target_id)
    try:
        document = await request.app.state.context_service.set_context(
            scope, body.source_url, body.uploaded_by, name=body.name
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    if body.process:
        background_tasks.add_task(request.app.state.processing_service.process_context, document.id)
    return document


@context_router.get("", response_model=ContextListResponse)
async def list_contexts(request: Request, kind: ScopeKind | None = None) -> ContextListResponse:
    context_service = request.app.state.context_service
    items = [
        ContextItem(**document.model_dump(), cached=await context_service.get_cache_status(document.scope))
        for document in await context_service.list_contexts(kind)
    ]
    return ContextListResponse(contexts=items, total=len(items))


@context_router.get("/stats", response_model=ProcessingStats)
async def get_stats(request: Request) -> ProcessingStats:
    return await request.app.state.processing_service.get_processing_stats()


@context_router.delete("/cache", response_model=CacheClearResponse)
async def clear_caches(request: Request) -> CacheClearResponse:
    cleared = await request.app.state.context_service.clear_all_caches()
    return CacheClearResponse(cleared=cleared)


@context_router.post("/process-unprocessed", response_model=list[ProcessingResult])
async def process_unprocessed(request: Request) -> list[ProcessingResult]:
    return await request.app.state.processing_service.process_all_unprocessed()


@context_router.post("/{context_id}/process", response_model=ProcessingResult)
async def process_context(request: Request, context_id: str) -> ProcessingResult:
    """Process a context document now, skipping the embedding if its source is unchanged.

    Raises:
        HTTPException: 404 if the context does not exist.
    """
    try:
        return await request.app.state.processing_service.process_context(context_id)
    except ContextNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@context_router.post("/{context_id}/refresh", response_model=ProcessingResult)
async def refresh_context(request: Request, context_id: str) -> ProcessingResult:
    """Re-embed a context document even if its source is unchanged.

    Raises:
        HTTPException: 404 if the context does not exist.
    """
    try:
        return await request.app.state.processing_service.refresh_context(context_id)
    except ContextNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


async def _remove(request: Request, scope: ContextScope) -> RemoveContextResponse:
    try:
        deleted = await request.app.state.context_service.remove_context(scope)
    except VectorStoreError as exc:
        raise HTTPException(status_code=502, detail=f"Removing the stored chunks failed: {exc}")
    return RemoveContextResponse(deleted=deleted)


@context_router.delete("/{kind}", response_model=RemoveContextResponse)
async def remove_global_context(request: Request, kind: ScopeKind) -> RemoveContextResponse:
    return await _remove(request, _scope_or_422(kind, None))


@context_router.delete("/{kind}/{target_id}", response_model=RemoveContextResponse)
async def remove_context(request: Request, kind: ScopeKind, target_id: str) -> RemoveContextResponse:
    """Delete the context document of a guild or user scope together with its chunks.

    Raises:
        HTTPException: 422 for an invalid scope, 502 if the chunks cannot be deleted.
    """
    return await _remove(request, _scope_or_422(kind, target_id))
