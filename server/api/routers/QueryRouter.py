"""Query router: resolve the grounding context for a question."""

from fastapi import APIRouter, Depends, Request

from server.models.requests import ContextQueryRequest
from server.models.responses import ContextQueryResponse
from services.context_rag.ContextResolver import FALLBACK_RESPONSE
from shared.dependencies.auth import verify_api_key

query_router = APIRouter()


@query_router.post(
    "/query/context",
    dependencies=[Depends(verify_api_key)],
    response_model=ContextQueryResponse,
    tags=["Query"],
)
async def handle_context_query(request: Request, body: ContextQueryRequest) -> ContextQueryResponse:
    """Resolve the prompt block for a question.

    Only documents of the global scope, the asking user's guild and the
    asking user are ever considered. Without any context the response holds
    the fallback answer, and the caller must reply with it instead of asking
    the model.

    Args:
        request (Request): The incoming FastAPI request (carries app state).
        body (ContextQueryRequest): The question and the asking identity.

    Returns:
        ContextQueryResponse: The prompt block or the fallback answer.
    """
    request.app.state.logging.info(
        "Context query received: user_id=%s guild_id=%s mode=%s question=%r",
        body.user_id, body.guild_id, body.mode, body.question[:80],
    )

    resolver = request.app.state.resolver
    if body.mode == "direct":
        context = await resolver.resolve_context_for_ask(body.user_id, body.guild_id)
    else:
        context = await resolver.resolve_relevant_context_for_ask(body.question, body.user_id, body.guild_id)

    if not context:
        return ContextQueryResponse(context="", has_context=False, fallback_response=FALLBACK_RESPONSE)
    return ContextQueryResponse(context=context, has_context=True)
