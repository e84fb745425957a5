from pydantic import BaseModel

from shared.models.context import ContextDocument


class ContextItem(ContextDocument):
    cached: bool = False


class ContextListResponse(BaseModel):
    contexts: list[ContextItem]
    total: int


class RemoveContextResponse(BaseModel):
    deleted: bool


class CacheClearResponse(BaseModel):
    cleared: int


class ContextQueryResponse(BaseModel):
    context: str
    has_context: bool
    # set when there is no context; the caller answers with it instead of asking the model
    fallback_response: str | None = None
