from typing import Literal

from pydantic import BaseModel, Field

from shared.models.context import ScopeKind


class SetContextRequest(BaseModel):
    kind: ScopeKind
    target_id: str | None = None
    source_url: str
    uploaded_by: str
    name: str | None = None
    process: bool = True


class ContextQueryRequest(BaseModel):
    question: str = Field(min_length=1)
    user_id: str
    guild_id: str | None = None
    mode: Literal["relevant", "direct"] = "relevant"
