"""VectorPoint model: metadata stored alongside each context chunk in the RAG backend."""

import uuid

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from shared.models.context import ScopeKind


class VectorPoint(BaseModel):
    """Payload stored alongside each chunk vector.

    Field names are serialised in camelCase (contextId, targetUserId, ...),
    which is also how scope filters address them.

    Attributes:
        context_id:      Id of the owning ContextDocument; every point must reference a live document.
        scope:           Scope tier of the owning document.
        target_user_id:  Target user for user-scoped documents, else None.
        target_guild_id: Target guild for guild-scoped documents, else None.
        chunk_index:     Zero-based position of this chunk within the document.
        content:         Chunk text as embedded.
        token_count:     Tokens in content.
        character_count: Characters in content.
        source_url:      URL the document was fetched from.
        created_at:      ISO-8601 timestamp of the write.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    context_id: str
    scope: ScopeKind
    target_user_id: str | None = None
    target_guild_id: str | None = None
    chunk_index: int
    content: str
    token_count: int
    character_count: int
    source_url: str
    created_at: str

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class VectorRecord(BaseModel):
    """A vector plus its payload, addressed by an opaque id."""

    id: str
    vector: list[float]
    payload: VectorPoint

    @staticmethod
    def make_id(context_id: str, chunk_index: int) -> str:
        """Build a deterministic UUID5 point id for a context chunk.

        The same chunk position always maps to the same id, so a retried
        upsert overwrites instead of duplicating.

        Args:
            context_id (str): Id of the owning context document.
            chunk_index (int): Zero-based chunk index within the document.

        Returns:
            str: UUID string usable as a point id.
        """
        return str(uuid.uuid5(uuid.NAMESPACE_OID, f"context:{context_id}:{chunk_index}"))

    def to_point(self) -> dict:
        return {"id": self.id, "vector": self.vector, "payload": self.payload.to_payload()}
