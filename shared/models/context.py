"""Domain models for scoped context documents, their chunks and search hits."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ScopeKind(str, Enum):
    """Access tier of a context document."""

    GLOBAL = "global"
    GUILD = "guild"
    USER = "user"


# user-scoped hits always outrank guild-scoped hits, which always outrank global ones
SCOPE_WEIGHTS: dict[ScopeKind, int] = {
    ScopeKind.USER: 3,
    ScopeKind.GUILD: 2,
    ScopeKind.GLOBAL: 1,
}


class ContextScope(BaseModel):
    """Closed scope union: Global, Guild(id) or User(id).

    The target id is mandatory for guild and user scopes and forbidden for the
    global scope, so an instance always identifies exactly one document slot.

    Attributes:
        kind:      The scope tier.
        target_id: Discord guild id (guild scope) or user id (user scope).
    """

    model_config = ConfigDict(frozen=True)

    kind: ScopeKind
    target_id: str | None = None

    @model_validator(mode="after")
    def _check_target(self) -> "ContextScope":
        if self.kind == ScopeKind.GLOBAL and self.target_id is not None:
            raise ValueError("Global scope does not take a target id.")
        if self.kind != ScopeKind.GLOBAL and not self.target_id:
            raise ValueError(f"{self.kind.value.capitalize()} scope requires a target id.")
        return self

    @classmethod
    def global_scope(cls) -> "ContextScope":
        return cls(kind=ScopeKind.GLOBAL)

    @classmethod
    def guild(cls, guild_id: str | int) -> "ContextScope":
        return cls(kind=ScopeKind.GUILD, target_id=str(guild_id))

    @classmethod
    def user(cls, user_id: str | int) -> "ContextScope":
        return cls(kind=ScopeKind.USER, target_id=str(user_id))

    @classmethod
    def from_parts(cls, kind: ScopeKind | str, target_id: str | None = None) -> "ContextScope":
        """Build a scope from the loose (kind, target) pair used on the wire."""
        kind = ScopeKind(kind)
        return cls(kind=kind, target_id=None if kind == ScopeKind.GLOBAL else target_id)

    @property
    def target_user_id(self) -> str | None:
        return self.target_id if self.kind == ScopeKind.USER else None

    @property
    def target_guild_id(self) -> str | None:
        return self.target_id if self.kind == ScopeKind.GUILD else None

    @property
    def cache_key(self) -> str:
        """Cache key of the scope: context:{scope} or context:{scope}:{targetId}."""
        if self.target_id is None:
            return f"context:{self.kind.value}"
        return f"context:{self.kind.value}:{self.target_id}"

    @property
    def weight(self) -> int:
        return SCOPE_WEIGHTS[self.kind]

    def __str__(self) -> str:
        return self.cache_key.removeprefix("context:")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContextDocument(BaseModel):
    """Metadata record of a context document, at most one per scope.

    Attributes:
        id:               Opaque identifier.
        scope:            The scope slot this document occupies.
        source_url:       Allow-listed raw URL the content is fetched from.
        name:             Optional friendly name.
        uploaded_by:      User id of whoever set the context.
        content_hash:     SHA-256 of the last successfully processed text, "" if none.
        is_processed:     True once the vector index matches content_hash.
        chunk_count:      Number of vector records written for this document.
        processing_error: Message of the last failed processing run.
        usage_count:      Number of times the content was served.
        last_used:        When the content was last served.
        character_count:  Size of the last fetched text in characters.
        word_count:       Size of the last fetched text in words.
    """

    id: str
    scope: ContextScope
    source_url: str
    name: str | None = None
    uploaded_by: str
    content_hash: str = ""
    is_processed: bool = False
    chunk_count: int = 0
    processing_error: str | None = None
    usage_count: int = 0
    last_used: datetime | None = None
    character_count: int = 0
    word_count: int = 0
    uploaded_at: datetime = Field(default_factory=utcnow)
    last_modified: datetime = Field(default_factory=utcnow)
    last_processed: datetime | None = None


class DocumentChunk(BaseModel):
    """A token-bounded slice of a source document prepared for embedding.

    Attributes:
        chunk_index:        Zero-based position of the chunk in the document.
        content:            Chunk text, prefixed with any injected headers.
        token_count:        Tokens in content.
        character_count:    Characters in content.
        headers:            Markdown headers open at the end of the chunk, outermost first.
        injected_headers:   Headers prepended because they were not present in the chunk body.
        overlap_line_count: Leading body lines repeated from the previous chunk.
        start_line:         First source line of the body (0-based).
        end_line:           Source line after the last body line.
    """

    chunk_index: int
    content: str
    token_count: int
    character_count: int
    headers: list[str] = []
    injected_headers: list[str] = []
    overlap_line_count: int = 0
    start_line: int = 0
    end_line: int = 0


class CachedContent(BaseModel):
    """Fetched document text held by the content cache."""

    content: str
    character_count: int
    word_count: int
    fetched_at: str
    source_url: str


class SearchResult(BaseModel):
    """A single chunk returned by a scoped similarity search."""

    content: str
    score: float
    scope: ScopeKind
    chunk_index: int
    source_url: str
    context_id: str

    @property
    def priority(self) -> float:
        return SCOPE_WEIGHTS[self.scope] * 1000 + self.score


class ProcessingResult(BaseModel):
    """Outcome of one processing run for a context document."""

    success: bool
    context_id: str
    chunk_count: int | None = None
    total_tokens: int | None = None
    skipped: bool = False
    error: str | None = None


class ProcessingStats(BaseModel):
    total_contexts: int
    processed_contexts: int
    unprocessed_contexts: int
    total_chunks: int
