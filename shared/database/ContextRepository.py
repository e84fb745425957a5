"""
Persistent metadata of context documents.

Each scope slot holds at most one document: partial unique indexes enforce a
single global document, one document per target user and one per target
guild. Timestamps are stored as ISO-8601 UTC strings.
"""

import uuid

import aiosqlite

from shared.database.ConnectionManager import ConnectionManager
from shared.helper.HelperConfig import HelperConfig
from shared.models.context import ContextDocument, ContextScope, ScopeKind, utcnow

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS context_documents (
        id               TEXT PRIMARY KEY,
        scope            TEXT NOT NULL CHECK (scope IN ('global', 'guild', 'user')),
        target_user_id   TEXT,
        target_guild_id  TEXT,
        source_url       TEXT NOT NULL,
        name             TEXT,
        uploaded_by      TEXT NOT NULL,
        content_hash     TEXT NOT NULL DEFAULT '',
        is_processed     INTEGER NOT NULL DEFAULT 0,
        chunk_count      INTEGER NOT NULL DEFAULT 0,
        processing_error TEXT,
        usage_count      INTEGER NOT NULL DEFAULT 0,
        last_used        TEXT,
        character_count  INTEGER NOT NULL DEFAULT 0,
        word_count       INTEGER NOT NULL DEFAULT 0,
        uploaded_at      TEXT NOT NULL,
        last_modified    TEXT NOT NULL,
        last_processed   TEXT,
        CHECK (
            (scope = 'global' AND target_user_id IS NULL AND target_guild_id IS NULL)
            OR (scope = 'user' AND target_user_id IS NOT NULL AND target_guild_id IS NULL)
            OR (scope = 'guild' AND target_guild_id IS NOT NULL AND target_user_id IS NULL)
        )
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_context_global ON context_documents(scope) WHERE scope = 'global'",
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_context_user ON context_documents(target_user_id) WHERE scope = 'user'",
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_context_guild ON context_documents(target_guild_id) WHERE scope = 'guild'",
    "CREATE INDEX IF NOT EXISTS idx_context_processed ON context_documents(is_processed)",
]

_COLUMNS = (
    "id, scope, target_user_id, target_guild_id, source_url, name, uploaded_by, "
    "content_hash, is_processed, chunk_count, processing_error, usage_count, last_used, "
    "character_count, word_count, uploaded_at, last_modified, last_processed"
)

_SCOPE_ORDER = "CASE scope WHEN 'global' THEN 0 WHEN 'guild' THEN 1 ELSE 2 END"


def _now() -> str:
    return utcnow().isoformat()


def _scope_clause(scope: ContextScope) -> tuple[str, tuple]:
    if scope.kind == ScopeKind.USER:
        return "scope = ? AND target_user_id = ?", (scope.kind.value, scope.target_id)
    if scope.kind == ScopeKind.GUILD:
        return "scope = ? AND target_guild_id = ?", (scope.kind.value, scope.target_id)
    return "scope = ?", (scope.kind.value,)


def _row_to_document(row: aiosqlite.Row) -> ContextDocument:
    kind = ScopeKind(row["scope"])
    target_id = row["target_user_id"] if kind == ScopeKind.USER else row["target_guild_id"]
    return ContextDocument(
        id=row["id"],
        scope=ContextScope.from_parts(kind, target_id),
        source_url=row["source_url"],
        name=row["name"],
        uploaded_by=row["uploaded_by"],
        content_hash=row["content_hash"],
        is_processed=bool(row["is_processed"]),
        chunk_count=row["chunk_count"],
        processing_error=row["processing_error"],
        usage_count=row["usage_count"],
        last_used=row["last_used"],
        character_count=row["character_count"],
        word_count=row["word_count"],
        uploaded_at=row["uploaded_at"],
        last_modified=row["last_modified"],
        last_processed=row["last_processed"],
    )


class ContextRepository:
    """CRUD for the ``context_documents`` table."""

    def __init__(self, helper_config: HelperConfig, connection_manager: ConnectionManager) -> None:
        self.logging = helper_config.get_logger()
        self._db = connection_manager

    async def initialize(self) -> None:
        """Create the table and its indexes if they do not exist yet."""
        async with self._db.transaction() as conn:
            for statement in _SCHEMA:
                await conn.execute(statement)
        self.logging.debug("Context metadata schema ready")

    ##########################################
    ################ WRITES ##################
    ##########################################

    async def upsert(self, scope: ContextScope, source_url: str, uploaded_by: str, name: str | None = None) -> ContextDocument:
        """Create the document of a scope, or update the one that already exists.

        Updating keeps the processing state; callers decide whether the new
        source needs reprocessing.

        Args:
            scope (ContextScope): The scope slot.
            source_url (str): Source URL of the content.
            uploaded_by (str): Id of the user setting the context.
            name (str | None): Friendly name; an existing name is kept when None.

        Returns:
            ContextDocument: The stored document.
        """
        where, params = _scope_clause(scope)
        now = _now()
        async with self._db.transaction() as conn:
            cursor = await conn.execute(f"SELECT id FROM context_documents WHERE {where}", params)
            row = await cursor.fetchone()
            if row is not None:
                context_id = row["id"]
                await conn.execute(
                    """
                    UPDATE context_documents
                    SET source_url = ?, uploaded_by = ?, name = COALESCE(?, name), last_modified = ?
                    WHERE id = ?
                    """,
                    (source_url, uploaded_by, name, now, context_id),
                )
            else:
                context_id = uuid.uuid4().hex
                await conn.execute(
                    """
                    INSERT INTO context_documents
                        (id, scope, target_user_id, target_guild_id, source_url, name,
                         uploaded_by, uploaded_at, last_modified)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (context_id, scope.kind.value, scope.target_user_id, scope.target_guild_id,
                     source_url, name, uploaded_by, now, now),
                )
        document = await self.get_by_id(context_id)
        if document is None:
            raise RuntimeError(f"Context {context_id} vanished right after its upsert")
        return document

    async def _update(self, context_id: str, assignments: str, params: tuple) -> None:
        async with self._db.transaction() as conn:
            await conn.execute(f"UPDATE context_documents SET {assignments} WHERE id = ?", (*params, context_id))

    async def mark_processed(self, context_id: str, chunk_count: int, content_hash: str, character_count: int, word_count: int) -> None:
        await self._update(
            context_id,
            "is_processed = 1, processing_error = NULL, chunk_count = ?, content_hash = ?, "
            "character_count = ?, word_count = ?, last_processed = ?",
            (chunk_count, content_hash, character_count, word_count, _now()),
        )

    async def mark_failed(self, context_id: str, error: str) -> None:
        await self._update(
            context_id,
            "is_processed = 0, processing_error = ?, last_processed = ?",
            (error, _now()),
        )

    async def reset_processing(self, context_id: str) -> None:
        """Force the next processing run to re-embed."""
        await self._update(context_id, "is_processed = 0, content_hash = ''", ())

    async def clear_chunks(self, context_id: str) -> None:
        await self._update(context_id, "is_processed = 0, chunk_count = 0, content_hash = ''", ())

    async def record_fetch(self, context_id: str, character_count: int, word_count: int) -> None:
        """Store fresh size stats and count the fetch as a use."""
        await self._update(
            context_id,
            "character_count = ?, word_count = ?, usage_count = usage_count + 1, last_used = ?",
            (character_count, word_count, _now()),
        )

    async def increment_usage(self, scope: ContextScope) -> None:
        where, params = _scope_clause(scope)
        async with self._db.transaction() as conn:
            await conn.execute(
                f"UPDATE context_documents SET usage_count = usage_count + 1, last_used = ? WHERE {where}",
                (_now(), *params),
            )

    async def delete(self, context_id: str) -> bool:
        async with self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM context_documents WHERE id = ?", (context_id,))
            return cursor.rowcount > 0

    ##########################################
    ################# READS ##################
    ##########################################

    async def get_by_id(self, context_id: str) -> ContextDocument | None:
        cursor = await self._db.connection.execute(
            f"SELECT {_COLUMNS} FROM context_documents WHERE id = ?", (context_id,)
        )
        row = await cursor.fetchone()
        return _row_to_document(row) if row is not None else None

    async def get_by_scope(self, scope: ContextScope) -> ContextDocument | None:
        where, params = _scope_clause(scope)
        cursor = await self._db.connection.execute(
            f"SELECT {_COLUMNS} FROM context_documents WHERE {where}", params
        )
        row = await cursor.fetchone()
        return _row_to_document(row) if row is not None else None

    async def list_all(self, kind: ScopeKind | None = None) -> list[ContextDocument]:
        """List documents ordered by scope tier, newest upload first within a tier."""
        query = f"SELECT {_COLUMNS} FROM context_documents"
        params: tuple = ()
        if kind is not None:
            query += " WHERE scope = ?"
            params = (kind.value,)
        query += f" ORDER BY {_SCOPE_ORDER}, uploaded_at DESC"
        cursor = await self._db.connection.execute(query, params)
        return [_row_to_document(row) for row in await cursor.fetchall()]

    async def list_unprocessed(self) -> list[ContextDocument]:
        cursor = await self._db.connection.execute(
            f"SELECT {_COLUMNS} FROM context_documents WHERE is_processed = 0 ORDER BY uploaded_at"
        )
        return [_row_to_document(row) for row in await cursor.fetchall()]

    async def count(self, processed: bool | None = None) -> int:
        query = "SELECT COUNT(*) FROM context_documents"
        params: tuple = ()
        if processed is not None:
            query += " WHERE is_processed = ?"
            params = (int(processed),)
        cursor = await self._db.connection.execute(query, params)
        row = await cursor.fetchone()
        return int(row[0])
