"""Context service.

Manages the context document of each scope: setting and removing sources,
serving their text through the content cache and keeping usage statistics.
"""

import asyncio

from services.context_rag.ContextProcessingService import ContextProcessingService, word_count
from shared.cache.ContentCache import ContentCache
from shared.clients.source.DocumentFetcher import DocumentFetcher
from shared.database.ContextRepository import ContextRepository
from shared.helper.HelperConfig import HelperConfig
from shared.models.context import CachedContent, ContextDocument, ContextScope, ScopeKind, utcnow
from shared.models.errors import ValidationError


class ContextService:
    """CRUD and cached content access for scoped context documents."""

    def __init__(
        self,
        helper_config: HelperConfig,
        repository: ContextRepository,
        cache: ContentCache,
        fetcher: DocumentFetcher,
        processing_service: ContextProcessingService,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._repository = repository
        self._cache = cache
        self._fetcher = fetcher
        self._processing = processing_service
        self._background_tasks: set[asyncio.Task] = set()

    ##########################################
    ################# CRUD ###################
    ##########################################

    def is_valid_source_url(self, url: str) -> bool:
        return self._fetcher.is_allowed_url(url)

    async def set_context(self, scope: ContextScope, source_url: str, uploaded_by: str, name: str | None = None) -> ContextDocument:
        """Create or replace the context document of a scope.

        A scope holds at most one document, so setting it again updates the
        existing record. A changed source URL marks the document for
        reprocessing.

        Args:
            scope (ContextScope): The scope slot.
            source_url (str): Raw URL of the document text.
            uploaded_by (str): Id of the user setting the context.
            name (str | None): Optional friendly name.

        Returns:
            ContextDocument: The stored document.

        Raises:
            ValidationError: If the URL is not on the source allow-list.
        """
        if not self.is_valid_source_url(source_url):
            raise ValidationError(f"Source URL is not allowed: {source_url}")

        previous = await self._repository.get_by_scope(scope)
        document = await self._repository.upsert(scope, source_url, uploaded_by, name=name)
        if previous is not None and previous.source_url != source_url:
            await self._repository.reset_processing(document.id)
            document = document.model_copy(update={"is_processed": False, "content_hash": ""})

        await self._cache.invalidate(scope)
        self.logging.info("Context set for %s: %s", scope, source_url)
        return document

    async def remove_context(self, scope: ContextScope) -> bool:
        """Delete the context document of a scope together with its vectors.

        Args:
            scope (ContextScope): The scope slot.

        Returns:
            bool: True if a document was deleted.

        Raises:
            VectorStoreError: If the vectors could not be deleted; the document is kept.
        """
        document = await self._repository.get_by_scope(scope)
        if document is None:
            self.logging.info("No context to remove for %s", scope)
            return False

        await self._processing.delete_context_chunks(document.id)
        deleted = await self._repository.delete(document.id)
        await self._cache.invalidate(scope)
        self.logging.info("Context removed for %s (deleted: %s)", scope, deleted)
        return deleted

    async def get_context(self, scope: ContextScope) -> ContextDocument | None:
        return await self._repository.get_by_scope(scope)

    async def list_contexts(self, kind: ScopeKind | None = None) -> list[ContextDocument]:
        return await self._repository.list_all(kind)

    ##########################################
    ################ CONTENT #################
    ##########################################

    async def get_context_content(self, scope: ContextScope) -> str | None:
        """Return the text of a scope's document, from cache when possible.

        A cache hit counts as a use in the background. On a miss the source is
        fetched, its size stats are stored and the cache is populated.

        Args:
            scope (ContextScope): The scope slot.

        Returns:
            str | None: The text, or None if the scope has no document.

        Raises:
            FetchError: If the source cannot be fetched on a cache miss.
        """
        cached = await self._cache.get(scope)
        if cached is not None:
            self.logging.debug("Context cache hit for %s (%d characters)", scope, cached.character_count)
            self._track(asyncio.create_task(self.update_context_usage(scope)))
            return cached.content

        self.logging.debug("Context cache miss for %s, fetching from source", scope)
        document = await self._repository.get_by_scope(scope)
        if document is None:
            self.logging.debug("No context stored for %s", scope)
            return None

        content = await self._fetcher.fetch(document.source_url)
        characters, words = len(content), word_count(content)
        await self._repository.record_fetch(document.id, characters, words)
        await self._cache.set(
            scope,
            CachedContent(
                content=content,
                character_count=characters,
                word_count=words,
                fetched_at=utcnow().isoformat(),
                source_url=document.source_url,
            ),
        )
        return content

    def _track(self, task: asyncio.Task) -> None:
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def update_context_usage(self, scope: ContextScope) -> None:
        """Count a use of a scope's document. Failures are logged, never raised."""
        try:
            await self._repository.increment_usage(scope)
        except Exception as exc:
            self.logging.error("Failed to update context usage for %s: %s", scope, exc)

    async def wait_for_background_tasks(self) -> None:
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks)

    ##########################################
    ################# CACHE ##################
    ##########################################

    async def get_cache_status(self, scope: ContextScope) -> bool:
        return await self._cache.exists(scope)

    async def clear_all_caches(self) -> int:
        """Drop every cached context text.

        Returns:
            int: Number of cache entries removed.
        """
        count = await self._cache.clear()
        self.logging.info("Cleared %d context caches", count)
        return count
