"""Context processing service.

Fetches a context document's source text, splits it into chunks, embeds the
chunks and stores the resulting vectors, keeping the metadata record in step.
Unchanged content is detected by digest and never re-embedded.
"""

import asyncio
import hashlib
from contextlib import asynccontextmanager
from typing import AsyncIterator

from services.context_rag.ChunkingService import ChunkingService
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import VectorPoint, VectorRecord
from shared.clients.source.DocumentFetcher import DocumentFetcher
from shared.database.ContextRepository import ContextRepository
from shared.helper.HelperConfig import HelperConfig
from shared.models.context import ContextDocument, DocumentChunk, ProcessingResult, ProcessingStats, utcnow
from shared.models.errors import ContextError, ContextNotFoundError, ValidationError


def content_digest(content: str) -> str:
    """Return the SHA-256 hex digest of a document text."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def word_count(content: str) -> int:
    return len(content.split())


class ContextProcessingService:
    """Drives context documents through unprocessed → processing → processed/errored.

    Runs for the same context id are serialised by a per-id lock, so a refresh
    can never interleave with another run's delete and reinsert. Runs for
    different ids proceed concurrently.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        repository: ContextRepository,
        fetcher: DocumentFetcher,
        chunking_service: ChunkingService,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._repository = repository
        self._fetcher = fetcher
        self._chunking = chunking_service
        self._embed_client = embed_client
        self._rag_client = rag_client
        self.process_delay = float(helper_config.get_number_val("CONTEXT_PROCESS_DELAY", default=1.0))
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _context_lock(self, context_id: str) -> AsyncIterator[None]:
        """Hold the lock of one context document.

        A lock lives only while some run holds or waits for it.
        """
        lock = self._locks.setdefault(context_id, asyncio.Lock())
        self._lock_users[context_id] = self._lock_users.get(context_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[context_id] -= 1
            if not self._lock_users[context_id]:
                del self._lock_users[context_id]
                del self._locks[context_id]

    ##########################################
    ############### PROCESSING ###############
    ##########################################

    async def process_context(self, context_id: str) -> ProcessingResult:
        """Build or rebuild the vector index entry of a context document.

        Args:
            context_id (str): Id of the context document.

        Returns:
            ProcessingResult: Outcome of the run. Failures are reported here
                and persisted as the document's processing error.

        Raises:
            ContextNotFoundError: If no document with this id exists.
        """
        async with self._context_lock(context_id):
            return await self._process(context_id)

    async def refresh_context(self, context_id: str) -> ProcessingResult:
        """Re-embed a context document even if its source is unchanged.

        Args:
            context_id (str): Id of the context document.

        Returns:
            ProcessingResult: Outcome of the run.

        Raises:
            ContextNotFoundError: If no document with this id exists.
        """
        async with self._context_lock(context_id):
            if await self._repository.get_by_id(context_id) is None:
                raise ContextNotFoundError(f"Context {context_id} not found")
            await self._repository.reset_processing(context_id)
            self.logging.info("Refreshing context %s", context_id)
            return await self._process(context_id)

    async def delete_context_chunks(self, context_id: str) -> None:
        """Remove every vector of a context document and reset its processing state.

        Args:
            context_id (str): Id of the context document.

        Raises:
            VectorStoreError: If the vector delete fails; metadata is left untouched.
        """
        async with self._context_lock(context_id):
            await self._rag_client.do_delete_by_context(context_id)
            await self._repository.clear_chunks(context_id)
            self.logging.info("Deleted all chunks of context %s", context_id)

    async def _process(self, context_id: str) -> ProcessingResult:
        document = await self._repository.get_by_id(context_id)
        if document is None:
            raise ContextNotFoundError(f"Context {context_id} not found")

        self.logging.info("Processing context %s (%s) from %s", context_id, document.scope, document.source_url)
        try:
            content = await self._fetcher.fetch(document.source_url)
            self._chunking.validate_content(content)

            digest = content_digest(content)
            if document.is_processed and digest == document.content_hash:
                self.logging.info("Context %s unchanged, skipping re-embedding", context_id)
                return ProcessingResult(
                    success=True, context_id=context_id, chunk_count=document.chunk_count, skipped=True
                )

            # also clears leftovers of an earlier run that failed mid-upsert;
            # a failing delete aborts before anything is reinserted
            await self._rag_client.do_delete_by_context(context_id)
            self.logging.debug("Removed previous chunks of context %s", context_id)

            chunks = self._chunking.chunk_document(content, source_url=document.source_url)
            total_tokens = sum(chunk.token_count for chunk in chunks)
            vectors = await self._embed_client.embed_many([chunk.content for chunk in chunks])
            self.logging.info(
                "Embedded %d chunks of context %s (%d tokens, estimated cost %.6f)",
                len(chunks), context_id, total_tokens, self._embed_client.estimate_cost(total_tokens),
            )

            await self._rag_client.do_upsert_points(self._build_records(document, chunks, vectors))
            await self._repository.mark_processed(
                context_id,
                chunk_count=len(chunks),
                content_hash=digest,
                character_count=len(content),
                word_count=word_count(content),
            )
        except ValidationError as exc:
            self.logging.warning("Content of context %s rejected: %s", context_id, exc)
            await self._repository.mark_failed(context_id, str(exc))
            return ProcessingResult(success=False, context_id=context_id, error=str(exc))
        except Exception as exc:
            self.logging.error("Processing context %s failed: %s", context_id, exc)
            await self._repository.mark_failed(context_id, str(exc) or exc.__class__.__name__)
            return ProcessingResult(success=False, context_id=context_id, error=str(exc) or exc.__class__.__name__)

        self.logging.info("Context %s processed: %d chunks stored", context_id, len(chunks))
        return ProcessingResult(success=True, context_id=context_id, chunk_count=len(chunks), total_tokens=total_tokens)

    def _build_records(self, document: ContextDocument, chunks: list[DocumentChunk], vectors: list[list[float]]) -> list[VectorRecord]:
        created_at = utcnow().isoformat()
        return [
            VectorRecord(
                id=VectorRecord.make_id(document.id, chunk.chunk_index),
                vector=vector,
                payload=VectorPoint(
                    context_id=document.id,
                    scope=document.scope.kind,
                    target_user_id=document.scope.target_user_id,
                    target_guild_id=document.scope.target_guild_id,
                    chunk_index=chunk.chunk_index,
                    content=chunk.content,
                    token_count=chunk.token_count,
                    character_count=chunk.character_count,
                    source_url=document.source_url,
                    created_at=created_at,
                ),
            )
            for chunk, vector in zip(chunks, vectors, strict=True)
        ]

    ##########################################
    ################# BATCH ##################
    ##########################################

    async def process_all_unprocessed(self) -> list[ProcessingResult]:
        """Process every document that is not processed yet.

        Documents are handled one after the other with CONTEXT_PROCESS_DELAY
        seconds in between. A failing document never stops the batch.

        Returns:
            list[ProcessingResult]: One result per document.
        """
        documents = await self._repository.list_unprocessed()
        self.logging.info("Processing %d unprocessed contexts...", len(documents))
        results = await self._run_batch(documents, self.process_context)
        self._log_batch_summary("Batch processing", results)
        return results

    async def refresh_all(self) -> list[ProcessingResult]:
        """Re-embed every document, one after the other.

        Returns:
            list[ProcessingResult]: One result per document.
        """
        documents = await self._repository.list_all()
        self.logging.info("Refreshing all %d contexts...", len(documents))
        results = await self._run_batch(documents, self.refresh_context)
        self._log_batch_summary("Refresh", results)
        return results

    async def _run_batch(self, documents: list[ContextDocument], run) -> list[ProcessingResult]:
        results: list[ProcessingResult] = []
        for position, document in enumerate(documents):
            if position > 0 and self.process_delay > 0:
                await asyncio.sleep(self.process_delay)
            try:
                results.append(await run(document.id))
            except ContextNotFoundError as exc:
                # removed while the batch was running
                self.logging.warning("Skipping context %s: %s", document.id, exc)
                results.append(ProcessingResult(success=False, context_id=document.id, error=str(exc)))
        return results

    def _log_batch_summary(self, label: str, results: list[ProcessingResult]) -> None:
        succeeded = sum(1 for r in results if r.success and not r.skipped)
        skipped = sum(1 for r in results if r.skipped)
        failed = sum(1 for r in results if not r.success)
        self.logging.info("%s complete: %d processed, %d unchanged, %d failed.", label, succeeded, skipped, failed)

    ##########################################
    ############## DIAGNOSTICS ###############
    ##########################################

    async def detect_content_change(self, context_id: str) -> bool:
        """Check whether the source text differs from the last processed text.

        Args:
            context_id (str): Id of the context document.

        Returns:
            bool: True if the content changed. False when it did not, or when
                the document is unknown or its source cannot be fetched.
        """
        document = await self._repository.get_by_id(context_id)
        if document is None:
            return False
        try:
            content = await self._fetcher.fetch(document.source_url)
        except ContextError as exc:
            self.logging.warning("Change detection for context %s failed: %s", context_id, exc)
            return False
        return content_digest(content) != document.content_hash

    async def get_processing_stats(self) -> ProcessingStats:
        total = await self._repository.count()
        processed = await self._repository.count(processed=True)
        return ProcessingStats(
            total_contexts=total,
            processed_contexts=processed,
            unprocessed_contexts=total - processed,
            total_chunks=await self._rag_client.do_count_all(),
        )
