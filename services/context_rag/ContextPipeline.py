"""Wiring of the context retrieval pipeline.

Builds every client and service from the environment, boots the backends and
tears them down again. Used by the API server and the command line runner.
"""

from services.context_rag.ChunkingService import ChunkingService
from services.context_rag.ContextProcessingService import ContextProcessingService
from services.context_rag.ContextResolver import ContextResolver
from services.context_rag.ContextService import ContextService
from shared.cache.ContentCache import ContentCache
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.source.DocumentFetcher import DocumentFetcher
from shared.database.ConnectionManager import ConnectionManager
from shared.database.ContextRepository import ContextRepository
from shared.helper.HelperConfig import HelperConfig


class ContextPipeline:
    """Owns the clients and services of the pipeline for one process."""

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self.db_path = helper_config.get_path_val("METADATA_DB_PATH", default="data/contexts.db")

        self.embed_client = EmbedClientManager(helper_config=helper_config).get_client()
        self.rag_client = RAGClientManager(helper_config=helper_config).get_client()
        self.fetcher = DocumentFetcher(helper_config=helper_config)
        self.connection_manager = ConnectionManager(helper_config=helper_config)
        self.repository = ContextRepository(helper_config=helper_config, connection_manager=self.connection_manager)
        self.cache = ContentCache(helper_config=helper_config)

        self.processing_service = ContextProcessingService(
            helper_config=helper_config,
            repository=self.repository,
            fetcher=self.fetcher,
            chunking_service=ChunkingService(helper_config=helper_config),
            embed_client=self.embed_client,
            rag_client=self.rag_client,
        )
        self.context_service = ContextService(
            helper_config=helper_config,
            repository=self.repository,
            cache=self.cache,
            fetcher=self.fetcher,
            processing_service=self.processing_service,
        )
        self.resolver = ContextResolver(
            helper_config=helper_config,
            context_service=self.context_service,
            embed_client=self.embed_client,
            rag_client=self.rag_client,
        )

    async def start(self) -> None:
        """Boot all backends, check their health and prepare storage.

        Raises:
            ClientRequestError: If a backend is unreachable or unhealthy.
        """
        await self.embed_client.boot()
        await self.embed_client.do_healthcheck()
        await self.rag_client.boot()
        await self.rag_client.do_healthcheck()
        await self.fetcher.boot()

        # the collection dimension must match the embedding model
        vector_size, distance = await self.embed_client.do_fetch_embedding_vector_size()
        await self.rag_client.do_ensure_collection(vector_size=vector_size, distance=distance)

        await self.connection_manager.open(self.db_path)
        await self.repository.initialize()
        self.logging.info(
            "Context pipeline ready (embed: %s, rag: %s, collection: %s)",
            self.embed_client.get_engine_name(), self.rag_client.get_engine_name(), self.rag_client.get_collection_name(),
        )

    async def stop(self) -> None:
        await self.context_service.wait_for_background_tasks()
        await self.embed_client.close()
        await self.rag_client.close()
        await self.fetcher.close()
        await self.connection_manager.close()
        self.logging.info("Context pipeline shut down")
