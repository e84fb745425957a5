"""
Pytest configuration and fixtures for the context retrieval tests.

Backends are replaced by in-memory fakes: a fetcher serving canned documents,
a bag-of-words embedder and a vector store that evaluates the same scope
filters the Qdrant client builds. Metadata lives in a temporary SQLite file.
"""

import logging
import math

import pytest

from services.context_rag.ChunkingService import ChunkingService
from services.context_rag.ContextProcessingService import ContextProcessingService
from services.context_rag.ContextResolver import ContextResolver
from services.context_rag.ContextService import ContextService
from shared.cache.ContentCache import ContentCache
from shared.clients.rag.models.VectorPoint import VectorPoint, VectorRecord
from shared.clients.rag.qdrant.RAGClientQdrant import RAGClientQdrant
from shared.database.ConnectionManager import ConnectionManager
from shared.database.ContextRepository import ContextRepository
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import EmbeddingError, FetchError, VectorStoreError

ALLOWED_PREFIX = "https://raw.githubusercontent.com/"

TEST_ENV = {
    "LOG_LEVEL": "info",
    "CHUNK_SIZE": "500",
    "CHUNK_OVERLAP": "50",
    "CHUNK_TOKENIZER": "estimate",
    "CONTEXT_PROCESS_DELAY": "0",
    "VECTOR_SEARCH_LIMIT": "5",
    "VECTOR_SCORE_THRESHOLD": "0.3",
    "EMBED_ENGINE": "openai",
    "EMBED_MODEL": "text-embedding-3-small",
    "EMBED_DIMENSIONS": "1536",
    "EMBED_BATCH_DELAY": "0",
    "EMBED_OPENAI_BASE_URL": "http://embed.test",
    "EMBED_OPENAI_API_KEY": "sk-test",
    "EMBED_OLLAMA_BASE_URL": "http://ollama.test:11434",
    "RAG_ENGINE": "qdrant",
    "RAG_QDRANT_BASE_URL": "http://qdrant.test:6333",
    "RAG_QDRANT_COLLECTION": "test_chunks",
    "APP_API_KEY": "test-api-key",
}


def _doc_url(name: str) -> str:
    return f"{ALLOWED_PREFIX}acme/docs/main/{name}.md"


def cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeFetcher:
    """Serves documents from a dict; unknown URLs fail like a 404."""

    def __init__(self):
        self.documents: dict[str, str] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []

    def is_allowed_url(self, url: str) -> bool:
        return url.startswith(ALLOWED_PREFIX)

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        if url in self.errors:
            raise self.errors[url]
        if url not in self.documents:
            raise FetchError("Fetch failed: 404 Not Found", status_code=404)
        return self.documents[url]


class FakeEmbedder:
    """Bag-of-words embedder: one dimension per vocabulary word plus a small bias.

    Texts listed in `fixed` get their given vector instead.
    """

    DEFAULT_VOCABULARY = ["install", "zephyr", "widget", "billing", "refund", "server"]

    def __init__(self, vocabulary: list[str] | None = None):
        self.vocabulary = vocabulary or self.DEFAULT_VOCABULARY
        self.fixed: dict[str, list[float]] = {}
        self.batches: list[list[str]] = []
        self.fail = False

    def vector(self, text: str) -> list[float]:
        if text in self.fixed:
            return self.fixed[text]
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.vocabulary] + [0.001]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        if self.fail:
            raise EmbeddingError("Embedding request failed with status 503.", status_code=503)
        self.batches.append(list(texts))
        return [self.vector(text) for text in texts]

    async def embed_one(self, text: str) -> list[float]:
        if self.fail:
            raise EmbeddingError("Embedding request failed with status 503.", status_code=503)
        return self.vector(text)

    def estimate_cost(self, token_count: int) -> float:
        return token_count / 1_000_000 * 0.02


def _matches(payload: dict, condition: dict) -> bool:
    if "key" in condition:
        return payload.get(condition["key"]) == condition["match"]["value"]
    if not all(_matches(payload, c) for c in condition.get("must", [])):
        return False
    should = condition.get("should", [])
    return not should or any(_matches(payload, c) for c in should)


class FakeVectorStore:
    """In-memory vector store using the Qdrant client's filter builders."""

    _match = staticmethod(RAGClientQdrant._match)
    get_scope_filter = RAGClientQdrant.get_scope_filter
    get_context_filter = RAGClientQdrant.get_context_filter

    def __init__(self):
        self.records: dict[str, VectorRecord] = {}
        self.fail_delete = False
        self.fail_upsert = False
        # number of records written before an upsert fails midway
        self.fail_upsert_after: int | None = None
        self.fail_search = False
        self.search_calls: list[dict] = []

    def get_collection_name(self) -> str:
        return "test_chunks"

    async def do_upsert_points(self, records: list[VectorRecord]) -> None:
        if self.fail_upsert:
            raise VectorStoreError("Request failed with status 500", status_code=500)
        for written, record in enumerate(records):
            if self.fail_upsert_after is not None and written >= self.fail_upsert_after:
                raise VectorStoreError("Request failed with status 500", status_code=500)
            self.records[record.id] = record

    async def do_search(self, query_vector, filter, limit, score_threshold=None):
        if self.fail_search:
            raise VectorStoreError("Request failed with status 500", status_code=500)
        self.search_calls.append({"filter": filter, "limit": limit, "score_threshold": score_threshold})
        hits = []
        for record in self.records.values():
            payload = record.payload.to_payload()
            if not _matches(payload, filter):
                continue
            score = cosine(query_vector, record.vector)
            if score_threshold is not None and score < score_threshold:
                continue
            hits.append((VectorPoint.model_validate(payload), score))
        hits.sort(key=lambda hit: hit[1], reverse=True)
        return hits[:limit]

    async def do_delete_by_context(self, context_id: str) -> None:
        if self.fail_delete:
            raise VectorStoreError("Request failed with status 500", status_code=500)
        self.records = {k: r for k, r in self.records.items() if r.payload.context_id != context_id}

    async def do_count_all(self) -> int:
        return len(self.records)

    async def do_count_for_context(self, context_id: str, exact: bool = False) -> int:
        return sum(1 for r in self.records.values() if r.payload.context_id == context_id)


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Set a complete test environment."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("ROOT_DIR", str(tmp_path))
    monkeypatch.delenv("SOURCE_ALLOWED_PREFIXES", raising=False)
    return monkeypatch


@pytest.fixture
def helper_config(env):
    return HelperConfig(logger=logging.getLogger("context_rag.tests"))


@pytest.fixture
def chunking_service(helper_config):
    return ChunkingService(helper_config=helper_config)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
async def connection_manager(helper_config, tmp_path):
    manager = ConnectionManager(helper_config=helper_config)
    await manager.open(tmp_path / "data" / "contexts.db")
    yield manager
    await manager.close()


@pytest.fixture
async def repository(helper_config, connection_manager):
    repo = ContextRepository(helper_config=helper_config, connection_manager=connection_manager)
    await repo.initialize()
    return repo


@pytest.fixture
def cache(helper_config):
    return ContentCache(helper_config=helper_config)


@pytest.fixture
def processing_service(helper_config, repository, fetcher, chunking_service, embedder, vector_store):
    return ContextProcessingService(
        helper_config=helper_config,
        repository=repository,
        fetcher=fetcher,
        chunking_service=chunking_service,
        embed_client=embedder,
        rag_client=vector_store,
    )


@pytest.fixture
def context_service(helper_config, repository, cache, fetcher, processing_service):
    return ContextService(
        helper_config=helper_config,
        repository=repository,
        cache=cache,
        fetcher=fetcher,
        processing_service=processing_service,
    )


@pytest.fixture
def resolver(helper_config, context_service, embedder, vector_store):
    return ContextResolver(
        helper_config=helper_config,
        context_service=context_service,
        embed_client=embedder,
        rag_client=vector_store,
    )


@pytest.fixture
def sample_markdown():
    """A small markdown document with nested sections."""
    return "\n".join([
        "# Server Guide",
        "",
        "Welcome to the server guide. This document explains how things work here.",
        "",
        "## Installation",
        "",
        "To install the resource, download the latest release and extract it.",
        "Add the resource to your server configuration and restart the server.",
        "",
        "## Billing",
        "",
        "Refunds are processed within five business days after the request.",
        "Billing questions go to the support team through the ticket system.",
    ])


@pytest.fixture
def doc_url():
    """Build an allow-listed raw URL for a document name."""
    return _doc_url
