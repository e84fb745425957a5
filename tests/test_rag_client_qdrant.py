"""Tests for RAGClientQdrant, using httpx.MockTransport."""

import json

import httpx
import pytest

from shared.clients.rag.RAGClientInterface import INDEXED_PAYLOAD_FIELDS, UPSERT_BATCH_SIZE
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.rag.models.VectorPoint import VectorPoint, VectorRecord
from shared.clients.rag.qdrant.RAGClientQdrant import RAGClientQdrant
from shared.models.context import ScopeKind
from shared.models.errors import VectorStoreError


class Recorder:
    """Mock transport handler that records requests and replays canned responses."""

    def __init__(self, responses: dict[tuple[str, str], dict] | None = None, status_code: int = 200):
        self.requests: list[httpx.Request] = []
        self.responses = responses or {}
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = self.responses.get((request.method, request.url.path), {"result": True, "status": "ok"})
        return httpx.Response(self.status_code, json=body)

    def body(self, index: int) -> dict:
        return json.loads(self.requests[index].content)


def point(context_id: str = "ctx-1", chunk_index: int = 0) -> VectorRecord:
    return VectorRecord(
        id=VectorRecord.make_id(context_id, chunk_index),
        vector=[0.1, 0.2],
        payload=VectorPoint(
            context_id=context_id,
            scope=ScopeKind.GUILD,
            target_guild_id="g-1",
            chunk_index=chunk_index,
            content=f"chunk {chunk_index}",
            token_count=2,
            character_count=7,
            source_url="https://raw.githubusercontent.com/a/b/main/c.md",
            created_at="2026-01-01T00:00:00+00:00",
        ),
    )


@pytest.fixture
async def qdrant(helper_config):
    client = RAGClientQdrant(helper_config=helper_config)
    yield client
    await client.close()


class TestFilters:
    """Tests for the scope and context filters."""

    def test_scope_filter_with_guild(self, qdrant):
        assert qdrant.get_scope_filter("u-1", "g-1") == {
            "should": [
                {"key": "scope", "match": {"value": "global"}},
                {"must": [
                    {"key": "scope", "match": {"value": "guild"}},
                    {"key": "targetGuildId", "match": {"value": "g-1"}},
                ]},
                {"must": [
                    {"key": "scope", "match": {"value": "user"}},
                    {"key": "targetUserId", "match": {"value": "u-1"}},
                ]},
            ]
        }

    def test_scope_filter_without_guild_has_no_guild_branch(self, qdrant):
        should = qdrant.get_scope_filter("u-1")["should"]

        assert len(should) == 2
        assert "guild" not in json.dumps(should)

    def test_ids_are_matched_as_strings(self, qdrant):
        should = qdrant.get_scope_filter(123, 456)["should"]

        assert should[1]["must"][1]["match"]["value"] == "456"
        assert should[2]["must"][1]["match"]["value"] == "123"

    def test_context_filter(self, qdrant):
        assert qdrant.get_context_filter("ctx-1") == {"must": [{"key": "contextId", "match": {"value": "ctx-1"}}]}


class TestRequests:
    """Tests for the request flow against the mocked Qdrant API."""

    async def test_upsert_waits_and_uses_camel_case_payload(self, qdrant):
        recorder = Recorder()
        await qdrant.boot(transport=httpx.MockTransport(recorder))

        await qdrant.do_upsert_points([point()])

        request = recorder.requests[0]
        assert request.method == "PUT"
        assert request.url.path == "/collections/test_chunks/points"
        assert request.url.params["wait"] == "true"
        payload = recorder.body(0)["points"][0]["payload"]
        assert payload["contextId"] == "ctx-1"
        assert payload["targetGuildId"] == "g-1"
        assert payload["scope"] == "guild"

    async def test_upsert_is_batched(self, qdrant):
        recorder = Recorder()
        await qdrant.boot(transport=httpx.MockTransport(recorder))

        await qdrant.do_upsert_points([point(chunk_index=i) for i in range(UPSERT_BATCH_SIZE + 1)])

        assert [len(recorder.body(i)["points"]) for i in range(len(recorder.requests))] == [UPSERT_BATCH_SIZE, 1]

    async def test_search_parses_hits(self, qdrant):
        hit = {"id": "x", "score": 0.87, "payload": point().payload.to_payload()}
        recorder = Recorder({("POST", "/collections/test_chunks/points/search"): {"result": [hit]}})
        await qdrant.boot(transport=httpx.MockTransport(recorder))

        hits = await qdrant.do_search([0.1, 0.2], qdrant.get_scope_filter("u-1", "g-1"), limit=10, score_threshold=0.3)

        body = recorder.body(0)
        assert body["limit"] == 10
        assert body["score_threshold"] == 0.3
        assert body["with_payload"] is True
        assert "should" in body["filter"]
        [(payload, score)] = hits
        assert payload.context_id == "ctx-1"
        assert payload.scope == ScopeKind.GUILD
        assert score == pytest.approx(0.87)

    async def test_malformed_hit_payload_raises(self, qdrant):
        recorder = Recorder({("POST", "/collections/test_chunks/points/search"): {"result": [{"score": 1.0, "payload": {"content": "x"}}]}})
        await qdrant.boot(transport=httpx.MockTransport(recorder))

        with pytest.raises(VectorStoreError, match="malformed"):
            await qdrant.do_search([0.1], {"should": []}, limit=1)

    async def test_delete_by_context_waits(self, qdrant):
        recorder = Recorder()
        await qdrant.boot(transport=httpx.MockTransport(recorder))

        await qdrant.do_delete_by_context("ctx-1")

        request = recorder.requests[0]
        assert request.url.path == "/collections/test_chunks/points/delete"
        assert request.url.params["wait"] == "true"
        assert recorder.body(0) == {"filter": qdrant.get_context_filter("ctx-1")}

    async def test_counts(self, qdrant):
        recorder = Recorder({
            ("GET", "/collections/test_chunks"): {"result": {"points_count": 42}},
            ("POST", "/collections/test_chunks/points/count"): {"result": {"count": 3}},
        })
        await qdrant.boot(transport=httpx.MockTransport(recorder))

        assert await qdrant.do_count_all() == 42
        assert await qdrant.do_count_for_context("ctx-1") == 3
        assert recorder.body(1)["exact"] is False

    async def test_ensure_collection_creates_collection_and_indexes(self, qdrant):
        recorder = Recorder({("GET", "/collections/test_chunks/exists"): {"result": {"exists": False}}})
        await qdrant.boot(transport=httpx.MockTransport(recorder))

        created = await qdrant.do_ensure_collection(vector_size=1536, distance="Cosine")

        assert created is True
        assert recorder.body(1) == {"vectors": {"size": 1536, "distance": "Cosine"}}
        indexed = [recorder.body(i)["field_name"] for i in range(2, len(recorder.requests))]
        assert indexed == list(INDEXED_PAYLOAD_FIELDS)

    async def test_ensure_collection_skips_existing(self, qdrant):
        recorder = Recorder({("GET", "/collections/test_chunks/exists"): {"result": {"exists": True}}})
        await qdrant.boot(transport=httpx.MockTransport(recorder))

        assert await qdrant.do_ensure_collection(vector_size=1536) is False
        assert len(recorder.requests) == 1

    async def test_error_status_raises_vector_store_error(self, qdrant):
        await qdrant.boot(transport=httpx.MockTransport(Recorder(status_code=500)))

        with pytest.raises(VectorStoreError) as exc_info:
            await qdrant.do_delete_by_context("ctx-1")

        assert exc_info.value.status_code == 500

    async def test_api_key_header(self, env, helper_config):
        env.setenv("RAG_QDRANT_API_KEY", "secret")
        client = RAGClientQdrant(helper_config=helper_config)
        recorder = Recorder()
        await client.boot(transport=httpx.MockTransport(recorder))

        await client.do_healthcheck()
        await client.close()

        assert recorder.requests[0].headers["api-key"] == "secret"
        assert recorder.requests[0].url.path == "/healthz"


class TestRAGClientManager:
    """Tests for engine selection."""

    def test_selects_qdrant(self, helper_config):
        assert isinstance(RAGClientManager(helper_config=helper_config).get_client(), RAGClientQdrant)

    def test_missing_base_url_raises(self, env, helper_config):
        env.delenv("RAG_QDRANT_BASE_URL")

        with pytest.raises(ValueError, match="RAG_QDRANT_BASE_URL"):
            RAGClientQdrant(helper_config=helper_config)
