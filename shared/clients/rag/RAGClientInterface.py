from abc import abstractmethod

import httpx
from pydantic import ValidationError as PydanticValidationError

from shared.clients.ClientInterface import ClientInterface
from shared.clients.rag.models.VectorPoint import VectorPoint, VectorRecord
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import VectorStoreError

UPSERT_BATCH_SIZE = 100  # max points per upsert call

# payload fields that scope filters and deletes match on
INDEXED_PAYLOAD_FIELDS = ("contextId", "scope", "targetUserId", "targetGuildId")


class RAGClientInterface(ClientInterface):
    request_error = VectorStoreError

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    @abstractmethod
    def get_collection_name(self) -> str:
        """Returns the name of the collection holding all context chunks."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_points(self) -> str:
        """
        Returns the endpoint path for points upsert requests.
        """
        pass

    @abstractmethod
    def _get_endpoint_search(self) -> str:
        """
        Returns the endpoint path for vector similarity search requests.
        """
        pass

    @abstractmethod
    def _get_endpoint_delete_points(self) -> str:
        """
        Returns the endpoint path for deleting points by filter.
        """
        pass

    @abstractmethod
    def _get_endpoint_check_collection_existence(self) -> str:
        """
        Returns the endpoint path for collection existence check requests.
        """
        pass

    @abstractmethod
    def _get_endpoint_collection(self) -> str:
        """
        Returns the endpoint path of the collection itself (create / info).
        """
        pass

    @abstractmethod
    def _get_endpoint_payload_index(self) -> str:
        """
        Returns the endpoint path for creating payload field indexes.
        """
        pass

    @abstractmethod
    def _get_endpoint_count(self) -> str:
        """Returns the endpoint path for counting points matching a filter."""
        pass

    ################ FILTER BUILDER ##################
    @abstractmethod
    def get_scope_filter(self, user_id: str, guild_id: str | None = None) -> dict:
        """
        Builds the filter selecting every chunk a requester may read.

        The filter is a disjunction with one branch per accessible scope:
        global always, the requester's guild only when a guild id is given,
        and the requester's own user scope always.

        Args:
            user_id (str): The requesting user.
            guild_id (str | None): The guild the request comes from, None in DMs.

        Returns:
            dict: The backend-specific filter.
        """
        pass

    @abstractmethod
    def get_context_filter(self, context_id: str) -> dict:
        """
        Builds the filter selecting every chunk of one context document.

        Args:
            context_id (str): The owning context document id.

        Returns:
            dict: The backend-specific filter.
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        """Builds the request body for creating the collection."""
        pass

    @abstractmethod
    def get_payload_index_payload(self, field_name: str) -> dict:
        """Builds the request body for indexing a keyword payload field."""
        pass

    @abstractmethod
    def get_upsert_payload(self, points: list[dict]) -> dict:
        """Builds the request body for an upsert of the given points."""
        pass

    @abstractmethod
    def get_search_payload(self, query_vector: list[float], filter: dict, limit: int, score_threshold: float | None) -> dict:
        """
        Builds the request body for a filtered similarity search.

        Args:
            query_vector (list[float]): The query embedding.
            filter (dict): Filter as returned by get_scope_filter().
            limit (int): Maximum number of hits.
            score_threshold (float | None): Hits scoring below are dropped by the backend.

        Returns:
            dict: The payload for the search request.
        """
        pass

    @abstractmethod
    def get_count_payload(self, filter: dict, exact: bool) -> dict:
        """Builds the backend-specific request payload for a point count."""
        pass

    @abstractmethod
    def get_delete_payload(self, filter: dict) -> dict:
        """
        Builds the backend-specific request payload for a filter-based delete.
        """
        pass

    ################ RESPONSE PARSER ##################
    @abstractmethod
    def extract_search_hits(self, raw_response: dict) -> list[dict]:
        """
        Extracts the raw hits (each with "payload" and "score") from a search response.
        """
        pass

    @abstractmethod
    def extract_points_count(self, raw_response: dict) -> int:
        """
        Extracts the total number of points from a collection info response.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_existence_check(self) -> bool:
        """Check if the collection exists in the rag backend.

        Returns:
            bool: True if the collection exists, False otherwise.
        """
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_check_collection_existence(), raise_on_error=True)
        return bool(resp.json().get("result", {}).get("exists"))

    async def do_create_collection(self, vector_size: int, distance: str = "Cosine") -> httpx.Response:
        """Create the collection with a fixed vector size and distance metric.

        Args:
            vector_size (int): The size of the vectors in the collection.
            distance (str): The distance metric for the vectors.

        Returns:
            httpx.Response: The response from the create collection request.
        """
        return await self.do_request(
            method="PUT",
            json=self.get_create_collection_payload(vector_size, distance),
            endpoint=self._get_endpoint_collection(),
            raise_on_error=True,
        )

    async def do_ensure_collection(self, vector_size: int, distance: str = "Cosine") -> bool:
        """Create the collection and its payload indexes unless it already exists.

        Args:
            vector_size (int): Dimension of the configured embedding model.
            distance (str): The distance metric for the vectors.

        Returns:
            bool: True if the collection was created by this call.
        """
        if await self.do_existence_check():
            self.logging.info("Collection '%s' already exists.", self.get_collection_name())
            return False

        await self.do_create_collection(vector_size=vector_size, distance=distance)
        for field_name in INDEXED_PAYLOAD_FIELDS:
            await self.do_request(
                method="PUT",
                json=self.get_payload_index_payload(field_name),
                endpoint=self._get_endpoint_payload_index(),
                params={"wait": "true"},
                raise_on_error=True,
            )
        self.logging.info(
            "Created collection '%s' (size=%d, distance=%s) with %d payload indexes.",
            self.get_collection_name(), vector_size, distance, len(INDEXED_PAYLOAD_FIELDS),
        )
        return True

    async def do_upsert_points(self, records: list[VectorRecord]) -> None:
        """Upsert vector records and wait until they are durable.

        Inserts new points or replaces existing ones with the same id. Large
        inputs are split into batches; every batch is acknowledged before the
        next one is sent.

        Args:
            records (list[VectorRecord]): The records to upsert.

        Raises:
            VectorStoreError: If any batch fails.
        """
        points = [record.to_point() for record in records]
        for batch_start in range(0, len(points), UPSERT_BATCH_SIZE):
            batch = points[batch_start: batch_start + UPSERT_BATCH_SIZE]
            await self.do_request(
                method="PUT",
                json=self.get_upsert_payload(batch),
                endpoint=self._get_endpoint_points(),
                params={"wait": "true"},
                raise_on_error=True,
            )

    async def do_search(self, query_vector: list[float], filter: dict, limit: int, score_threshold: float | None = None) -> list[tuple[VectorPoint, float]]:
        """Run a filtered similarity search.

        Args:
            query_vector (list[float]): The query embedding.
            filter (dict): Filter as returned by get_scope_filter().
            limit (int): Maximum number of hits.
            score_threshold (float | None): Minimum similarity score.

        Returns:
            list[tuple[VectorPoint, float]]: Payload and score of each hit, best first.

        Raises:
            VectorStoreError: If the search fails or a hit carries a malformed payload.
        """
        resp = await self.do_request(
            method="POST",
            json=self.get_search_payload(query_vector, filter, limit, score_threshold),
            endpoint=self._get_endpoint_search(),
            raise_on_error=True,
        )
        hits: list[tuple[VectorPoint, float]] = []
        try:
            for hit in self.extract_search_hits(resp.json()):
                hits.append((VectorPoint.model_validate(hit.get("payload") or {}), float(hit.get("score", 0.0))))
        except PydanticValidationError as exc:
            raise VectorStoreError(f"Search returned a malformed payload: {exc}") from exc
        return hits

    async def do_delete_by_context(self, context_id: str) -> None:
        """Delete every point of a context document and wait until the delete is durable.

        Args:
            context_id (str): The owning context document id.

        Raises:
            VectorStoreError: If the delete fails.
        """
        await self.do_request(
            method="POST",
            json=self.get_delete_payload(self.get_context_filter(context_id)),
            endpoint=self._get_endpoint_delete_points(),
            params={"wait": "true"},
            raise_on_error=True,
        )

    async def do_count_all(self) -> int:
        """Return the total number of points in the collection.

        Returns:
            int: Number of stored chunks.
        """
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_collection(), raise_on_error=True)
        return self.extract_points_count(resp.json())

    async def do_count_for_context(self, context_id: str, exact: bool = False) -> int:
        """Count the points of one context document.

        An approximate count is good enough for diagnostics.

        Args:
            context_id (str): The owning context document id.
            exact (bool): Ask the backend for an exact count.

        Returns:
            int: Number of chunks stored for the document.
        """
        resp = await self.do_request(
            method="POST",
            json=self.get_count_payload(self.get_context_filter(context_id), exact),
            endpoint=self._get_endpoint_count(),
            raise_on_error=True,
        )
        return int(resp.json().get("result", {}).get("count", 0))
