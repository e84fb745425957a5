import asyncio
from abc import abstractmethod

import httpx
from typing import Tuple
from shared.clients.ClientInterface import ClientInterface
from shared.models.errors import ClientRequestError, EmbeddingError

from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    request_error = EmbeddingError

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        prefix = self.get_client_type().upper()
        self.embed_distance = helper_config.get_string_val(f"{prefix}_DISTANCE", default="Cosine")
        self.embed_model = helper_config.get_string_val(f"{prefix}_MODEL", default=None)
        self.max_batch_size = int(helper_config.get_number_val(f"{prefix}_MAX_BATCH_SIZE", default=2048))
        self.batch_delay = float(helper_config.get_number_val(f"{prefix}_BATCH_DELAY", default=0.1))
        self.cost_per_million = float(helper_config.get_number_val(f"{prefix}_COST_PER_MILLION", default=0.02))
        if self.max_batch_size < 1:
            raise ValueError(f"{prefix}_MAX_BATCH_SIZE must be at least 1, got {self.max_batch_size}.")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        return "embed"

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.

        Returns:
            str: The endpoint path for embedding requests (e.g. "/api/embed")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Response format differs by backend:
        - Ollama /api/embed: {"embeddings": [[...], [...]]} (already ordered)
        - OpenAI-compatible: {"data": [{"embedding": [...], "index": 0}]} (needs sorting)

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            EmbeddingError: If the response format is invalid or embeddings are empty.
        """
        pass

    @abstractmethod
    async def do_fetch_embedding_vector_size(self) -> Tuple[int, str]:
        """
        Fetch the output vector dimension and distance metric of the configured embedding model.

        Returns:
            Tuple[int, str]: The number of dimensions produced by the embedding model and the distance metric.
        """
        pass

    def estimate_cost(self, token_count: int) -> float:
        """Estimate what embedding the given number of tokens costs.

        Only used for log output.

        Args:
            token_count (int): Number of embedded tokens.

        Returns:
            float: Estimated cost in the configured currency.
        """
        return token_count / 1_000_000 * self.cost_per_million

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Send a single embedding request and return the extracted vectors.

        Normalises the input to a list, builds the backend-specific payload via
        get_embed_payload(), sends the request, validates the status, and extracts
        the vectors via extract_embeddings_from_response().

        Args:
            texts (list[str] | str): One or more texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            EmbeddingError: If the request fails or the response does not hold
                one vector per input text.
        """
        texts = [texts] if isinstance(texts, str) else texts
        body = self.get_embed_payload(texts)
        response = await self.do_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body)
        if response.status_code != 200:
            self.logging.error(
                "Embedding request failed: status %d, body: %s",
                response.status_code,
                response.text[:200],
            )
            raise EmbeddingError(
                "Embedding request failed with status %d." % response.status_code,
                status_code=response.status_code,
            )
        embeddings = self.extract_embeddings_from_response(response.json())
        if len(embeddings) != len(texts):
            raise EmbeddingError(
                f"Embedding response holds {len(embeddings)} vectors for {len(texts)} inputs."
            )
        return embeddings

    async def embed_one(self, text: str) -> list[float]:
        """Embed a single text, e.g. an incoming question.

        Args:
            text (str): The text to embed.

        Returns:
            list[float]: The embedding vector.

        Raises:
            EmbeddingError: If the provider request fails.
        """
        vectors = await self.do_embed([text])
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, batching to stay within the provider's input limit.

        Batches are sent one after the other with a short pause in between to
        stay under the provider's rate limits. Any failing batch aborts the
        whole call, partial results are discarded.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            list[list[float]]: One vector per input text, in input order.

        Raises:
            EmbeddingError: If any batch fails.
        """
        if not texts:
            return []

        vectors: list[list[float]] = []
        total_batches = (len(texts) + self.max_batch_size - 1) // self.max_batch_size
        for batch_no, batch_start in enumerate(range(0, len(texts), self.max_batch_size), start=1):
            if batch_no > 1 and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            batch = texts[batch_start: batch_start + self.max_batch_size]
            self.logging.debug("Embedding batch %d of %d (%d texts)", batch_no, total_batches, len(batch))
            try:
                vectors.extend(await self.do_embed(batch))
            except EmbeddingError:
                raise
            except (ClientRequestError, httpx.HTTPError, ValueError) as exc:
                raise EmbeddingError(f"Embedding batch {batch_no} of {total_batches} failed: {exc}") from exc
        return vectors
