import importlib

from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface

# engine name -> module path holding RAGClient{Engine}
SUPPORTED_RAG_ENGINES: dict[str, str] = {
    "qdrant": "shared.clients.rag.qdrant.RAGClientQdrant",
}


class RAGClientManager:
    """
    Builds the vector store client selected by RAG_ENGINE.

    The context pipeline keeps all chunks in a single collection, so exactly
    one RAG client is active at a time.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the RAG engine from ENV configuration.

        Returns:
            str: The lowercase engine name, e.g. "qdrant".

        Raises:
            ValueError: If RAG_ENGINE is missing or names an unsupported engine.
        """
        engine = self.helper_config.get_string_val("RAG_ENGINE").strip().lower()
        if engine not in SUPPORTED_RAG_ENGINES:
            raise ValueError(
                f"Unsupported RAG engine specified: '{engine}'. "
                f"Supported engines: {', '.join(sorted(SUPPORTED_RAG_ENGINES))}"
            )
        return engine

    def _initialize_client(self) -> RAGClientInterface:
        """
        Imports and instantiates RAGClient{Engine} for the configured engine.

        Returns:
            RAGClientInterface: The vector store client.

        Raises:
            ValueError: If the client class cannot be loaded.
        """
        engine = self._get_engine_from_env()
        class_name = f"RAGClient{engine.capitalize()}"
        try:
            module = importlib.import_module(SUPPORTED_RAG_ENGINES[engine])
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Could not load RAG client '{class_name}': {e}")
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated RAG client for engine: %s", engine)
        return client

    def get_client(self) -> RAGClientInterface:
        """
        Returns the instantiated RAG client.

        Returns:
            RAGClientInterface: The RAG client instance.
        """
        return self.client
