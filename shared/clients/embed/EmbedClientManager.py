import importlib

from shared.helper.HelperConfig import HelperConfig
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface

# engine name -> module path holding EmbedClient{Engine}
SUPPORTED_EMBED_ENGINES: dict[str, str] = {
    "openai": "shared.clients.embed.openai.EmbedClientOpenai",
    "ollama": "shared.clients.embed.ollama.EmbedClientOllama",
}


class EmbedClientManager:
    """
    Builds the embedding client selected by EMBED_ENGINE.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the embedding engine from ENV configuration.

        Returns:
            str: The lowercase engine name, e.g. "openai".

        Raises:
            ValueError: If EMBED_ENGINE is missing or names an unsupported engine.
        """
        engine = self.helper_config.get_string_val("EMBED_ENGINE").strip().lower()
        if engine not in SUPPORTED_EMBED_ENGINES:
            raise ValueError(
                f"Unsupported Embed engine specified: '{engine}'. "
                f"Supported engines: {', '.join(sorted(SUPPORTED_EMBED_ENGINES))}"
            )
        return engine

    def _initialize_client(self) -> EmbedClientInterface:
        """
        Imports and instantiates EmbedClient{Engine} for the configured engine.

        Returns:
            EmbedClientInterface: The embedding client.

        Raises:
            ValueError: If the client class cannot be loaded.
        """
        engine = self._get_engine_from_env()
        class_name = f"EmbedClient{engine.capitalize()}"
        try:
            module = importlib.import_module(SUPPORTED_EMBED_ENGINES[engine])
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Could not load Embed client '{class_name}': {e}")
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated Embed client for engine: %s", engine)
        return client

    def get_client(self) -> EmbedClientInterface:
        """
        Returns the instantiated Embed client.

        Returns:
            EmbedClientInterface: The Embed client instance.
        """
        return self.client
