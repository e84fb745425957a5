"""Fetches raw context documents from allow-listed raw-content hosts."""

import httpx

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import FetchError

DEFAULT_ALLOWED_PREFIXES = [
    "https://raw.githubusercontent.com/",
    "https://gist.githubusercontent.com/",
]


class DocumentFetcher:
    """Downloads document text with a hard timeout.

    Only URLs starting with one of the SOURCE_ALLOWED_PREFIXES are ever
    requested, so a context can never point the service at an arbitrary
    endpoint.
    """

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self.timeout = float(helper_config.get_number_val("SOURCE_TIMEOUT", default=10))
        self.allowed_prefixes: list[str] = helper_config.get_list_val(
            "SOURCE_ALLOWED_PREFIXES", default=DEFAULT_ALLOWED_PREFIXES
        )
        self._client: httpx.AsyncClient | None = None

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def is_allowed_url(self, url: str) -> bool:
        """Check a source URL against the allow-list of raw-content hosts.

        Args:
            url (str): The candidate source URL.

        Returns:
            bool: True if the URL starts with an allowed prefix.
        """
        return any(url.startswith(prefix) for prefix in self.allowed_prefixes)

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialise the HTTP client."""
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport, follow_redirects=False)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> str:
        """Download the text behind an allow-listed URL.

        Args:
            url (str): The source URL.

        Returns:
            str: The response body as text.

        Raises:
            RuntimeError: If the fetcher has not been booted.
            FetchError: If the URL is not allow-listed, no response arrives
                within the timeout, the transport fails, or the status is not 2xx.
        """
        if self._client is None:
            raise RuntimeError("HTTP client not initialised. Call boot() before fetching.")
        if not self.is_allowed_url(url):
            raise FetchError(f"Refusing to fetch from a source that is not allow-listed: {url}")

        try:
            response = await self._client.get(url, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            self.logging.error("Fetching %s timed out after %s seconds", url, self.timeout)
            raise FetchError(f"Fetch timed out after {self.timeout:g} seconds", timed_out=True) from exc
        except httpx.HTTPError as exc:
            self.logging.error("Fetching %s failed: %s", url, exc)
            raise FetchError(f"Fetch failed: {exc}") from exc

        if not response.is_success:
            raise FetchError(
                f"Fetch failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        self.logging.debug("Fetched %s (%d characters)", url, len(response.text))
        return response.text
