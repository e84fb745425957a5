"""Explicitly invalidated cache of fetched context content."""

from shared.helper.HelperConfig import HelperConfig
from shared.models.context import CachedContent, ContextScope

CACHE_KEY_PREFIX = "context:"


class ContentCache:
    """In-process key/value cache of fetched document text.

    Entries never expire; writers invalidate a scope's key whenever its
    context document changes. Values are kept as serialised JSON so an
    entry can never be mutated by a reader.
    """

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self._entries: dict[str, str] = {}

    async def get(self, scope: ContextScope) -> CachedContent | None:
        raw = self._entries.get(scope.cache_key)
        if raw is None:
            return None
        return CachedContent.model_validate_json(raw)

    async def set(self, scope: ContextScope, value: CachedContent) -> None:
        self._entries[scope.cache_key] = value.model_dump_json()
        self.logging.debug("Context cached for %s (%d characters)", scope, value.character_count)

    async def invalidate(self, scope: ContextScope) -> bool:
        """Drop the entry of a scope.

        Returns:
            bool: True if an entry was removed.
        """
        removed = self._entries.pop(scope.cache_key, None) is not None
        if removed:
            self.logging.debug("Context cache invalidated for %s", scope)
        return removed

    async def exists(self, scope: ContextScope) -> bool:
        return scope.cache_key in self._entries

    async def clear(self) -> int:
        """Drop every context entry.

        Returns:
            int: Number of entries removed.
        """
        keys = [key for key in self._entries if key.startswith(CACHE_KEY_PREFIX)]
        for key in keys:
            del self._entries[key]
        return len(keys)
