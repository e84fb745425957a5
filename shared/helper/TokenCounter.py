"""Token counting for chunk budgets."""

import math

import tiktoken

from shared.helper.HelperConfig import HelperConfig

FALLBACK_CHARS_PER_TOKEN = 4


class TokenCounter:
    """Counts tokens with the provider tokenizer, falling back to an estimate.

    The tiktoken encoding is loaded lazily on first use and shared afterwards.
    If it cannot be loaded (unknown model, offline encoding download) or
    CHUNK_TOKENIZER is "estimate", counts are estimated at four characters per token.
    """

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self.model = helper_config.get_string_val("CHUNK_TOKENIZER_MODEL", default="gpt-4o-mini")
        self._use_tokenizer = helper_config.get_string_val("CHUNK_TOKENIZER", default="tiktoken").lower() == "tiktoken"
        self._encoding: tiktoken.Encoding | None = None

    @staticmethod
    def estimate(text: str) -> int:
        return math.ceil(len(text) / FALLBACK_CHARS_PER_TOKEN)

    def _get_encoding(self) -> tiktoken.Encoding | None:
        if self._encoding is None and self._use_tokenizer:
            try:
                try:
                    self._encoding = tiktoken.encoding_for_model(self.model)
                except KeyError:
                    self._encoding = tiktoken.get_encoding("cl100k_base")
            except Exception as exc:
                self.logging.error("Loading the tokenizer for %s failed, using the character estimate: %s", self.model, exc)
                self._use_tokenizer = False
        return self._encoding

    def count(self, text: str) -> int:
        """Count the tokens of a text.

        Args:
            text (str): The text to measure.

        Returns:
            int: Number of tokens.
        """
        encoding = self._get_encoding()
        if encoding is None:
            return self.estimate(text)
        return len(encoding.encode(text, disallowed_special=()))
