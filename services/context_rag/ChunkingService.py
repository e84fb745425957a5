"""Markdown-aware document chunking.

Splits a document into token-bounded chunks suitable for embedding. Lines are
never split; each chunk carries the markdown headers open at its position and
starts with a short overlap taken from the end of the previous chunk.
"""

import re

from shared.helper.HelperConfig import HelperConfig
from shared.helper.TokenCounter import TokenCounter
from shared.models.context import DocumentChunk
from shared.models.errors import ValidationError

MAX_CONTENT_BYTES = 10_000_000
MIN_CONTENT_TOKENS = 10

_HEADER_RE = re.compile(r"^(#{1,6})\s+(.+)$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")


def _header_level(line: str) -> int:
    match = _HEADER_RE.match(line)
    return len(match.group(1)) if match else 0


class ChunkingService:
    """Splits documents into overlapping, header-annotated chunks."""

    def __init__(self, helper_config: HelperConfig, token_counter: TokenCounter | None = None) -> None:
        self.logging = helper_config.get_logger()
        self.token_counter = token_counter or TokenCounter(helper_config)
        self.chunk_size = int(helper_config.get_number_val("CHUNK_SIZE", default=500))
        self.chunk_overlap = int(helper_config.get_number_val("CHUNK_OVERLAP", default=50))
        if self.chunk_size <= 0:
            raise ValueError(f"CHUNK_SIZE must be positive, got {self.chunk_size}.")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError(f"CHUNK_OVERLAP must be between 0 and CHUNK_SIZE, got {self.chunk_overlap}.")

    ##########################################
    ############## VALIDATION ################
    ##########################################

    def validate_content(self, content: str) -> None:
        """Reject content that is empty, too large or too short to be worth embedding.

        Args:
            content (str): The fetched document text.

        Raises:
            ValidationError: With a message suitable for storing on the document.
        """
        if not content or not content.strip():
            raise ValidationError("Content is empty")
        if len(content.encode("utf-8")) > MAX_CONTENT_BYTES:
            raise ValidationError("Content exceeds 10MB size limit")
        if self.token_counter.count(content) < MIN_CONTENT_TOKENS:
            raise ValidationError(f"Content too short (less than {MIN_CONTENT_TOKENS} tokens)")

    ##########################################
    ############### CHUNKING #################
    ##########################################

    def _line_cost(self, line: str) -> int:
        # the joining newline is charged to the line it follows
        return self.token_counter.count(line + "\n")

    def _header_cost(self, header_stack: list[str]) -> int:
        if not header_stack:
            return 0
        return self.token_counter.count("\n".join(header_stack) + "\n\n")

    def chunk_document(self, content: str, source_url: str = "") -> list[DocumentChunk]:
        """Split a document into chunks.

        Lines are accumulated until the next one would push the chunk over the
        token budget (including the headers that may have to be prepended).
        The closed chunk gets every open header it does not already contain
        prepended, and the next chunk is seeded with whole trailing lines of
        the closed one up to the overlap budget. A single line larger than the
        budget becomes a chunk of its own.

        Args:
            content (str): The document text.
            source_url (str): Source of the document, for log output.

        Returns:
            list[DocumentChunk]: The chunks in document order.
        """
        self.logging.debug(
            "Starting document chunking: %d characters, chunk size %d, overlap %d",
            len(content), self.chunk_size, self.chunk_overlap,
        )

        lines = content.split("\n")
        chunks: list[DocumentChunk] = []
        pending: list[str] = []
        pending_costs: list[int] = []
        pending_tokens = 0
        pending_start = 0
        overlap_count = 0
        header_stack: list[str] = []
        header_cost = 0
        in_fence = False

        for line_no, line in enumerate(lines):
            line_cost = self._line_cost(line)

            if pending and pending_tokens + line_cost + header_cost > self.chunk_size:
                chunks.append(self._build_chunk(len(chunks), pending, header_stack, pending_start, overlap_count))

                keep = self._overlap_size(pending_costs)
                # drop leading overlap lines until the incoming line fits
                while keep and sum(pending_costs[-keep:]) + line_cost + header_cost > self.chunk_size:
                    keep -= 1
                pending = pending[len(pending) - keep:] if keep else []
                pending_costs = pending_costs[len(pending_costs) - keep:] if keep else []
                pending_tokens = sum(pending_costs)
                pending_start = line_no - keep
                overlap_count = keep

            if _FENCE_RE.match(line):
                in_fence = not in_fence
            elif not in_fence:
                level = _header_level(line)
                if level:
                    header_stack = [h for h in header_stack if _header_level(h) < level]
                    header_stack.append(line)
                    header_cost = self._header_cost(header_stack)

            pending.append(line)
            pending_costs.append(line_cost)
            pending_tokens += line_cost

        if pending:
            chunks.append(self._build_chunk(len(chunks), pending, header_stack, pending_start, overlap_count))

        total_tokens = sum(c.token_count for c in chunks)
        self.logging.info(
            "Document chunking completed for %s: %d chunks, %d tokens (avg %.1f per chunk)",
            source_url or "<inline>", len(chunks), total_tokens, total_tokens / len(chunks) if chunks else 0.0,
        )
        return chunks

    def _overlap_size(self, costs: list[int]) -> int:
        """Return how many trailing lines fit into the overlap budget."""
        taken = 0
        total = 0
        for cost in reversed(costs):
            if total + cost > self.chunk_overlap:
                break
            total += cost
            taken += 1
        return taken

    def _build_chunk(self, index: int, lines: list[str], header_stack: list[str], start_line: int, overlap_count: int) -> DocumentChunk:
        body = "\n".join(lines)
        missing = [h for h in header_stack if h not in body]
        content = "\n".join(missing) + "\n\n" + body if missing else body
        return DocumentChunk(
            chunk_index=index,
            content=content,
            token_count=self.token_counter.count(content),
            character_count=len(content),
            headers=list(header_stack),
            injected_headers=missing,
            overlap_line_count=overlap_count,
            start_line=start_line,
            end_line=start_line + len(lines),
        )
