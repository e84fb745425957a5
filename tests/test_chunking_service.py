"""Tests for the markdown-aware chunker."""

import pytest

from services.context_rag.ChunkingService import ChunkingService
from shared.models.errors import ValidationError


def reconstruct(chunks) -> str:
    """Join chunk bodies after stripping injected headers and overlap lines."""
    lines: list[str] = []
    for chunk in chunks:
        body = chunk.content.split("\n")
        if chunk.injected_headers:
            body = body[len(chunk.injected_headers) + 1:]
        lines.extend(body[chunk.overlap_line_count:])
    return "\n".join(lines)


def body_lines(chunk) -> list[str]:
    body = chunk.content.split("\n")
    if chunk.injected_headers:
        body = body[len(chunk.injected_headers) + 1:]
    return body[chunk.overlap_line_count:]


def long_document(sections: int = 3, lines_per_section: int = 200) -> str:
    lines = ["# Handbook"]
    for section in range(1, sections + 1):
        lines.append(f"## Section {section}")
        lines.append("")
        for n in range(lines_per_section):
            lines.append(f"Section {section} line {n}: the quick brown fox jumps over the lazy dog.")
    return "\n".join(lines)


@pytest.fixture
def small_chunker(env, helper_config):
    env.setenv("CHUNK_SIZE", "60")
    env.setenv("CHUNK_OVERLAP", "20")
    return ChunkingService(helper_config=helper_config)


class TestValidateContent:
    """Tests for content validation before chunking."""

    def test_rejects_empty_content(self, chunking_service):
        with pytest.raises(ValidationError, match="empty"):
            chunking_service.validate_content("")

    def test_rejects_whitespace_only_content(self, chunking_service):
        with pytest.raises(ValidationError, match="empty"):
            chunking_service.validate_content("   \n\t\n  ")

    def test_rejects_content_under_ten_tokens(self, chunking_service):
        with pytest.raises(ValidationError, match="too short"):
            chunking_service.validate_content("Hi there")

    def test_rejects_content_over_size_limit(self, chunking_service):
        with pytest.raises(ValidationError, match="10MB"):
            chunking_service.validate_content("a" * 10_000_001)

    def test_size_limit_counts_utf8_bytes(self, chunking_service):
        # 3.4M characters, but more than 10MB once encoded
        with pytest.raises(ValidationError, match="10MB"):
            chunking_service.validate_content("€" * 3_400_000)

    def test_accepts_regular_document(self, chunking_service, sample_markdown):
        chunking_service.validate_content(sample_markdown)


class TestConfiguration:
    """Tests for chunk size configuration."""

    def test_overlap_must_be_smaller_than_chunk_size(self, env, helper_config):
        env.setenv("CHUNK_SIZE", "100")
        env.setenv("CHUNK_OVERLAP", "100")
        with pytest.raises(ValueError, match="CHUNK_OVERLAP"):
            ChunkingService(helper_config=helper_config)

    def test_chunk_size_must_be_positive(self, env, helper_config):
        env.setenv("CHUNK_SIZE", "0")
        with pytest.raises(ValueError, match="CHUNK_SIZE"):
            ChunkingService(helper_config=helper_config)


class TestChunkDocument:
    """Tests for chunk_document."""

    def test_small_document_is_single_chunk(self, chunking_service, sample_markdown):
        chunks = chunking_service.chunk_document(sample_markdown)

        assert len(chunks) == 1
        assert chunks[0].chunk_index == 0
        assert chunks[0].content == sample_markdown
        assert chunks[0].injected_headers == []
        assert chunks[0].headers == ["# Server Guide", "## Billing"]

    def test_reconstructs_source_document(self, small_chunker):
        document = long_document(sections=3, lines_per_section=40)

        chunks = small_chunker.chunk_document(document)

        assert len(chunks) > 5
        assert reconstruct(chunks) == document

    def test_chunks_stay_within_budget(self, small_chunker):
        document = long_document(sections=2, lines_per_section=50)

        chunks = small_chunker.chunk_document(document)

        for chunk in chunks:
            assert chunk.token_count <= 60
            assert chunk.character_count == len(chunk.content)

    def test_indexes_are_sequential(self, small_chunker):
        chunks = small_chunker.chunk_document(long_document(sections=2, lines_per_section=30))

        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))

    def test_overlap_repeats_previous_tail(self, small_chunker):
        chunks = small_chunker.chunk_document(long_document(sections=1, lines_per_section=40))

        for previous, current in zip(chunks, chunks[1:]):
            overlap = current.content.split("\n")
            if current.injected_headers:
                overlap = overlap[len(current.injected_headers) + 1:]
            overlap = overlap[:current.overlap_line_count]
            if overlap:
                assert previous.content.endswith("\n".join(overlap))
        assert any(c.overlap_line_count > 0 for c in chunks[1:])

    def test_missing_headers_are_injected(self, small_chunker):
        chunks = small_chunker.chunk_document(long_document(sections=1, lines_per_section=40))

        later = chunks[3]
        assert later.injected_headers == ["# Handbook", "## Section 1"]
        assert later.content.startswith("# Handbook\n## Section 1\n\n")

    def test_header_stack_pops_same_level(self, small_chunker):
        chunks = small_chunker.chunk_document(long_document(sections=3, lines_per_section=40))

        last = chunks[-1]
        assert last.headers == ["# Handbook", "## Section 3"]
        assert "## Section 2" not in last.content

    def test_single_oversized_line_becomes_own_chunk(self, small_chunker):
        huge = "word " * 200
        document = "\n".join(["intro line one", huge.strip(), "closing line"])

        chunks = small_chunker.chunk_document(document)

        oversized = [c for c in chunks if c.token_count > 60]
        assert len(oversized) == 1
        assert body_lines(oversized[0]) == [huge.strip()]
        assert reconstruct(chunks) == document

    def test_headers_in_fenced_code_are_ignored(self, chunking_service):
        document = "\n".join([
            "## Setup",
            "```bash",
            "# install dependencies",
            "npm install",
            "```",
            "Run the script afterwards.",
        ])

        chunks = chunking_service.chunk_document(document)

        assert chunks[0].headers == ["## Setup"]

    def test_end_to_end_guild_document_shape(self, chunking_service):
        """5,000 lines in three ## sections, 500/50 token budget."""
        lines = ["# Resource Manual"]
        headers = ["## Installation", "## Zephyr Widget", "## Billing"]
        section_of_line = [None]
        for section, header in enumerate(headers):
            lines.append(header)
            section_of_line.append(section)
            for n in range(1666):
                lines.append(f"{header[3:]} note {n}: details that belong to this part of the manual.")
                section_of_line.append(section)
        document = "\n".join(lines[:5000])

        chunks = chunking_service.chunk_document(document)

        document_tokens = chunking_service.token_counter.count(document)
        expected = document_tokens / (500 - 50)
        assert abs(len(chunks) - expected) <= expected * 0.25
        for chunk in chunks:
            assert chunk.token_count <= 500
            assert chunk.headers[-1].startswith("## ")
            assert chunk.headers[-1] == headers[section_of_line[chunk.end_line - 1]]
        assert reconstruct(chunks) == document
