"""Context resolution for questions.

Assembles the grounding text for a question from the documents the asking
user may read, either as whole documents or as the most relevant chunks, and
wraps it in the instruction block handed to the answering model.
"""

from services.context_rag.ContextService import ContextService
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.context import ContextScope, ScopeKind, SearchResult

FALLBACK_RESPONSE = "Unfortunately, I'm not able to help you with this query. Support will be with you soon."

SECTION_SEPARATOR = "\n\n" + "━" * 50 + "\n\n"

_RULE = "━" * 78

PROMPT_TEMPLATE = f"""
{_RULE}
READ-ONLY CONTEXT MODE
{_RULE}

You answer questions strictly from the context below.

RULES:
1. Answer ONLY from the context below. Quote it directly where possible.
2. If the answer is not in the context, respond EXACTLY: "{FALLBACK_RESPONSE}"
3. Do not ask follow-up or clarifying questions.
4. Do not provide links unless the context contains the complete URL.
5. Do not use general knowledge or training data.
6. Do not mention the context, documentation or provided information.
7. If the context covers something related but not the exact subject asked about, use the fallback response.

This is a one-shot answer. Give the answer or the fallback response, nothing else.

{_RULE}
CONTEXT (YOUR ONLY KNOWLEDGE SOURCE)
{_RULE}

{{context}}

{_RULE}
No follow-ups. No questions. No made-up links. Answer or fallback.
{_RULE}
"""

_TIER_LABELS = {
    ScopeKind.GLOBAL: "Global Context",
    ScopeKind.GUILD: "Guild Context",
    ScopeKind.USER: "User Context (highest priority)",
}


def build_prompt_block(context: str) -> str:
    """Wrap grounding text in the answer-only-from-context instructions.

    Args:
        context (str): The assembled grounding text.

    Returns:
        str: The prompt block, or "" if there is no grounding text.
    """
    if not context.strip():
        return ""
    return PROMPT_TEMPLATE.format(context=context)


def rank_results(results: list[SearchResult], limit: int) -> list[SearchResult]:
    """Order hits by scope tier first and similarity second, keeping the best `limit`.

    Args:
        results (list[SearchResult]): Candidate hits.
        limit (int): Number of hits to keep.

    Returns:
        list[SearchResult]: The surviving hits, highest priority first.
    """
    return sorted(results, key=lambda r: r.priority, reverse=True)[:limit]


def assemble_context(results: list[SearchResult]) -> str:
    """Join ranked hits into one labelled section per source document.

    Sections follow the rank of their best hit; chunks inside a section are
    put back into document order.
    """
    groups: dict[str, list[SearchResult]] = {}
    for result in results:
        groups.setdefault(result.context_id, []).append(result)

    sections = []
    for group in groups.values():
        group.sort(key=lambda r: r.chunk_index)
        label = group[0].scope.value.capitalize()
        body = "\n\n".join(r.content for r in group)
        sections.append(f"## {label} Context\n{body}")
    return SECTION_SEPARATOR.join(sections)


class ContextResolver:
    """Resolves the grounding context for a question asked by a user."""

    def __init__(
        self,
        helper_config: HelperConfig,
        context_service: ContextService,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._context_service = context_service
        self._embed_client = embed_client
        self._rag_client = rag_client
        self.search_limit = int(helper_config.get_number_val("VECTOR_SEARCH_LIMIT", default=5))
        self.score_threshold = float(helper_config.get_number_val("VECTOR_SCORE_THRESHOLD", default=0.3))

    @staticmethod
    def accessible_scopes(user_id: str, guild_id: str | None = None) -> list[ContextScope]:
        """Scopes readable by a requester, lowest priority first."""
        scopes = [ContextScope.global_scope()]
        if guild_id:
            scopes.append(ContextScope.guild(guild_id))
        scopes.append(ContextScope.user(user_id))
        return scopes

    ##########################################
    ############ DIRECT CONTEXT ##############
    ##########################################

    async def resolve_context_for_ask(self, user_id: str, guild_id: str | None = None) -> str:
        """Build the prompt block from the whole documents of every accessible scope.

        Args:
            user_id (str): The asking user.
            guild_id (str | None): The guild the question was asked in, None in DMs.

        Returns:
            str: The prompt block, or "" if no scope has content or anything fails.
        """
        try:
            sections = []
            for scope in self.accessible_scopes(user_id, guild_id):
                content = await self._context_service.get_context_content(scope)
                if content and content.strip():
                    sections.append(f"## {_TIER_LABELS[scope.kind]}\n{content}")

            if not sections:
                self.logging.info("No context available for user %s (guild %s)", user_id, guild_id)
                return ""
            return build_prompt_block(SECTION_SEPARATOR.join(sections))
        except Exception as exc:
            self.logging.error("Resolving context for user %s failed: %s", user_id, exc)
            return ""

    ##########################################
    ########### RELEVANT CONTEXT #############
    ##########################################

    async def search_relevant_chunks(self, question: str, user_id: str, guild_id: str | None = None) -> list[SearchResult]:
        """Find the chunks most relevant to a question among the accessible scopes.

        Twice the limit is requested from the vector store so that the tier
        re-ranking has candidates from every scope to choose from.

        Args:
            question (str): The question text.
            user_id (str): The asking user.
            guild_id (str | None): The guild the question was asked in, None in DMs.

        Returns:
            list[SearchResult]: At most VECTOR_SEARCH_LIMIT hits, highest priority first.

        Raises:
            EmbeddingError: If the question cannot be embedded.
            VectorStoreError: If the search fails.
        """
        query_vector = await self._embed_client.embed_one(question)
        hits = await self._rag_client.do_search(
            query_vector=query_vector,
            filter=self._rag_client.get_scope_filter(user_id, guild_id),
            limit=self.search_limit * 2,
            score_threshold=self.score_threshold,
        )
        results = [
            SearchResult(
                content=point.content,
                score=score,
                scope=point.scope,
                chunk_index=point.chunk_index,
                source_url=point.source_url,
                context_id=point.context_id,
            )
            for point, score in hits
        ]
        ranked = rank_results(results, self.search_limit)
        self.logging.debug(
            "Vector search returned %d candidates, kept %d (top score %s)",
            len(results), len(ranked), f"{ranked[0].score:.3f}" if ranked else "-",
        )
        return ranked

    async def resolve_relevant_context_for_ask(self, question: str, user_id: str, guild_id: str | None = None) -> str:
        """Build the prompt block from the chunks most relevant to a question.

        Args:
            question (str): The question text.
            user_id (str): The asking user.
            guild_id (str | None): The guild the question was asked in, None in DMs.

        Returns:
            str: The prompt block, or "" if nothing relevant is found or anything fails.
        """
        self.logging.info("Searching relevant context for user %s (guild %s)", user_id, guild_id)
        try:
            results = await self.search_relevant_chunks(question, user_id, guild_id)
            if not results:
                self.logging.warning("No relevant context chunks found for user %s", user_id)
                return ""

            self.logging.info(
                "Found %d relevant chunks from %d contexts",
                len(results), len({r.context_id for r in results}),
            )
            return build_prompt_block(assemble_context(results))
        except Exception as exc:
            self.logging.error("Resolving relevant context for user %s failed: %s", user_id, exc)
            return ""
